import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from .config import ChargeMode, StationConfig
from .physics import next_temperature, power_curve_multiplier, temperature_derating
from .state_machine import EVSE, EVSEState

logger = logging.getLogger(__name__)

# SOC gap treated as "target reached"; absorbs float drift of the increments
SOC_EPSILON = 1e-9


@dataclass(frozen=True)
class ChargePlan:
    """Session parameters frozen from the configuration at start time."""

    soc_start: float
    soc_end: float
    battery_capacity_kwh: float
    duration_sec: float
    max_power_kw: float
    linear: bool
    ambient_c: float
    meter_interval_ticks: int

    @classmethod
    def from_config(cls, config: StationConfig) -> "ChargePlan":
        return cls(
            soc_start=config.soc_start,
            soc_end=config.soc_end,
            battery_capacity_kwh=config.battery_capacity_kwh,
            duration_sec=config.charge_duration_min * 60,
            max_power_kw=config.max_power_kw,
            linear=config.charge_mode == ChargeMode.LINEAR,
            ambient_c=config.ambient_temp_c,
            meter_interval_ticks=config.meter_interval_ticks,
        )

    @property
    def soc_range(self) -> float:
        return self.soc_end - self.soc_start

    @property
    def total_energy_kwh(self) -> float:
        return self.battery_capacity_kwh * self.soc_range / 100

    @property
    def soc_per_tick(self) -> float:
        return self.soc_range / self.duration_sec

    @property
    def energy_per_tick(self) -> float:
        return self.total_energy_kwh / self.duration_sec


@dataclass
class MeterSample:
    evse_id: int
    tick: int
    power_kw: float
    soc: float
    energy_kwh: float
    temperature_c: float

    @property
    def energy_wh(self) -> int:
        return round(self.energy_kwh * 1000)

    @property
    def power_w(self) -> int:
        return round(self.power_kw * 1000)


def advance(evse: EVSE, plan: ChargePlan) -> MeterSample:
    """Integrate one tick of charging on ``evse``'s session."""
    session = evse.session
    curve = power_curve_multiplier(session.soc, linear=plan.linear)
    derating = temperature_derating(evse.temperature_c)
    factor = curve * derating

    evse.power_kw = plan.max_power_kw * factor
    session.soc = min(session.soc + plan.soc_per_tick * factor, plan.soc_end)
    session.energy_kwh = min(session.energy_kwh + plan.energy_per_tick * factor, plan.total_energy_kwh)
    if plan.soc_end - session.soc <= SOC_EPSILON:
        session.soc = plan.soc_end
        session.energy_kwh = plan.total_energy_kwh
    evse.temperature_c = next_temperature(evse.temperature_c, evse.power_kw, plan.max_power_kw, plan.ambient_c)
    session.ticks += 1

    return MeterSample(
        evse_id=evse.id,
        tick=session.ticks,
        power_kw=evse.power_kw,
        soc=session.soc,
        energy_kwh=session.energy_kwh,
        temperature_c=evse.temperature_c,
    )


def target_reached(evse: EVSE, plan: ChargePlan) -> bool:
    return evse.session is not None and evse.session.soc >= plan.soc_end


async def metering_loop(evse: EVSE, plan: ChargePlan, tick_sec: float,
                        on_sample: Callable[[MeterSample], None],
                        on_report: Callable[[MeterSample], None]) -> bool:
    """Tick ``evse`` until its session reaches the SOC target.

    Returns True when the target was reached, False when the session was
    preempted (stopped, faulted) by one of the callbacks. Cancelling the task
    that runs the loop stops it between ticks.
    """
    session = evse.session
    while True:
        await asyncio.sleep(tick_sec)
        if evse.session is not session or evse.status != EVSEState.CHARGING:
            return False

        sample = advance(evse, plan)
        on_sample(sample)
        if evse.session is not session:
            return False

        if sample.tick % plan.meter_interval_ticks == 0:
            on_report(sample)
        if target_reached(evse, plan):
            logger.info(f"EVSE {evse.id}: target SOC {plan.soc_end}% reached after {sample.tick} ticks")
            return True
