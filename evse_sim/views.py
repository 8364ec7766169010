from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .physics import current_amps
from .state_machine import EVSE


class SessionView(BaseModel):
    transaction_id: str
    id_tag: str
    remote_start_id: Optional[int] = None
    started_at: datetime
    soc: float
    soc_start: float
    soc_end: float
    energy_kwh: float
    target_energy_kwh: float
    progress_pct: float
    elapsed_sec: float
    remaining_sec: float
    cost: float


class FaultView(BaseModel):
    code: str
    info: str
    timestamp: datetime


class EVSEView(BaseModel):
    id: int
    connector_id: int
    connector_type: str
    status: str
    connector_status: str
    power_kw: float
    current_a: float
    temperature_c: float
    session: Optional[SessionView] = None
    fault: Optional[FaultView] = None


class StationView(BaseModel):
    station_id: str
    connected: bool
    simulated: bool
    booted: bool
    csms_url: Optional[str] = None
    heartbeat_interval: int
    evses: List[EVSEView]


def evse_view(evse: EVSE, voltage_v: float, price_per_kwh: float) -> EVSEView:
    session = None
    if evse.session is not None:
        s = evse.session
        elapsed = s.elapsed_sec()
        session = SessionView(
            transaction_id=s.transaction_id,
            id_tag=s.id_tag,
            remote_start_id=s.remote_start_id,
            started_at=s.started_at,
            soc=round(s.soc, 2),
            soc_start=s.soc_start,
            soc_end=s.soc_end,
            energy_kwh=round(s.energy_kwh, 3),
            target_energy_kwh=round(s.target_energy_kwh, 3),
            progress_pct=round(s.progress_pct, 1),
            elapsed_sec=round(elapsed, 1),
            remaining_sec=round(max(0.0, s.duration_sec - s.ticks), 1),
            cost=round(s.energy_kwh * price_per_kwh, 2),
        )
    fault = None
    if evse.fault is not None:
        fault = FaultView(code=evse.fault.code.value, info=evse.fault.info, timestamp=evse.fault.timestamp)

    return EVSEView(
        id=evse.id,
        connector_id=evse.connector_id,
        connector_type=getattr(evse.connector_type, "value", evse.connector_type),
        status=evse.status.value,
        connector_status=evse.connector_status,
        power_kw=round(evse.power_kw, 2),
        current_a=round(current_amps(evse.power_kw, voltage_v), 1),
        temperature_c=round(evse.temperature_c, 1),
        session=session,
        fault=fault,
    )


def station_view(station) -> StationView:
    cfg = station.config
    return StationView(
        station_id=cfg.station_id,
        connected=station.connected,
        simulated=bool(station.link is not None and station.link.simulated),
        booted=station.booted,
        csms_url=station.link.url if station.link is not None else None,
        heartbeat_interval=station.heartbeat_interval,
        evses=[evse_view(evse, cfg.voltage_v, cfg.price_per_kwh) for evse in station.model],
    )
