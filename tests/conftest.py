import asyncio
from contextlib import asynccontextmanager

import httpx
import pytest
import pytest_asyncio

from evse_sim import evse as api
from evse_sim.config import StationConfig, Timings
from evse_sim.station import Station


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


def fast_timings(**overrides) -> Timings:
    values = dict(
        tick_sec=0.002,
        ramp_up_sec=0.01,
        completion_sec=0.005,
        settle_sec=0.02,
        boot_delay_sec=0.0,
        reset_delay_sec=0.02,
        sim_csms_delay_sec=0.001,
        response_timeout_sec=1.0,
    )
    values.update(overrides)
    return Timings(**values)


@pytest.fixture
def config():
    return StationConfig(
        station_id="EVCS-TEST",
        connectors=2,
        battery_capacity_kwh=60,
        soc_start=20,
        soc_end=100,
        charge_duration_min=5,
        charge_mode="linear",
        heartbeat_interval_sec=3600,
        meter_interval_ticks=30,
        timings=fast_timings(),
    )


@asynccontextmanager
async def running_station(config):
    st = Station(config)
    result = await st.connect(simulated=True)
    assert result.ok
    await wait_until(lambda: st.booted)
    try:
        yield st
    finally:
        if st.connected:
            await st.disconnect()


@pytest_asyncio.fixture
async def station(config):
    async with running_station(config) as st:
        yield st


@pytest.fixture
def csms(station):
    return station.link


@pytest_asyncio.fixture
async def client(station, monkeypatch):
    monkeypatch.setattr(api, "station", station)
    transport = httpx.ASGITransport(app=api.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def transaction_events(csms, event_type: str):
    return [c.payload for c in csms.calls_for("TransactionEvent") if c.payload["eventType"] == event_type]


def statuses_for(csms, evse_id: int):
    return [
        c.payload["connectorStatus"]
        for c in csms.calls_for("StatusNotification")
        if c.payload["evseId"] == evse_id
    ]
