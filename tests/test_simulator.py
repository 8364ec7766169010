import asyncio
import logging

import pytest
from ocpp.v201 import call
from ocpp.v201.enums import BootReasonEnumType

from conftest import statuses_for, transaction_events, wait_until
from evse_sim.state_machine import EVSEState
from evse_sim.station import Station


@pytest.mark.asyncio
async def test_boot_sequence(station, csms):
    boots = csms.calls_for("BootNotification")
    assert len(boots) == 1
    assert boots[0].payload["reason"] == "PowerUp"
    assert boots[0].payload["chargingStation"]["model"] == station.config.model
    assert boots[0].payload["chargingStation"]["vendorName"] == station.config.vendor

    await wait_until(lambda: len(csms.calls_for("StatusNotification")) >= 2)
    assert statuses_for(csms, 1) == ["Available"]
    assert statuses_for(csms, 2) == ["Available"]
    assert all(evse.status == EVSEState.AVAILABLE for evse in station.model)


@pytest.mark.asyncio
async def test_full_session_completes_on_its_own(station, csms):
    changes = []
    station.events.on("status_changed", lambda evse_id, old, new: changes.append((evse_id, new)))
    samples = []
    station.events.on("telemetry", samples.append)

    result = station.start_session(1, "USER001")
    assert result.ok
    assert station.model.get(1).status == EVSEState.PREPARING

    await wait_until(lambda: station.model.get(1).status == EVSEState.CHARGING)
    await wait_until(lambda: station.model.get(1).status == EVSEState.AVAILABLE, timeout=15)

    assert [new for evse_id, new in changes if evse_id == 1] == [
        EVSEState.PREPARING,
        EVSEState.CHARGING,
        EVSEState.FINISHING,
        EVSEState.AVAILABLE,
    ]
    assert station.model.get(1).session is None
    assert len(samples) == 300
    assert samples[-1].soc == 100
    assert samples[-1].energy_kwh == pytest.approx(48)
    assert [s.soc for s in samples] == sorted(s.soc for s in samples)

    await wait_until(lambda: len(transaction_events(csms, "Ended")) == 1)
    started = transaction_events(csms, "Started")
    assert len(started) == 1
    assert started[0]["triggerReason"] == "Authorized"
    assert started[0]["transactionInfo"]["transactionId"] == result.transaction_id

    ended = transaction_events(csms, "Ended")[0]
    assert ended["triggerReason"] == "EVDeparted"
    assert ended["transactionInfo"]["stoppedReason"] == "EVDisconnected"
    assert ended["seqNo"] == 1
    energy = ended["meterValue"][0]["sampledValue"][0]
    assert energy["measurand"] == "Energy.Active.Import.Register"
    assert energy["value"] == 48000

    await wait_until(lambda: len(csms.calls_for("MeterValues")) == 10)
    meter = csms.calls_for("MeterValues")[0].payload
    assert meter["evseId"] == 1
    assert "temperature" in meter["meterValue"][0]["customData"]
    assert len(csms.calls_for("Authorize")) == 1


@pytest.mark.asyncio
async def test_start_rejected_when_not_available(station):
    assert station.start_session(1, "USER001").ok
    evse = station.model.get(1)
    session = evse.session

    again = station.start_session(1, "OTHER")
    assert not again.ok
    assert "cannot start a session" in again.error
    assert evse.session is session
    assert evse.status == EVSEState.PREPARING


@pytest.mark.asyncio
async def test_start_unknown_evse(station):
    result = station.start_session(9, "USER001")
    assert not result.ok
    assert "unknown EVSE" in result.error


@pytest.mark.asyncio
async def test_local_stop(station, csms):
    result = station.start_session(1, "USER001")
    await wait_until(lambda: station.model.get(1).status == EVSEState.CHARGING)
    await asyncio.sleep(0.02)

    stop = station.stop_session(1)
    assert stop.ok
    assert stop.transaction_id == result.transaction_id
    evse = station.model.get(1)
    assert evse.status == EVSEState.FINISHING
    assert evse.timer is not None
    soc = evse.session.soc

    await wait_until(lambda: evse.status == EVSEState.AVAILABLE)
    assert soc < 100

    await wait_until(lambda: len(transaction_events(csms, "Ended")) == 1)
    ended = transaction_events(csms, "Ended")[0]
    assert ended["triggerReason"] == "StopAuthorized"
    assert ended["transactionInfo"]["stoppedReason"] == "Local"


@pytest.mark.asyncio
async def test_stop_without_session_is_noop(station):
    result = station.stop_session(1)
    assert not result.ok
    assert station.model.get(1).status == EVSEState.AVAILABLE
    assert not station.stop_session(1, reason="NotAReason").ok


@pytest.mark.asyncio
async def test_stop_while_preparing_sends_no_ended(station, csms):
    station.start_session(1, "USER001")
    assert station.stop_session(1).ok
    await wait_until(lambda: station.model.get(1).status == EVSEState.AVAILABLE)
    await asyncio.sleep(0.02)
    assert transaction_events(csms, "Started") == []
    assert transaction_events(csms, "Ended") == []


@pytest.mark.asyncio
async def test_fault_terminates_session(station, csms):
    raised, cleared = [], []
    station.events.on("fault_raised", lambda evse_id, fault: raised.append(evse_id))
    station.events.on("fault_cleared", lambda evse_id, fault: cleared.append(evse_id))

    station.start_session(1, "USER001")
    await wait_until(lambda: station.model.get(1).status == EVSEState.CHARGING)

    result = station.inject_fault(1, "GroundFailure", "leakage current")
    assert result.ok
    evse = station.model.get(1)
    assert evse.status == EVSEState.FAULTED
    assert evse.session is None
    assert evse.timer is None
    assert raised == [1]

    await wait_until(lambda: len(transaction_events(csms, "Ended")) == 1)
    ended = transaction_events(csms, "Ended")[0]
    assert ended["triggerReason"] == "AbnormalCondition"
    assert ended["transactionInfo"]["stoppedReason"] == "Other"

    await wait_until(lambda: len(csms.calls_for("NotifyEvent")) == 1)
    event = csms.calls_for("NotifyEvent")[0].payload["eventData"][0]
    assert event["techCode"] == "GroundFailure"
    assert event["actualValue"] == "true"

    await asyncio.sleep(0.02)
    assert evse.status == EVSEState.FAULTED

    assert station.clear_fault(1).ok
    assert evse.status == EVSEState.AVAILABLE
    assert evse.fault is None
    assert cleared == [1]
    await wait_until(lambda: len(csms.calls_for("NotifyEvent")) == 2)
    assert csms.calls_for("NotifyEvent")[1].payload["eventData"][0]["cleared"] is True


@pytest.mark.asyncio
async def test_fault_with_unknown_code(station):
    assert not station.inject_fault(1, "Meltdown").ok
    assert station.model.get(1).status == EVSEState.AVAILABLE


@pytest.mark.asyncio
async def test_status_change_is_announced(station, csms):
    await wait_until(lambda: len(statuses_for(csms, 2)) == 1)
    station.start_session(2, "USER001")
    await wait_until(lambda: statuses_for(csms, 2) == ["Available", "Occupied"])
    station.inject_fault(2, "OverVoltage")
    await wait_until(lambda: statuses_for(csms, 2)[-1] == "Faulted")


@pytest.mark.asyncio
async def test_set_status(station):
    assert station.set_status(1, "SuspendedEVSE").ok
    assert station.model.get(1).status == EVSEState.SUSPENDED_EVSE
    assert not station.set_status(1, "Charging").ok
    assert not station.set_status(1, "Bogus").ok
    assert station.set_status(1, "Available").ok


@pytest.mark.asyncio
async def test_malformed_inbound_is_discarded(station, csms):
    logs = []
    station.events.on("log", lambda direction, text: logs.append((direction, text)))
    before = [evse.status for evse in station.model]

    await station.handle_inbound("garbage")
    await station.handle_inbound('[9, "1", {}]')

    assert [evse.status for evse in station.model] == before
    assert csms.answered == []
    assert [d for d, _ in logs if d == "ERR"] == ["ERR", "ERR"]


@pytest.mark.asyncio
async def test_manual_send(station):
    result = await station.send_manual("Heartbeat", {})
    assert result.ok
    assert "currentTime" in result.payload

    assert not (await station.send_manual("NoSuchAction", {})).ok
    assert not (await station.send_manual("Heartbeat", {"bogus": 1})).ok


@pytest.mark.asyncio
async def test_configuration_locked_while_connected(station):
    locked = station.update_configuration({"max_power_kw": 100})
    assert not locked.ok
    assert "max_power_kw" in locked.error

    assert station.update_configuration({"battery_capacity_kwh": 75}).ok
    assert station.config.battery_capacity_kwh == 75
    assert not station.update_configuration({"soc_start": 90, "soc_end": 50}).ok

    assert station.apply_preset("partial").ok
    assert (station.config.soc_start, station.config.soc_end) == (10, 80)
    assert not station.apply_preset("turbo").ok


@pytest.mark.asyncio
async def test_disconnect_terminates_sessions(station, csms):
    station.start_session(1, "USER001")
    await wait_until(lambda: station.model.get(1).status == EVSEState.CHARGING)

    assert (await station.disconnect()).ok
    assert not station.connected
    assert all(evse.status == EVSEState.UNAVAILABLE for evse in station.model)
    assert all(evse.session is None and evse.timer is None for evse in station.model)
    assert transaction_events(csms, "Ended")[0]["transactionInfo"]["stoppedReason"] == "Local"

    assert not station.start_session(1, "USER001").ok
    assert not station.inject_fault(1, "OtherError").ok
    assert not (await station.disconnect()).ok


@pytest.mark.asyncio
async def test_reconnect_after_disconnect(station):
    station.inject_fault(2, "GroundFailure")
    await station.disconnect()
    assert station.model.get(2).fault is None
    assert (await station.connect(simulated=True)).ok
    await wait_until(lambda: station.booted)
    assert all(evse.status == EVSEState.AVAILABLE for evse in station.model)
    assert len(station.link.calls_for("BootNotification")) == 1
    assert all(evse.fault is None for evse in station.model)


@pytest.mark.asyncio
async def test_connector_count_changes_while_disconnected(config):
    station = Station(config)
    assert station.update_configuration({"connectors": 4, "connector_type": "CHAdeMO"}).ok
    assert len(station.model) == 4
    assert station.model.get(4).connector_type.value == "CHAdeMO"


def test_payload_builders_return_ocpp_calls(config):
    station = Station(config)
    boot = station._boot_notification(BootReasonEnumType.power_up)
    assert isinstance(boot, call.BootNotification)
    assert boot.charging_station.model == config.model
    assert Station._status_notification.__annotations__["return"] is call.StatusNotification
    assert Station._notify_event.__annotations__["return"] is call.NotifyEvent


@pytest.mark.asyncio
async def test_failing_session_timer_is_logged(station, monkeypatch, caplog):
    async def broken(evse, session, plan):
        raise RuntimeError("meter offline")

    monkeypatch.setattr(station, "_drive_session", broken)
    with caplog.at_level(logging.ERROR, logger="evse_sim.station"):
        assert station.start_session(1, "USER001").ok
        await wait_until(lambda: "meter offline" in caplog.text)
    assert "Background task failed" in caplog.text
