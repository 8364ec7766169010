import asyncio
import itertools
import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

import websockets
from ocpp.charge_point import camel_to_snake_case, remove_nones, snake_to_camel_case
from ocpp.messages import Call, CallError, CallResult
from ocpp.v201 import call, call_result
from ocpp.v201.datatypes import (
    ChargingStationType,
    ComponentType,
    EventDataType,
    EVSEType,
    IdTokenType,
    SampledValueType,
    TransactionType,
    VariableType,
)
from ocpp.v201.enums import (
    BootReasonEnumType,
    ChargingStateEnumType,
    EventNotificationEnumType,
    EventTriggerEnumType,
    IdTokenEnumType,
    MeasurandEnumType,
    ReadingContextEnumType,
    ReasonEnumType,
    RegistrationStatusEnumType,
    TransactionEventEnumType,
    TriggerReasonEnumType,
)
from pydantic import ValidationError
from pyee.asyncio import AsyncIOEventEmitter

from .codec import decode, encode_call, summarize
from .config import SESSION_PRESETS, StationConfig
from .errors import CommandResult, ConfigurationLocked, InvalidTransition, MalformedMessage, ProtocolRejection
from .metering import ChargePlan, MeterSample, metering_loop
from .ocpp_handlers import EVSEChargePoint
from .state_machine import CONNECTOR_STATUS, EVSE, EVSEModel, EVSEState, Fault, FaultCode, Session
from .transport import SimulatedCSMS, WebSocketLink
from .views import StationView, station_view

logger = logging.getLogger(__name__)

VENDOR_ID = "evse-sim"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PendingCall:
    unique_id: str
    action: str
    future: asyncio.Future
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class StationConnection:
    """Connection object handed to the ChargePoint; every frame is logged."""

    def __init__(self, station: "Station"):
        self.station = station

    async def send(self, raw: str):
        await self.station.transmit(raw)

    async def recv(self):
        raise RuntimeError("inbound frames are pushed through Station.handle_inbound")


class Station:
    """Single owner of the station's EVSEs, timers and CSMS connection.

    Every mutation of EVSE state happens synchronously inside one of the
    command methods or a timer callback on the event loop, so a metering
    tick never observes a half-applied transition.
    """

    def __init__(self, config: StationConfig = None):
        self.config = config or StationConfig()
        self.events = AsyncIOEventEmitter()
        self.model = self._build_model()
        self.link = None
        self.cp: Optional[EVSEChargePoint] = None
        self.connected = False
        self.booted = False
        self.resetting = False
        self.heartbeat_interval = self.config.heartbeat_interval_sec
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._boot_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, PendingCall] = {}
        self._background = set()
        self._event_ids = itertools.count(1)

    def _build_model(self) -> EVSEModel:
        return EVSEModel(
            self.config.connectors,
            self.config.connector_type,
            ambient_c=self.config.ambient_temp_c,
            on_status=self._on_status,
        )

    # -------- events & logging --------
    def log(self, direction: str, text: str):
        logger.info(f"[{direction}] {text}")
        self.events.emit("log", direction, text)

    def _on_status(self, evse: EVSE, old: EVSEState, new: EVSEState):
        self.log("SYS", f"EVSE {evse.id}: {old.value} -> {new.value}")
        self.events.emit("status_changed", evse.id, old, new)
        if self.booted and CONNECTOR_STATUS[old] != CONNECTOR_STATUS[new]:
            self._post(self._status_notification(evse))

    # -------- background tasks --------
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]):
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timer(self, evse: EVSE):
        self._cancel(evse.timer)
        evse.timer = None

    def _start_timer(self, evse: EVSE, coro):
        """Run ``coro`` as the EVSE's timer; failures are logged like background tasks."""
        evse.timer = asyncio.create_task(coro)
        evse.timer.add_done_callback(self._task_done)

    def _sweep(self, action, description: str):
        """Apply ``action`` to every EVSE; one EVSE failing does not stop the rest."""
        for evse in list(self.model):
            try:
                action(evse)
            except Exception:
                logger.exception(f"{description} failed on EVSE {evse.id}")

    # -------- outbound CALLs --------
    async def transmit(self, raw: str):
        if self.link is None:
            logger.debug(f"No link, dropping frame {raw[:80]}")
            return
        try:
            self.log("TX", summarize(decode(raw)))
        except MalformedMessage:
            self.log("TX", raw[:120])
        try:
            await self.link.send(raw)
        except (websockets.exceptions.ConnectionClosed, ConnectionError) as e:
            self.log("ERR", f"Send failed: {e}")

    async def send_call(self, payload):
        """Send an ``ocpp.v201.call`` payload and wait for the correlated reply.

        Returns the matching ``call_result`` instance, or None when the CSMS
        answered with a CALLERROR or did not answer within the timeout.
        """
        if not self.connected:
            logger.debug(f"Not connected, dropping {type(payload).__name__}")
            return None

        action = type(payload).__name__
        body = snake_to_camel_case(remove_nones(asdict(payload)))
        unique_id, raw = encode_call(action, body)
        pending = PendingCall(unique_id, action, asyncio.get_running_loop().create_future())
        self._pending[unique_id] = pending
        try:
            await self.transmit(raw)
            reply = await asyncio.wait_for(pending.future, self.config.timings.response_timeout_sec)
        except asyncio.TimeoutError:
            self.log("ERR", f"No reply to {action} [{unique_id}]")
            return None
        finally:
            self._pending.pop(unique_id, None)

        if isinstance(reply, CallError):
            logger.warning(f"{action} answered with CALLERROR {reply.error_code}: {reply.error_description}")
            return None
        try:
            return getattr(call_result, action)(**camel_to_snake_case(reply.payload))
        except TypeError as e:
            logger.warning(f"Unexpected {action} reply {reply.payload}: {e}")
            return None

    def _post(self, payload):
        """Fire-and-forget CALL; ordering between posts is preserved."""
        if self.connected:
            self._spawn(self.send_call(payload))

    def _resolve(self, msg):
        pending = self._pending.get(msg.unique_id)
        if pending is None:
            logger.warning(f"Reply [{msg.unique_id}] matches no pending call")
            return
        if not pending.future.done():
            pending.future.set_result(msg)

    # -------- payload builders --------
    def _boot_notification(self, reason) -> call.BootNotification:
        cfg = self.config
        return call.BootNotification(
            charging_station=ChargingStationType(
                model=cfg.model,
                vendor_name=cfg.vendor,
                serial_number=cfg.serial_number,
                firmware_version=cfg.firmware_version,
            ),
            reason=reason,
        )

    @staticmethod
    def _status_notification(evse: EVSE) -> call.StatusNotification:
        return call.StatusNotification(
            timestamp=now_iso(),
            connector_status=evse.connector_status,
            evse_id=evse.id,
            connector_id=evse.connector_id,
        )

    @staticmethod
    def _meter_value(context, energy_wh: int, soc: float = None, power_w: int = None,
                     temperature_c: float = None) -> dict:
        sampled = [SampledValueType(
            value=energy_wh,
            context=context,
            measurand=MeasurandEnumType.energy_active_import_register,
            unit_of_measure={"unit": "Wh"},
        )]
        if power_w is not None:
            sampled.append(SampledValueType(
                value=power_w,
                context=context,
                measurand=MeasurandEnumType.power_active_import,
                unit_of_measure={"unit": "W"},
            ))
        if soc is not None:
            sampled.append(SampledValueType(
                value=round(soc, 1),
                context=context,
                measurand=MeasurandEnumType.soc,
                unit_of_measure={"unit": "Percent"},
            ))
        meter_value = {"timestamp": now_iso(), "sampled_value": sampled}
        if temperature_c is not None:
            # no temperature measurand in 2.0.1; carried as vendor data
            meter_value["custom_data"] = {"vendor_id": VENDOR_ID, "temperature": round(temperature_c, 2)}
        return meter_value

    def _meter_values(self, sample: MeterSample, context=ReadingContextEnumType.sample_periodic):
        return call.MeterValues(
            evse_id=sample.evse_id,
            meter_value=[self._meter_value(
                context, sample.energy_wh, sample.soc, sample.power_w, sample.temperature_c,
            )],
        )

    @staticmethod
    def _id_token(session: Session) -> IdTokenType:
        return IdTokenType(id_token=session.id_tag, type=IdTokenEnumType.iso14443)

    def _transaction_started(self, evse: EVSE, session: Session) -> call.TransactionEvent:
        remote = session.remote_start_id is not None
        return call.TransactionEvent(
            event_type=TransactionEventEnumType.started,
            timestamp=now_iso(),
            trigger_reason=TriggerReasonEnumType.remote_start if remote else TriggerReasonEnumType.authorized,
            seq_no=session.next_seq_no(),
            transaction_info=TransactionType(
                transaction_id=session.transaction_id,
                charging_state=ChargingStateEnumType.charging,
                remote_start_id=session.remote_start_id,
            ),
            id_token=self._id_token(session),
            evse=EVSEType(id=evse.id, connector_id=evse.connector_id),
            meter_value=[self._meter_value(ReadingContextEnumType.transaction_begin, 0)],
        )

    def _transaction_ended(self, evse: EVSE, session: Session, trigger) -> call.TransactionEvent:
        return call.TransactionEvent(
            event_type=TransactionEventEnumType.ended,
            timestamp=now_iso(),
            trigger_reason=trigger,
            seq_no=session.next_seq_no(),
            transaction_info=TransactionType(
                transaction_id=session.transaction_id,
                charging_state=ChargingStateEnumType.idle,
                stopped_reason=session.stop_reason,
            ),
            evse=EVSEType(id=evse.id, connector_id=evse.connector_id),
            meter_value=[self._meter_value(
                ReadingContextEnumType.transaction_end,
                round(session.energy_kwh * 1000),
                soc=session.soc,
            )],
        )

    def _notify_event(self, evse: EVSE, fault: Fault, cleared: bool) -> call.NotifyEvent:
        return call.NotifyEvent(
            generated_at=now_iso(),
            seq_no=0,
            event_data=[EventDataType(
                event_id=next(self._event_ids),
                timestamp=now_iso(),
                trigger=EventTriggerEnumType.alerting,
                actual_value="false" if cleared else "true",
                event_notification_type=EventNotificationEnumType.hard_wired_notification,
                component=ComponentType(name="Connector", evse=EVSEType(id=evse.id, connector_id=evse.connector_id)),
                variable=VariableType(name="Problem"),
                tech_code=fault.code.value,
                tech_info=fault.info[:500] or None,
                cleared=True if cleared else None,
            )],
        )

    # -------- lifecycle --------
    async def connect(self, simulated: bool = True) -> CommandResult:
        if self.connected:
            return CommandResult.failed("already connected")

        timings = self.config.timings
        if simulated:
            link = SimulatedCSMS(
                self.handle_inbound,
                delay=timings.sim_csms_delay_sec,
                heartbeat_interval=self.config.heartbeat_interval_sec,
            )
        else:
            link = WebSocketLink(
                f"{self.config.csms_url}/{self.config.station_id}",
                self.handle_inbound,
                self._on_link_lost,
            )
            try:
                await link.open()
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                self.log("ERR", f"Connection to {link.url} failed: {e}")
                return CommandResult.failed(e)

        self.link = link
        self.cp = EVSEChargePoint(self.config.station_id, StationConnection(self), self)
        self.connected = True
        self.booted = False
        self.heartbeat_interval = self.config.heartbeat_interval_sec
        self.log("SYS", "[SIM] Connected to simulated CSMS" if simulated else f"Connected to {link.url}")

        def bring_up(evse: EVSE):
            self._cancel_timer(evse)
            evse.force_available()

        self._sweep(bring_up, "connect")
        self._boot_task = self._spawn(self._boot_sequence(BootReasonEnumType.power_up))
        return CommandResult(ok=True)

    async def _boot_sequence(self, reason):
        await asyncio.sleep(self.config.timings.boot_delay_sec)
        result = await self.send_call(self._boot_notification(reason))
        if result is not None:
            if result.status != RegistrationStatusEnumType.accepted:
                self.log("ERR", f"BootNotification answered {result.status}")
            if result.interval:
                self.heartbeat_interval = result.interval
        if not self.connected:
            return
        self.booted = True
        for evse in self.model:
            self._post(self._status_notification(evse))
        self._start_heartbeat()

    def _start_heartbeat(self):
        self._cancel(self._heartbeat_task)
        self._heartbeat_task = self._spawn(self._heartbeat_loop())

    async def _heartbeat_loop(self):
        while self.connected:
            await asyncio.sleep(self.heartbeat_interval)
            await self.send_call(call.Heartbeat())

    async def disconnect(self) -> CommandResult:
        if not self.connected:
            return CommandResult.failed("not connected")

        self._cancel(self._heartbeat_task)
        self._cancel(self._boot_task)

        def terminate(evse: EVSE):
            if evse.has_active_session:
                self._end_session(evse, ReasonEnumType.local, TriggerReasonEnumType.stop_authorized, settle=False)

        self._sweep(terminate, "disconnect")
        # let the final TransactionEvents reach the wire before the link goes away
        await asyncio.sleep(0)

        self.connected = False
        self.booted = False

        def shut_down(evse: EVSE):
            self._cancel_timer(evse)
            dropped = evse.make_inoperative()
            if dropped is not None:
                self.events.emit("fault_cleared", evse.id, dropped)

        self._sweep(shut_down, "disconnect")

        link, self.link, self.cp = self.link, None, None
        for task in list(self._background):
            self._cancel(task)
        await link.close()
        self.log("SYS", "Disconnected")
        return CommandResult(ok=True)

    def _on_link_lost(self):
        self.log("ERR", "Connection to CSMS lost")
        if self.connected:
            self._spawn(self.disconnect())

    # -------- inbound frames --------
    async def handle_inbound(self, raw):
        try:
            msg = decode(raw)
        except MalformedMessage as e:
            logger.warning(f"Discarding malformed frame {str(raw)[:80]!r}: {e.cause}")
            self.log("ERR", f"Malformed message discarded: {e.cause}")
            return

        if not self.connected or self.cp is None:
            self.log("SYS", f"Ignored while disconnected: {summarize(msg)}")
            return

        if isinstance(msg, Call):
            self.log("CSMS", summarize(msg))
            await self.cp.dispatch(msg, raw)
        elif isinstance(msg, CallResult):
            self.log("RX", summarize(msg))
            self._resolve(msg)
        else:
            self.log("ERR", summarize(msg))
            self._resolve(msg)

    # -------- session commands --------
    def _evse(self, evse_id: int) -> Optional[EVSE]:
        return self.model.evses.get(evse_id)

    def start_session(self, evse_id: int, id_tag: str, remote_start_id: int = None) -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        if self.resetting:
            return CommandResult.failed("station is resetting")
        evse = self._evse(evse_id)
        if evse is None:
            return CommandResult.failed(f"unknown EVSE {evse_id}")

        plan = ChargePlan.from_config(self.config)
        session = Session(
            id_tag=id_tag,
            soc_start=plan.soc_start,
            soc_end=plan.soc_end,
            duration_sec=plan.duration_sec,
            battery_capacity_kwh=plan.battery_capacity_kwh,
            remote_start_id=remote_start_id,
        )
        try:
            evse.begin_session(session)
        except InvalidTransition as e:
            self.log("SYS", str(e))
            return CommandResult.failed(e)

        self.log(
            "SYS",
            f"Session started | EVSE {evse.id} | txId={session.transaction_id} | "
            f"SOC {plan.soc_start:g}%->{plan.soc_end:g}% | {self.config.charge_duration_min:g} min | "
            f"{self.config.estimated_power_kw:.1f} kW",
        )
        self._post(call.Authorize(id_token=self._id_token(session)))
        self._start_timer(evse, self._drive_session(evse, session, plan))
        return CommandResult(ok=True, transaction_id=session.transaction_id)

    async def _drive_session(self, evse: EVSE, session: Session, plan: ChargePlan):
        timings = self.config.timings
        await asyncio.sleep(timings.ramp_up_sec)
        if evse.session is not session:
            return
        evse.mark_charging()
        session.reported_started = True
        self._post(self._transaction_started(evse, session))

        reached = await metering_loop(evse, plan, timings.tick_sec, self._on_sample, self._on_report)
        if not reached:
            return
        self.log("SYS", f"Target SOC {plan.soc_end:g}% reached on EVSE {evse.id}, ending session")
        await asyncio.sleep(timings.completion_sec)
        if evse.session is session and evse.status == EVSEState.CHARGING:
            self._end_session(evse, ReasonEnumType.ev_disconnected, TriggerReasonEnumType.ev_departed)

    def _on_sample(self, sample: MeterSample):
        self.events.emit("telemetry", sample)
        if sample.temperature_c >= self.config.max_temperature_c:
            self.inject_fault(sample.evse_id, FaultCode.HIGH_TEMPERATURE,
                              f"connector temperature {sample.temperature_c:.1f} C")

    def _on_report(self, sample: MeterSample):
        self._post(self._meter_values(sample))

    def _end_session(self, evse: EVSE, reason, trigger, settle: bool = True, release: bool = True) -> Session:
        """End the session; without ``settle`` or ``release`` the EVSE stays Finishing."""
        session = evse.finish_session(reason)
        self._cancel_timer(evse)
        self.log(
            "SYS",
            f"Session ended | EVSE {evse.id} | reason={reason} | "
            f"energy={session.energy_kwh:.3f} kWh | SOC={session.soc:.1f}%",
        )
        if session.reported_started:
            self._post(self._transaction_ended(evse, session, trigger))
        if settle:
            self._start_timer(evse, self._settle(evse, session))
        elif release:
            evse.release()
        return session

    async def _settle(self, evse: EVSE, session: Session):
        await asyncio.sleep(self.config.timings.settle_sec)
        if evse.session is session:
            evse.release()

    def stop_session(self, evse_id: int, reason: str = "Local") -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        evse = self._evse(evse_id)
        if evse is None:
            return CommandResult.failed(f"unknown EVSE {evse_id}")
        try:
            reason = ReasonEnumType(reason)
        except ValueError:
            return CommandResult.failed(f"unknown stop reason {reason}")

        trigger = TriggerReasonEnumType.remote_stop if reason == ReasonEnumType.remote else TriggerReasonEnumType.stop_authorized
        try:
            session = self._end_session(evse, reason, trigger)
        except InvalidTransition as e:
            self.log("SYS", str(e))
            return CommandResult.failed(e)
        return CommandResult(ok=True, transaction_id=session.transaction_id)

    # -------- faults & status --------
    def inject_fault(self, evse_id: int, code, info: str = "") -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        evse = self._evse(evse_id)
        if evse is None:
            return CommandResult.failed(f"unknown EVSE {evse_id}")
        try:
            fault = Fault(FaultCode(code), info)
        except ValueError:
            return CommandResult.failed(f"unknown fault code {code}")

        try:
            aborted = evse.raise_fault(fault)
        except InvalidTransition as e:
            self.log("SYS", str(e))
            return CommandResult.failed(e)
        self._cancel_timer(evse)

        self.log("ERR", f"Fault {fault.code.value} on EVSE {evse.id}: {info}")
        if aborted is not None:
            self.log("SYS", f"Session {aborted.transaction_id} aborted by fault")
            if aborted.reported_started:
                aborted.stop_reason = ReasonEnumType.other
                self._post(self._transaction_ended(evse, aborted, TriggerReasonEnumType.abnormal_condition))
        self._post(self._notify_event(evse, fault, cleared=False))
        self.events.emit("fault_raised", evse.id, fault)
        return CommandResult(ok=True, transaction_id=aborted.transaction_id if aborted else None)

    def clear_fault(self, evse_id: int) -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        evse = self._evse(evse_id)
        if evse is None:
            return CommandResult.failed(f"unknown EVSE {evse_id}")
        try:
            fault = evse.clear_fault()
        except InvalidTransition as e:
            return CommandResult.failed(e)
        self.log("SYS", f"Fault {fault.code.value} cleared on EVSE {evse.id}")
        self._post(self._notify_event(evse, fault, cleared=True))
        self.events.emit("fault_cleared", evse.id, fault)
        return CommandResult(ok=True)

    def set_status(self, evse_id: int, status) -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        evse = self._evse(evse_id)
        if evse is None:
            return CommandResult.failed(f"unknown EVSE {evse_id}")
        try:
            evse.inject_status(EVSEState(status))
        except (ValueError, InvalidTransition) as e:
            return CommandResult.failed(e)
        return CommandResult(ok=True)

    # -------- CSMS-initiated operations --------
    def evse_for_remote_start(self, evse_id: int = None) -> EVSE:
        if self.resetting:
            raise ProtocolRejection("InvalidState", "station is resetting")
        if evse_id is None:
            evse = self.model.first_available()
            if evse is None:
                raise ProtocolRejection("NoEVSEAvailable", "no EVSE is Available")
            return evse
        evse = self._evse(evse_id)
        if evse is None:
            raise ProtocolRejection("UnknownEVSE", f"EVSE {evse_id} does not exist")
        if evse.status != EVSEState.AVAILABLE:
            raise ProtocolRejection("InvalidState", f"EVSE {evse_id} is {evse.status.value}")
        return evse

    def evse_for_transaction(self, transaction_id: str) -> EVSE:
        evse = self.model.get_by_tx(transaction_id)
        if evse is None:
            raise ProtocolRejection("UnknownTransaction", f"no active session with txId {transaction_id}")
        return evse

    def change_availability(self, operative: bool, evse_id: int = None):
        targets = [self._evse(evse_id)] if evse_id is not None else list(self.model)

        def apply(evse: EVSE):
            before = evse.connector_status
            if operative:
                evse.make_operative()
            else:
                if evse.has_active_session:
                    self._end_session(evse, ReasonEnumType.remote, TriggerReasonEnumType.remote_stop,
                                      settle=False, release=False)
                self._cancel_timer(evse)
                dropped = evse.make_inoperative()
                if dropped is not None:
                    self._post(self._notify_event(evse, dropped, cleared=True))
                    self.events.emit("fault_cleared", evse.id, dropped)
            self.log("SYS", f"ChangeAvailability -> EVSE {evse.id} {evse.status.value}")
            # announce even when nothing changed
            if evse.connector_status == before:
                self._post(self._status_notification(evse))

        for evse in targets:
            if evse is None:
                self.log("SYS", f"ChangeAvailability for unknown EVSE {evse_id} ignored")
                continue
            try:
                apply(evse)
            except Exception:
                logger.exception(f"ChangeAvailability failed on EVSE {evse.id}")

    def schedule_reset(self):
        self._cancel(self._boot_task)
        self._boot_task = self._spawn(self._reset())

    async def _reset(self):
        self.log("SYS", "Resetting station")
        self._cancel(self._heartbeat_task)

        def stop(evse: EVSE):
            if evse.has_active_session:
                self._end_session(evse, ReasonEnumType.remote, TriggerReasonEnumType.reset_command)

        self.resetting = True
        self._sweep(stop, "reset")
        self.booted = False
        try:
            await asyncio.sleep(self.config.timings.reset_delay_sec)
            if not self.connected:
                return

            def reboot(evse: EVSE):
                if evse.has_active_session:
                    self._end_session(evse, ReasonEnumType.remote, TriggerReasonEnumType.reset_command, settle=False)
                self._cancel_timer(evse)
                evse.force_available()

            self._sweep(reboot, "reset")
        finally:
            self.resetting = False
        await self._boot_sequence(BootReasonEnumType.remote_reset)

    def trigger_message(self, requested: str, evse_id: int = None):
        targets = [self._evse(evse_id)] if evse_id is not None else list(self.model)
        targets = [evse for evse in targets if evse is not None]
        if requested == "BootNotification":
            self._post(self._boot_notification(BootReasonEnumType.triggered))
        elif requested == "Heartbeat":
            self._post(call.Heartbeat())
        elif requested == "StatusNotification":
            for evse in targets:
                self._post(self._status_notification(evse))
        elif requested == "MeterValues":
            for evse in targets:
                if evse.status == EVSEState.CHARGING and evse.session is not None:
                    sample = MeterSample(evse.id, evse.session.ticks, evse.power_kw, evse.session.soc,
                                         evse.session.energy_kwh, evse.temperature_c)
                    self._post(self._meter_values(sample, ReadingContextEnumType.trigger))
        else:
            self.log("SYS", f"TriggerMessage {requested} ignored")

    # -------- manual & configuration --------
    async def send_manual(self, action: str, payload: dict = None) -> CommandResult:
        if not self.connected:
            return CommandResult.failed("station is not connected")
        cls = getattr(call, action, None)
        if cls is None or not is_dataclass(cls):
            return CommandResult.failed(f"unknown action {action}")
        try:
            request = cls(**camel_to_snake_case(payload or {}))
        except TypeError as e:
            return CommandResult.failed(f"invalid {action} payload: {e}")
        result = await self.send_call(request)
        if result is None:
            return CommandResult.failed(f"no result for {action}")
        return CommandResult(ok=True, payload=snake_to_camel_case(remove_nones(asdict(result))))

    def update_configuration(self, changes: dict) -> CommandResult:
        if self.connected:
            locked = set(changes) - StationConfig.SESSION_FIELDS
            if locked:
                return CommandResult.failed(ConfigurationLocked(locked))
        try:
            config = self.config.updated(changes)
        except ValidationError as e:
            return CommandResult.failed(e)

        rebuild = (config.connectors, config.connector_type) != (self.config.connectors, self.config.connector_type)
        self.config = config
        if rebuild:
            self.model = self._build_model()
        self.log("SYS", f"Configuration updated: {', '.join(sorted(changes))}")
        return CommandResult(ok=True)

    def apply_preset(self, name: str) -> CommandResult:
        if name not in SESSION_PRESETS:
            return CommandResult.failed(f"unknown preset {name}")
        soc_start, soc_end, minutes = SESSION_PRESETS[name]
        return self.update_configuration(
            {"soc_start": soc_start, "soc_end": soc_end, "charge_duration_min": minutes}
        )

    def snapshot(self) -> StationView:
        return station_view(self)
