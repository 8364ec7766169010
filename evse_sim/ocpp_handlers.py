import logging

from ocpp.exceptions import NotImplementedError as OCPPNotImplementedError
from ocpp.messages import Call
from ocpp.routing import after, on
from ocpp.v201 import ChargePoint as CP
from ocpp.v201 import call_result
from ocpp.v201.datatypes import StatusInfoType
from ocpp.v201.enums import (
    Action,
    ChangeAvailabilityStatusEnumType,
    OperationalStatusEnumType,
    RequestStartStopStatusEnumType,
    ResetStatusEnumType,
    TriggerMessageStatusEnumType,
)

from .codec import encode_error
from .errors import ProtocolRejection

logger = logging.getLogger(__name__)


def _status_info(reason_code: str, info: str = None) -> StatusInfoType:
    return StatusInfoType(reason_code=reason_code[:20], additional_info=info[:512] if info else None)


def _evse_id(evse) -> int:
    # an absent EVSE or id 0 addresses the whole station
    if not evse:
        return None
    return evse.get("id") or None


class EVSEChargePoint(CP):
    """Routes CSMS-initiated CALLs onto the station's command surface.

    Every inbound CALL gets exactly one reply: the handlers below return a
    CALLRESULT, the ocpp library turns schema violations and handler
    exceptions into a CALLERROR, and actions without a handler are answered
    with ``NotImplemented`` by :meth:`dispatch`.
    """

    def __init__(self, id, connection, station):
        super().__init__(id, connection)
        self.station = station
        self.link = connection

    def handles(self, action: str) -> bool:
        return "_on_action" in self.route_map.get(action, {})

    async def dispatch(self, msg: Call, raw: str):
        if not self.handles(msg.action):
            logger.warning(f"No handler for {msg.action}, replying NotImplemented")
            await self.link.send(encode_error(
                msg.unique_id,
                OCPPNotImplementedError.code,
                f"Action {msg.action} not supported",
                {},
            ))
            return
        await self.route_message(raw)

    # ====== CSMS -> EVSE ======

    @on(Action.request_start_transaction)
    async def on_request_start(self, id_token, remote_start_id, evse_id=None, **kwargs):
        try:
            evse = self.station.evse_for_remote_start(evse_id)
        except ProtocolRejection as e:
            self.station.log("SYS", f"RequestStartTransaction rejected: {e}")
            return call_result.RequestStartTransaction(
                status=RequestStartStopStatusEnumType.rejected,
                status_info=_status_info(e.reason_code, e.info),
            )

        result = self.station.start_session(evse.id, id_token["id_token"], remote_start_id=remote_start_id)
        if not result:
            return call_result.RequestStartTransaction(
                status=RequestStartStopStatusEnumType.rejected,
                status_info=_status_info("InvalidState", result.error),
            )
        self.station.log("SYS", f"Remote start accepted | EVSE {evse.id} | idTag={id_token['id_token']}")
        return call_result.RequestStartTransaction(
            status=RequestStartStopStatusEnumType.accepted,
            transaction_id=result.transaction_id,
        )

    @on(Action.request_stop_transaction)
    async def on_request_stop(self, transaction_id, **kwargs):
        try:
            evse = self.station.evse_for_transaction(transaction_id)
        except ProtocolRejection as e:
            self.station.log("SYS", f"RequestStopTransaction rejected: {e}")
            return call_result.RequestStopTransaction(
                status=RequestStartStopStatusEnumType.rejected,
                status_info=_status_info(e.reason_code, e.info),
            )

        result = self.station.stop_session(evse.id, reason="Remote")
        if not result:
            return call_result.RequestStopTransaction(
                status=RequestStartStopStatusEnumType.rejected,
                status_info=_status_info("InvalidState", result.error),
            )
        self.station.log("SYS", f"Remote stop accepted | txId={transaction_id}")
        return call_result.RequestStopTransaction(status=RequestStartStopStatusEnumType.accepted)

    @on(Action.reset)
    async def on_reset(self, type, evse_id=None, **kwargs):
        self.station.log("SYS", f"Reset {type} accepted")
        return call_result.Reset(status=ResetStatusEnumType.accepted)

    @after(Action.reset)
    def after_reset(self, type, evse_id=None, **kwargs):
        self.station.schedule_reset()

    @on(Action.change_availability)
    async def on_change_availability(self, operational_status, evse=None, **kwargs):
        operative = operational_status == OperationalStatusEnumType.operative
        self.station.change_availability(operative, _evse_id(evse))
        return call_result.ChangeAvailability(status=ChangeAvailabilityStatusEnumType.accepted)

    @on(Action.trigger_message)
    async def on_trigger_message(self, requested_message, evse=None, **kwargs):
        self.station.log("SYS", f"TriggerMessage -> {requested_message}")
        return call_result.TriggerMessage(status=TriggerMessageStatusEnumType.accepted)

    @after(Action.trigger_message)
    def after_trigger_message(self, requested_message, evse=None, **kwargs):
        self.station.trigger_message(requested_message, _evse_id(evse))
