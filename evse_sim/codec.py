"""OCPP-J envelope encoding and decoding.

Frames are JSON arrays::

    [2, "<id>", "<action>", {payload}]                     CALL
    [3, "<id>", {payload}]                                 CALLRESULT
    [4, "<id>", "<code>", "<description>", {details}]      CALLERROR

Decoding never touches station state; anything that is not one of the three
shapes above raises :class:`MalformedMessage`.
"""
import json
import uuid
from typing import Tuple, Union

from ocpp.messages import Call, CallError, CallResult, MessageType

from .errors import MalformedMessage

Message = Union[Call, CallResult, CallError]

_ARITY = {
    MessageType.Call: (4,),
    MessageType.CallResult: (3,),
    # errorDetails is required by OCPP-J but some servers leave it out
    MessageType.CallError: (4, 5),
}


def new_unique_id() -> str:
    return str(uuid.uuid4())


def encode_call(action: str, payload: dict, unique_id: str = None) -> Tuple[str, str]:
    unique_id = unique_id or new_unique_id()
    return unique_id, Call(unique_id=unique_id, action=action, payload=payload).to_json()


def encode_result(unique_id: str, payload: dict) -> str:
    return CallResult(unique_id=unique_id, payload=payload).to_json()


def encode_error(unique_id: str, code: str, description: str, details: dict = None) -> str:
    return CallError(
        unique_id=unique_id,
        error_code=code,
        error_description=description,
        error_details=details or {},
    ).to_json()


def decode(raw) -> Message:
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"not valid JSON: {e}", raw) from e

    if not isinstance(frame, list) or not frame:
        raise MalformedMessage("envelope must be a non-empty array", raw)

    message_type = frame[0]
    if type(message_type) is not int or message_type not in _ARITY:
        raise MalformedMessage(f"unknown MessageTypeId {message_type!r}", raw)
    if len(frame) not in _ARITY[message_type]:
        raise MalformedMessage(
            f"MessageTypeId {message_type} expects {' or '.join(map(str, _ARITY[message_type]))} "
            f"elements, got {len(frame)}",
            raw,
        )
    if not isinstance(frame[1], str):
        raise MalformedMessage("unique id must be a string", raw)

    if message_type == MessageType.Call:
        _, unique_id, action, payload = frame
        if not isinstance(action, str) or not isinstance(payload, dict):
            raise MalformedMessage("CALL needs an action name and an object payload", raw)
        return Call(unique_id, action, payload)

    if message_type == MessageType.CallResult:
        _, unique_id, payload = frame
        if not isinstance(payload, dict):
            raise MalformedMessage("CALLRESULT payload must be an object", raw)
        return CallResult(unique_id, payload)

    unique_id, code, description = frame[1:4]
    details = frame[4] if len(frame) == 5 else {}
    if not isinstance(code, str):
        raise MalformedMessage("CALLERROR code must be a string", raw)
    return CallError(unique_id, code, description, details)


def summarize(msg: Message, limit: int = 120) -> str:
    """One-line human description of a frame for the log stream."""
    if isinstance(msg, Call):
        return f"{msg.action} [{msg.unique_id}] {json.dumps(msg.payload)[:limit]}"
    if isinstance(msg, CallResult):
        return f"CallResult [{msg.unique_id}] {json.dumps(msg.payload)[:limit]}"
    return f"CallError [{msg.unique_id}] {msg.error_code}: {msg.error_description}"
