from dataclasses import dataclass
from typing import Optional


class SimulatorError(Exception):
    pass


class MalformedMessage(SimulatorError):
    """Inbound frame that is not a valid OCPP-J envelope."""

    def __init__(self, cause: str, raw=None):
        super().__init__(cause)
        self.cause = cause
        self.raw = raw


class ProtocolRejection(SimulatorError):
    """CSMS request understood but its precondition does not hold."""

    def __init__(self, reason_code: str, info: str = ""):
        super().__init__(info or reason_code)
        self.reason_code = reason_code
        self.info = info


class InvalidTransition(SimulatorError):
    def __init__(self, evse_id: int, status, command: str):
        super().__init__(f"EVSE {evse_id}: cannot {command} while {getattr(status, 'value', status)}")
        self.evse_id = evse_id
        self.status = status
        self.command = command


class ConfigurationLocked(SimulatorError):
    def __init__(self, fields):
        fields = sorted(fields)
        super().__init__(f"cannot change {', '.join(fields)} while connected")
        self.fields = fields


@dataclass
class CommandResult:
    """Outcome of a local command; a failed result means nothing changed."""

    ok: bool
    error: Optional[str] = None
    transaction_id: Optional[str] = None
    payload: Optional[dict] = None

    def __bool__(self):
        return self.ok

    @classmethod
    def failed(cls, error) -> "CommandResult":
        return cls(ok=False, error=str(error))
