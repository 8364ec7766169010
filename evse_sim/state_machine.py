import itertools
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import InvalidTransition


class EVSEState(str, Enum):
    AVAILABLE = "Available"
    PREPARING = "Preparing"
    CHARGING = "Charging"
    SUSPENDED_EV = "SuspendedEV"
    SUSPENDED_EVSE = "SuspendedEVSE"
    FINISHING = "Finishing"
    RESERVED = "Reserved"
    UNAVAILABLE = "Unavailable"
    FAULTED = "Faulted"


# states an operator may inject directly on an idle EVSE
IDLE_STATES = frozenset({
    EVSEState.AVAILABLE,
    EVSEState.RESERVED,
    EVSEState.SUSPENDED_EV,
    EVSEState.SUSPENDED_EVSE,
})

# internal state -> OCPP 2.0.1 ConnectorStatusEnumType value
CONNECTOR_STATUS = {
    EVSEState.AVAILABLE: "Available",
    EVSEState.PREPARING: "Occupied",
    EVSEState.CHARGING: "Occupied",
    EVSEState.SUSPENDED_EV: "Occupied",
    EVSEState.SUSPENDED_EVSE: "Occupied",
    EVSEState.FINISHING: "Occupied",
    EVSEState.RESERVED: "Reserved",
    EVSEState.UNAVAILABLE: "Unavailable",
    EVSEState.FAULTED: "Faulted",
}


class FaultCode(str, Enum):
    CONNECTOR_LOCK_FAILURE = "ConnectorLockFailure"
    EV_COMMUNICATION_ERROR = "EVCommunicationError"
    GROUND_FAILURE = "GroundFailure"
    HIGH_TEMPERATURE = "HighTemperature"
    INTERNAL_ERROR = "InternalError"
    OTHER_ERROR = "OtherError"
    OVER_CURRENT_FAILURE = "OverCurrentFailure"
    OVER_VOLTAGE = "OverVoltage"
    POWER_METER_FAILURE = "PowerMeterFailure"
    POWER_SWITCH_FAILURE = "PowerSwitchFailure"
    READER_FAILURE = "ReaderFailure"
    UNDER_VOLTAGE = "UnderVoltage"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Fault:
    code: FaultCode
    info: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    id_tag: str
    soc_start: float
    soc_end: float
    duration_sec: float
    battery_capacity_kwh: float
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    remote_start_id: Optional[int] = None
    started_at: datetime = field(default_factory=utcnow)
    energy_kwh: float = 0.0
    soc: float = field(init=False)
    ticks: int = 0
    reported_started: bool = False
    stop_reason: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.soc_start < self.soc_end <= 100:
            raise ValueError(f"invalid SOC window {self.soc_start}..{self.soc_end}")
        if self.duration_sec <= 0:
            raise ValueError("session duration must be positive")
        self.soc = self.soc_start
        self._seq = itertools.count()

    @property
    def target_energy_kwh(self) -> float:
        return self.battery_capacity_kwh * (self.soc_end - self.soc_start) / 100

    @property
    def progress_pct(self) -> float:
        return min(100.0, (self.soc - self.soc_start) / (self.soc_end - self.soc_start) * 100)

    def next_seq_no(self) -> int:
        return next(self._seq)

    def elapsed_sec(self, now: datetime = None) -> float:
        return ((now or utcnow()) - self.started_at).total_seconds()


StatusListener = Callable[["EVSE", EVSEState, EVSEState], None]


class EVSE:
    """One physical connector and its charging state.

    Transition methods either apply completely or raise
    :class:`InvalidTransition` without touching anything.
    """

    def __init__(self, evse_id: int, connector_type, ambient_c: float = 25.0,
                 on_status: StatusListener = None):
        self.id = evse_id
        self.connector_id = 1
        self.connector_type = connector_type
        self.status = EVSEState.AVAILABLE
        self.session: Optional[Session] = None
        self.fault: Optional[Fault] = None
        self.temperature_c = ambient_c
        self.power_kw = 0.0
        # ramp-up / metering / completion / settle; at most one at a time
        self.timer = None
        self._on_status = on_status

    def __repr__(self):
        return f"EVSE(id={self.id}, status={self.status.value})"

    @property
    def connector_status(self) -> str:
        return CONNECTOR_STATUS[self.status]

    @property
    def has_active_session(self) -> bool:
        return self.session is not None and self.status in (EVSEState.PREPARING, EVSEState.CHARGING)

    def _set(self, status: EVSEState):
        old, self.status = self.status, status
        if old != status and self._on_status is not None:
            self._on_status(self, old, status)

    def _require(self, command: str, *allowed: EVSEState):
        if self.status not in allowed:
            raise InvalidTransition(self.id, self.status, command)

    def begin_session(self, session: Session):
        self._require("start a session", EVSEState.AVAILABLE)
        self.session = session
        self.power_kw = 0.0
        self._set(EVSEState.PREPARING)

    def mark_charging(self):
        self._require("begin charging", EVSEState.PREPARING)
        self._set(EVSEState.CHARGING)

    def finish_session(self, reason: str) -> Session:
        if not self.has_active_session:
            raise InvalidTransition(self.id, self.status, "stop a session")
        session = self.session
        session.stop_reason = reason
        self.power_kw = 0.0
        self._set(EVSEState.FINISHING)
        return session

    def release(self):
        """Drop the settled session; a Finishing EVSE becomes Available."""
        self.session = None
        self.power_kw = 0.0
        if self.status == EVSEState.FINISHING:
            self._set(EVSEState.AVAILABLE)

    def raise_fault(self, fault: Fault) -> Optional[Session]:
        """Enter Faulted, returning the session the fault aborted, if any."""
        if self.status == EVSEState.UNAVAILABLE:
            raise InvalidTransition(self.id, self.status, "raise a fault")
        aborted = self.session if self.has_active_session else None
        if aborted is not None:
            aborted.stop_reason = "Other"
        self.session = None
        self.power_kw = 0.0
        self.fault = fault
        self._set(EVSEState.FAULTED)
        return aborted

    def clear_fault(self) -> Fault:
        self._require("clear a fault", EVSEState.FAULTED)
        fault, self.fault = self.fault, None
        self._set(EVSEState.AVAILABLE)
        return fault

    def make_inoperative(self) -> Optional[Fault]:
        """Enter Unavailable; any active session must already be ended."""
        if self.has_active_session:
            raise InvalidTransition(self.id, self.status, "become inoperative")
        dropped, self.fault = self.fault, None
        self.session = None
        self.power_kw = 0.0
        self._set(EVSEState.UNAVAILABLE)
        return dropped

    def make_operative(self) -> bool:
        if self.status != EVSEState.UNAVAILABLE:
            return False
        self._set(EVSEState.AVAILABLE)
        return True

    def inject_status(self, status: EVSEState):
        if status not in IDLE_STATES:
            raise InvalidTransition(self.id, self.status, f"inject {status.value}")
        self._require(f"inject {status.value}", *IDLE_STATES)
        self._set(status)

    def force_available(self):
        """Station-wide reset to Available (connect, reboot), keeping faults."""
        self.session = None
        self.power_kw = 0.0
        if self.fault is None:
            self._set(EVSEState.AVAILABLE)


class EVSEModel:
    def __init__(self, connectors: int, connector_type, ambient_c: float = 25.0,
                 on_status: StatusListener = None):
        self.evses: Dict[int, EVSE] = {
            i: EVSE(i, connector_type, ambient_c, on_status) for i in range(1, connectors + 1)
        }

    def __iter__(self):
        return iter(self.evses.values())

    def __len__(self):
        return len(self.evses)

    def get(self, evse_id: int) -> EVSE:
        return self.evses[evse_id]

    def get_by_tx(self, transaction_id: str) -> Optional[EVSE]:
        for evse in self.evses.values():
            if evse.has_active_session and evse.session.transaction_id == transaction_id:
                return evse
        return None

    def first_available(self) -> Optional[EVSE]:
        for evse in self.evses.values():
            if evse.status == EVSEState.AVAILABLE:
                return evse
        return None
