import os
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

CSMS_URL = os.getenv("CSMS_URL", "ws://127.0.0.1:9000/ocpp")

STATION_ID = os.getenv("STATION_ID", "EVCS-001")
VENDOR = os.getenv("VENDOR", "VoltCore Systems")
MODEL = os.getenv("MODEL", "VC-150DC")
SERIAL_NUMBER = os.getenv("SERIAL_NUMBER", "VC2024000001")
FIRMWARE_VERSION = os.getenv("FIRMWARE_VERSION", "2.1.4")

CONNECTORS = int(os.getenv("CONNECTORS", "1"))
CONNECTOR_TYPE = os.getenv("CONNECTOR_TYPE", "CCS2")
MAX_POWER_KW = float(os.getenv("MAX_POWER_KW", "50"))           # 50 kW DC
VOLTAGE_V = float(os.getenv("VOLTAGE_V", "400"))

BATTERY_CAPACITY_KWH = float(os.getenv("BATTERY_CAPACITY_KWH", "60"))
SOC_START = float(os.getenv("SOC_START", "20"))
SOC_END = float(os.getenv("SOC_END", "100"))
CHARGE_DURATION_MIN = float(os.getenv("CHARGE_DURATION_MIN", "5"))
CHARGE_MODE = os.getenv("CHARGE_MODE", "linear")

METER_INTERVAL_TICKS = int(os.getenv("METER_INTERVAL_TICKS", "30"))  # MeterValues every 30 ticks
SEND_HEARTBEAT_SEC = int(os.getenv("SEND_HEARTBEAT_SEC", "30"))      # heartbeat
RESPONSE_TIMEOUT_SEC = float(os.getenv("RESPONSE_TIMEOUT_SEC", "30"))
SIM_CSMS_DELAY_SEC = float(os.getenv("SIM_CSMS_DELAY_SEC", "0.35"))
PRICE_PER_KWH = float(os.getenv("PRICE_PER_KWH", "1.5"))
HTTP_PORT = int(os.getenv("HTTP_PORT", "7071"))
AUTOCONNECT = os.getenv("AUTOCONNECT", "")                          # "", "sim" or "ws"


class ConnectorType(str, Enum):
    CCS2 = "CCS2"
    CHADEMO = "CHAdeMO"
    TYPE2 = "Type2"
    TESLA = "Tesla"
    GBT = "GB/T"


class ChargeMode(str, Enum):
    LINEAR = "linear"
    CURVE = "curve"


# name -> (soc_start, soc_end, charge_duration_min)
SESSION_PRESETS = {
    "quick": (20, 100, 5),
    "partial": (10, 80, 3),
    "full": (0, 100, 10),
}


class Timings(BaseModel):
    """Delays of the simulated timeline, in real seconds."""

    tick_sec: float = Field(default=1.0, gt=0)
    ramp_up_sec: float = Field(default=1.5, ge=0)
    completion_sec: float = Field(default=0.5, ge=0)
    settle_sec: float = Field(default=2.0, ge=0)
    boot_delay_sec: float = Field(default=0.3, ge=0)
    reset_delay_sec: float = Field(default=2.0, ge=0)
    sim_csms_delay_sec: float = Field(default=SIM_CSMS_DELAY_SEC, ge=0)
    response_timeout_sec: float = Field(default=RESPONSE_TIMEOUT_SEC, gt=0)


class StationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # fields that may still change while a CSMS connection is up
    SESSION_FIELDS: ClassVar[frozenset] = frozenset(
        {"battery_capacity_kwh", "soc_start", "soc_end", "charge_duration_min", "charge_mode"}
    )

    csms_url: str = CSMS_URL
    station_id: str = STATION_ID
    vendor: str = Field(default=VENDOR, max_length=50)
    model: str = Field(default=MODEL, max_length=20)
    serial_number: str = Field(default=SERIAL_NUMBER, max_length=25)
    firmware_version: str = Field(default=FIRMWARE_VERSION, max_length=50)

    connectors: int = Field(default=CONNECTORS, ge=1, le=32)
    connector_type: ConnectorType = ConnectorType(CONNECTOR_TYPE)
    max_power_kw: float = Field(default=MAX_POWER_KW, gt=0, le=350)
    voltage_v: float = Field(default=VOLTAGE_V, ge=100, le=1000)
    heartbeat_interval_sec: int = Field(default=SEND_HEARTBEAT_SEC, ge=1)

    battery_capacity_kwh: float = Field(default=BATTERY_CAPACITY_KWH, gt=0, le=200)
    soc_start: float = Field(default=SOC_START, ge=0, le=99)
    soc_end: float = Field(default=SOC_END, ge=1, le=100)
    charge_duration_min: float = Field(default=CHARGE_DURATION_MIN, gt=0, le=480)
    charge_mode: ChargeMode = ChargeMode(CHARGE_MODE)

    meter_interval_ticks: int = Field(default=METER_INTERVAL_TICKS, ge=1)
    ambient_temp_c: float = 25.0
    max_temperature_c: float = 85.0
    price_per_kwh: float = Field(default=PRICE_PER_KWH, ge=0)
    timings: Timings = Field(default_factory=Timings)

    @model_validator(mode="after")
    def _check_soc_window(self):
        if self.soc_start >= self.soc_end:
            raise ValueError(f"soc_start ({self.soc_start}) must be below soc_end ({self.soc_end})")
        return self

    def updated(self, changes: dict) -> "StationConfig":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        if isinstance(changes.get("timings"), dict):
            changes = {**changes, "timings": {**data["timings"], **changes["timings"]}}
        return StationConfig.model_validate({**data, **changes})

    @property
    def energy_needed_kwh(self) -> float:
        return (self.soc_end - self.soc_start) / 100 * self.battery_capacity_kwh

    @property
    def estimated_power_kw(self) -> float:
        return self.energy_needed_kwh / (self.charge_duration_min / 60)
