"""Read PowerQueen LiFePO4 battery BMS data over Bluetooth Low Energy."""

from .battery import BatteryInfo
from .commands import (
    BMS_CHARACTERISTIC_ID,
    PQ_COMMANDS,
    Command,
    CommandCatalog,
    FrameKind,
)
from .decoder import (
    BatteryTelemetry,
    SerialNumber,
    VersionInfo,
    decode_battery_telemetry,
    decode_frame,
    decode_serial_number,
    decode_version,
)
from .exceptions import (
    BMSError,
    DecodeError,
    PollCancelledError,
    PollTimeoutError,
    TransportError,
    TruncatedFrameError,
    UnknownCommandError,
)
from .poller import Poller, PollResult, PollState
from .request import Request

__all__ = [
    "BMS_CHARACTERISTIC_ID",
    "PQ_COMMANDS",
    "BMSError",
    "BatteryInfo",
    "BatteryTelemetry",
    "Command",
    "CommandCatalog",
    "DecodeError",
    "FrameKind",
    "PollCancelledError",
    "PollResult",
    "PollState",
    "PollTimeoutError",
    "Poller",
    "Request",
    "SerialNumber",
    "TransportError",
    "TruncatedFrameError",
    "UnknownCommandError",
    "VersionInfo",
    "decode_battery_telemetry",
    "decode_frame",
    "decode_serial_number",
    "decode_version",
]
