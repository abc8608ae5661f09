"""
Frame decoder for PowerQueen LiFePO4 BMS responses.

Decodes the binary notification payloads returned by the BMS into immutable
records. All functions here are pure: no I/O, no shared state, and the same
bytes always produce the same record.

Response Data Mapping (Battery Info - Command 0x13):
    - Bytes 8-11: Pack voltage (reversed 32-bit)
    - Bytes 12-15: Voltage reading (reversed 32-bit)
    - Bytes 16-47: Individual cell voltages (2 bytes each, low byte first, up to 16 cells)
    - Bytes 48-51: Current (mA, signed 32-bit big-endian)
    - Bytes 52-53: Cell temperature (raw)
    - Bytes 54-55: MOSFET temperature (raw)
    - Bytes 62-63: Remaining capacity (Ah * 100)
    - Bytes 64-65: Factory capacity (Ah * 100)
    - Bytes 68-71: Heat status flags
    - Bytes 76-79: Protection state flags
    - Bytes 80-83: Failure state flags
    - Bytes 84-87: Equilibrium/balancing state
    - Bytes 88-89: Battery state (0=Idle, 1=Charging, 2=Discharging, 4=Full)
    - Bytes 90-91: State of Charge (SOC %)
    - Bytes 92-95: State of Health (SOH)
    - Bytes 96-99: Discharge cycle count
    - Bytes 100-103: Total discharge Ah count

Response Data Mapping (Version - Command 0x16), relative to byte 8:
    - Bytes 0-5: Firmware major, minor, patch (16-bit big-endian each)
    - Bytes 6-7: Manufacturing year (16-bit big-endian)
    - Byte 8: Manufacturing month
    - Byte 9: Manufacturing day
    - Every other byte from 0: hardware version characters

Values are passed through as decoded. There is no plausibility check, so a
negative temperature shows up as a large unsigned number.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Union

from .commands import FrameKind, command_checksum
from .exceptions import TruncatedFrameError

BATTERY_STATUS_STANDBY = "Standby"
BATTERY_STATUS_CHARGING = "Charging"
BATTERY_STATUS_DISCHARGING = "Discharging"
BATTERY_STATUS_FULL = "Full Charge"

BALANCE_ACTIVE = "Battery cells are being balanced for better performance."
BALANCE_IDLE = "All cells are well-balanced."
CELL_FAULT = "Fault alert! There may be a problem with cell."
CELL_OK = "Battery is in optimal working condition."
HEAT_ON = "Self-heating is on"
HEAT_OFF = "Self-heating is off"

## batteryState value reported once the pack is full
BATTERY_STATE_FULL = 4

HEADER_LENGTH = 8
VERSION_MIN_LENGTH = HEADER_LENGTH + 10
SERIAL_NUMBER_MIN_LENGTH = HEADER_LENGTH

CELL_BLOCK_OFFSET = 16
CELL_BLOCK_LENGTH = 32
HEAT_OFFSET = 68


def read_reversed_uint32(data: bytes) -> int:
    """Reverse a 4-byte slice, then read it as an unsigned big-endian integer."""
    return int.from_bytes(data[::-1], byteorder="big")


def read_uint_be(data: bytes) -> int:
    """Accumulate 1 to 4 bytes, most significant first, as an unsigned integer."""
    result = 0
    for byte in data:
        result = (result << 8) | byte
    return result


def read_swapped_uint16(data: bytes) -> int:
    """Read a cell-voltage pair stored low byte first."""
    return int.from_bytes([data[1], data[0]], byteorder="big")


def to_signed32(value: int) -> int:
    """Reinterpret an unsigned 32-bit value as two's complement."""
    value &= 0xFFFFFFFF
    if value & 0x80000000:
        return value - 0x100000000
    return value


def read_int32_be(data: bytes) -> int:
    return to_signed32(read_uint_be(data))


def read_hex(data: bytes) -> str:
    return bytes(data).hex()


def read_raw(data: bytes) -> bytes:
    return bytes(data)


class Field(NamedTuple):
    """One fixed-offset entry of a frame layout."""

    name: str
    offset: int
    width: int
    reader: Callable[[bytes], Any]
    scale: Optional[int] = None

    @property
    def end(self) -> int:
        return self.offset + self.width

    def extract(self, data: bytes) -> Any:
        value = self.reader(data[self.offset : self.end])
        if self.scale:
            return value / self.scale
        return value


BATTERY_INFO_LAYOUT = (
    Field("packVoltage", 8, 4, read_reversed_uint32),
    Field("voltage", 12, 4, read_reversed_uint32),
    Field("current", 48, 4, read_int32_be, 1000),
    Field("cellTemperature", 52, 2, read_uint_be),
    Field("mosfetTemperature", 54, 2, read_uint_be),
    Field("remainAh", 62, 2, read_uint_be, 100),
    Field("factoryAh", 64, 2, read_uint_be, 100),
    Field("heatRaw", HEAT_OFFSET, 4, read_hex),
    Field("protectStateRaw", 76, 4, read_hex),
    Field("failureState", 80, 4, read_raw),
    Field("equilibriumState", 84, 4, read_uint_be),
    Field("batteryState", 88, 2, read_uint_be),
    Field("soc", 90, 2, read_uint_be),
    Field("soh", 92, 4, read_uint_be),
    Field("dischargesCount", 96, 4, read_uint_be),
    Field("dischargesAhCount", 100, 4, read_uint_be),
)

BATTERY_INFO_MIN_LENGTH = max(
    max(f.end for f in BATTERY_INFO_LAYOUT), CELL_BLOCK_OFFSET + CELL_BLOCK_LENGTH
)


@dataclass(frozen=True)
class BatteryTelemetry:
    """
    Decoded GET_BATTERY_INFO response.

    Attributes:
        packVoltage (int): Pack voltage, raw counts.
        voltage (int): Battery voltage, raw counts.
        cellVoltages (Mapping): Read-only map of cell number (1-16) to
            voltage in Volts.
            Cells reading zero are not present in the pack and are omitted.
        current (float): Amperes, positive while charging.
        watt (float): voltage * current / 10000, rounded to 2 decimals
            with halves away from zero.
        remainAh (float): Remaining capacity in Ah.
        factoryAh (float): Factory-rated capacity in Ah.
        cellTemperature (int): Raw cell temperature reading.
        mosfetTemperature (int): Raw MOSFET temperature reading.
        heatRaw (str): Heat flags as hex.
        dischargeSwitchState (int): 1 = discharge allowed, 0 = disabled.
        protectStateRaw (str): Protection flags as hex.
        failureState (bytes): Failure flag bytes, verbatim.
        equilibriumState (int): Non-zero while cells are balancing.
        batteryState (int): 0 = Idle, 1 = Charging, 2 = Discharging, 4 = Full.
        soc (int): State of charge, percent.
        soh (int): State of health.
        dischargesCount (int): Discharge cycle count.
        dischargesAhCount (int): Cumulative discharged Ah.
        batteryStatus, balanceStatus, cellStatus, heatStatus (str):
            Human readable statuses derived from the fields above.
    """

    packVoltage: int
    voltage: int
    cellVoltages: Mapping[int, float]
    current: float
    watt: float
    remainAh: float
    factoryAh: float
    cellTemperature: int
    mosfetTemperature: int
    heatRaw: str
    dischargeSwitchState: int
    protectStateRaw: str
    failureState: bytes
    equilibriumState: int
    batteryState: int
    soc: int
    soh: int
    dischargesCount: int
    dischargesAhCount: int
    batteryStatus: str
    balanceStatus: str
    cellStatus: str
    heatStatus: str

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in self.__dataclass_fields__}
        data["cellVoltages"] = dict(self.cellVoltages)
        data["failureState"] = list(self.failureState)
        return data


@dataclass(frozen=True)
class VersionInfo:
    """Decoded GET_VERSION response."""

    firmwareVersion: str
    manufactureDate: str
    hardwareVersion: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firmwareVersion": self.firmwareVersion,
            "manufactureDate": self.manufactureDate,
            "hardwareVersion": self.hardwareVersion,
        }


@dataclass(frozen=True)
class SerialNumber:
    """Decoded SERIAL_NUMBER response; the BMS rarely fills it in."""

    serialNumber: str
    raw: str = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"serialNumber": self.serialNumber, "serialNumberRaw": self.raw}


Record = Union[BatteryTelemetry, VersionInfo, SerialNumber]


def _require_length(kind: FrameKind, data: bytes, length: int) -> None:
    if len(data) < length:
        raise TruncatedFrameError(kind.value, length, len(data))


def _printable(data: bytes) -> str:
    return "".join(chr(b) for b in data if 32 <= b <= 126)


def round_half_away(value: float, digits: int = 0) -> float:
    """Round to digits decimals with ties away from zero, unlike round()."""
    scale = 10**digits
    scaled = abs(value * scale)
    whole = math.floor(scaled)
    if scaled - whole >= 0.5:
        whole += 1
    return math.copysign(whole, value) / scale


def verify_checksum(data: bytes) -> bool:
    """Return True when the last byte equals the checksum of the bytes before it."""
    if len(data) < 2:
        return False
    return command_checksum(data[:-1]) == data[-1]


def decode_cell_voltages(block: bytes) -> Mapping[int, float]:
    """
    Decode the 32-byte cell block into {cell number: volts}.

    Each cell takes two bytes, low byte first. Zero readings mean the cell
    slot is empty and are skipped.
    """
    cells = {}
    for index in range(0, len(block) - 1, 2):
        millivolts = read_swapped_uint16(block[index : index + 2])
        if not millivolts:
            continue
        cells[index // 2 + 1] = millivolts / 1000
    return MappingProxyType(cells)


def discharge_switch_state(data: bytes) -> int:
    ## State of internal bluetooth controlled discharge switch.
    ## A byte shifted right by 7 is at most 1, so this never reports 0.
    if data[HEAT_OFFSET] >> 7 >= 8:
        return 0
    return 1


def battery_status(current: float, soc: int, state: int) -> str:
    """
    Determine the human-readable battery status.

    Full Charge takes precedence over the current direction, so a pack that
    is float charging at 100% still reports Full Charge.
    """
    if current == 0:
        status = BATTERY_STATUS_STANDBY
    elif current > 0:
        status = BATTERY_STATUS_CHARGING
    else:
        status = BATTERY_STATUS_DISCHARGING

    if soc >= 100 or state == BATTERY_STATE_FULL:
        status = BATTERY_STATUS_FULL

    return status


def decode_battery_telemetry(data: bytes) -> BatteryTelemetry:
    """
    Decode a GET_BATTERY_INFO response.

    Args:
        data (bytes): Raw notification payload, at least 104 bytes. A trailing
            checksum byte may follow; it is not checked here.

    Returns:
        BatteryTelemetry: The decoded record.

    Raises:
        TruncatedFrameError: If data is shorter than 104 bytes.

    Example:
        >>> telemetry = decode_battery_telemetry(frame)
        >>> telemetry.batteryStatus
        'Discharging'
    """
    _require_length(FrameKind.BATTERY_INFO, data, BATTERY_INFO_MIN_LENGTH)

    values = {f.name: f.extract(data) for f in BATTERY_INFO_LAYOUT}
    values["cellVoltages"] = decode_cell_voltages(
        data[CELL_BLOCK_OFFSET : CELL_BLOCK_OFFSET + CELL_BLOCK_LENGTH]
    )

    ## Calculated load \ unload Watt
    values["watt"] = round_half_away(values["voltage"] * values["current"] / 10000, 2)
    values["dischargeSwitchState"] = discharge_switch_state(data)

    values["batteryStatus"] = battery_status(
        values["current"], values["soc"], values["batteryState"]
    )
    values["balanceStatus"] = (
        BALANCE_ACTIVE if values["equilibriumState"] > 0 else BALANCE_IDLE
    )
    failure = values["failureState"]
    values["cellStatus"] = CELL_FAULT if failure[0] > 0 or failure[1] > 0 else CELL_OK
    values["heatStatus"] = HEAT_ON if values["heatRaw"][7] == "2" else HEAT_OFF

    return BatteryTelemetry(**values)


def decode_version(data: bytes) -> VersionInfo:
    """
    Decode a GET_VERSION response.

    Firmware version is "MAJOR.MINOR.PATCH" and manufacture date is
    "YYYY-M-D" without zero padding. The hardware version is read from every
    other byte starting at the version block, keeping printable ASCII only.

    Raises:
        TruncatedFrameError: If data is shorter than 18 bytes.
    """
    _require_length(FrameKind.VERSION, data, VERSION_MIN_LENGTH)
    start = data[HEADER_LENGTH:]

    firmware = (
        f"{read_uint_be(start[0:2])}"
        f".{read_uint_be(start[2:4])}"
        f".{read_uint_be(start[4:6])}"
    )
    manufactured = f"{read_uint_be(start[6:8])}-{start[8]}-{start[9]}"

    return VersionInfo(
        firmwareVersion=firmware,
        manufactureDate=manufactured,
        hardwareVersion=_printable(start[0::2]),
    )


def decode_serial_number(data: bytes) -> SerialNumber:
    _require_length(FrameKind.SERIAL_NUMBER, data, SERIAL_NUMBER_MIN_LENGTH)
    return SerialNumber(
        serialNumber=_printable(data[HEADER_LENGTH:]), raw=bytes(data).hex()
    )


DECODERS = {
    FrameKind.BATTERY_INFO: decode_battery_telemetry,
    FrameKind.VERSION: decode_version,
    FrameKind.SERIAL_NUMBER: decode_serial_number,
}


def decode_frame(kind: FrameKind, data: bytes) -> Record:
    """Decode data with the decoder registered for kind."""
    return DECODERS[kind](data)
