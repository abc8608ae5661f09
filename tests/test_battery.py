"""Unit tests for the BatteryInfo reader."""

import json
import pytest
from bleak.exc import BleakError

from pqbms.battery import BatteryInfo
from pqbms.commands import PQ_COMMANDS
from pqbms.decoder import BatteryTelemetry, VersionInfo
from pqbms.exceptions import PollTimeoutError
from pqbms.poller import PollResult

from .helpers import (
    FakeTransport,
    build_battery_frame,
    build_serial_frame,
    build_version_frame,
)

MAC = "12:34:56:78:AA:CC"
VERSION = PQ_COMMANDS.lookup("GET_VERSION")
BATTERY = PQ_COMMANDS.lookup("GET_BATTERY_INFO")
SERIAL = PQ_COMMANDS.lookup("SERIAL_NUMBER")


def make_battery(transport, **kwargs) -> BatteryInfo:
    battery = BatteryInfo(MAC, response_timeout=kwargs.pop("response_timeout", 0.5), **kwargs)
    battery._request = transport
    return battery


def responses(**overrides):
    table = {
        VERSION.payload: [build_version_frame(tail=b"P\x00Q\x00\x00")],
        BATTERY.payload: [build_battery_frame()],
        SERIAL.payload: [build_serial_frame()],
    }
    table.update(overrides)
    return table


class TestReadBms:
    """Test cases for read_bms."""

    def test_success(self) -> None:
        transport = FakeTransport(responses())
        battery = make_battery(transport)

        battery.read_bms()

        assert battery.error_code == 0
        assert battery.error_message is None
        assert isinstance(battery.telemetry, BatteryTelemetry)
        assert isinstance(battery.version, VersionInfo)
        assert battery.serial_number.serialNumber == "PQ24100"
        assert len(battery.results) == 3
        assert transport.entered == 1
        assert transport.exited == 1

    def test_get_json(self) -> None:
        battery = make_battery(FakeTransport(responses()))
        battery.read_bms()

        data = json.loads(battery.get_json())

        assert data["firmwareVersion"] == "1.4.0"
        assert data["hardwareVersion"] == "PQ"
        assert data["soc"] == 85
        assert data["current"] == -2.5
        assert data["batteryStatus"] == "Discharging"
        assert data["cellVoltages"]["1"] == 3.32
        assert data["failureState"] == [0, 0, 0, 0]
        assert data["serialNumber"] == "PQ24100"
        assert [r["command"] for r in data["results"]] == list(PQ_COMMANDS.names())
        assert data["error_code"] == 0
        assert data["error_message"] is None

    def test_timeout_on_one_command(self) -> None:
        table = responses()
        del table[BATTERY.payload]
        battery = make_battery(FakeTransport(table), response_timeout=0.05)

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_TIMEOUT
        assert "GET_BATTERY_INFO" in battery.error_message
        assert battery.telemetry is None
        assert battery.version is not None
        assert battery.serial_number is not None

    def test_decode_error(self) -> None:
        table = responses()
        table[BATTERY.payload] = [build_battery_frame()[:60]]
        battery = make_battery(FakeTransport(table))

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_DECODE
        assert battery.telemetry is None

    def test_checksum_mismatch(self) -> None:
        frame = bytearray(build_battery_frame())
        frame[-1] ^= 0xFF
        table = responses()
        table[BATTERY.payload] = [bytes(frame)]
        battery = make_battery(FakeTransport(table))

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_CHECKSUM
        assert battery.telemetry is not None

    def test_first_error_wins(self) -> None:
        transport = FakeTransport(
            responses(), fail_write={VERSION.payload, BATTERY.payload}
        )
        battery = make_battery(transport)

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_BLEAK
        assert battery.error_message.startswith("GET_VERSION")

    def test_connection_failure(self) -> None:
        transport = FakeTransport(connect_error=BleakError("Device not found"))
        battery = make_battery(transport)

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_BLEAK
        assert battery.error_message == "BleakError: Device not found"
        assert battery.results == []

    def test_connection_timeout(self) -> None:
        transport = FakeTransport(connect_error=TimeoutError("timed out"))
        battery = make_battery(transport)

        battery.read_bms()

        assert battery.error_code == BatteryInfo.ERROR_TIMEOUT

    def test_debug_reraises(self) -> None:
        transport = FakeTransport(connect_error=BleakError("Device not found"))
        battery = make_battery(transport)
        battery.set_debug(True)

        with pytest.raises(BleakError):
            battery.read_bms()
        assert battery.error_code == BatteryInfo.ERROR_BLEAK

    def test_read_resets_previous_state(self) -> None:
        battery = make_battery(FakeTransport(responses()))
        battery.read_bms()
        battery._request = FakeTransport()
        battery.response_timeout = 0.05

        battery.read_bms()

        assert battery.telemetry is None
        assert battery.version is None
        assert len(battery.results) == 3
        assert battery.error_code == BatteryInfo.ERROR_TIMEOUT

    def test_selected_catalog(self) -> None:
        transport = FakeTransport(responses())
        battery = make_battery(transport, catalog=PQ_COMMANDS.select(["GET_BATTERY_INFO"]))

        battery.read_bms()

        assert [r.command.name for r in battery.results] == ["GET_BATTERY_INFO"]
        assert transport.count("write") == 1


class TestHandleResult:
    """Test cases for the result sink."""

    def test_error_result(self) -> None:
        battery = BatteryInfo(MAC)
        battery.handle_result(
            PollResult(BATTERY, error=PollTimeoutError("GET_BATTERY_INFO", 1.0))
        )
        assert battery.error_code == 2
        assert battery.error_message == "GET_BATTERY_INFO: No response to GET_BATTERY_INFO within 1.00s"

    def test_to_dict_without_records(self) -> None:
        battery = BatteryInfo(MAC)
        assert battery.to_dict() == {
            "results": [],
            "error_code": 0,
            "error_message": None,
        }

    def test_get_request_and_logger(self) -> None:
        battery = BatteryInfo(MAC, pair_device=True, timeout=7)
        request = battery.get_request()
        assert request.bluetooth_device_mac == MAC
        assert request.pair is True
        assert request.bluetooth_timeout == 7
        assert request.logger is battery.get_logger()
