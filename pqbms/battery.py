"""
Battery Information Module for PowerQueen LiFePO4 BMS.

This module provides the BatteryInfo class, the high level entry point for
reading a PowerQueen battery. It connects over Bluetooth, runs one polling
pass over the command catalog, keeps the decoded records and reports the
outcome as an error code plus a JSON document.

Example Usage:
    >>> from pqbms.battery import BatteryInfo
    >>> battery = BatteryInfo("12:34:56:78:AA:CC", timeout=5)
    >>> battery.read_bms()
    >>> print(battery.get_json())
    >>> print(f"Battery at {battery.telemetry.soc}%")

Note:
    This is a read-only library. It cannot modify battery settings or parameters.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from bleak.exc import BleakError

from .commands import BMS_CHARACTERISTIC_ID, PQ_COMMANDS, CommandCatalog
from .decoder import BatteryTelemetry, SerialNumber, VersionInfo
from .exceptions import BMSError
from .poller import DEFAULT_RESPONSE_TIMEOUT, Poller, PollResult
from .request import Request


class BatteryInfo:
    """
    Reads and holds BMS information from a PowerQueen LiFePO4 battery.

    After read_bms() the decoded records are available as attributes and
    every command's outcome is kept in results, so a failed version query
    does not hide a good telemetry reading.

    Attributes:
        telemetry (BatteryTelemetry | None): Latest GET_BATTERY_INFO record.
        version (VersionInfo | None): Latest GET_VERSION record.
        serial_number (SerialNumber | None): Latest SERIAL_NUMBER record.
        results (list[PollResult]): Per-command outcomes of the last read.
        error_code (int): 0 on success, otherwise one of the ERROR_* codes.
        error_message (str | None): Description of the error, if any.

    Class Attributes:
        ERROR_GENERIC (int): Error code 1 - Generic/unknown error.
        ERROR_TIMEOUT (int): Error code 2 - Bluetooth or response timeout.
        ERROR_DECODE (int): Error code 3 - Response frame could not be decoded.
        ERROR_BLEAK (int): Error code 4 - Bleak library or transport error.
        ERROR_CHECKSUM (int): Error code 6 - Checksum mismatch.

    Example:
        >>> battery = BatteryInfo("12:34:56:78:AA:CC", pair_device=True, timeout=5)
        >>> battery.read_bms()
        >>> if battery.error_code == 0:
        ...     print(f"Current: {battery.telemetry.current}A")
        ... else:
        ...     print(f"Error: {battery.error_message}")
    """

    ERROR_GENERIC = 1
    ERROR_TIMEOUT = 2
    ERROR_DECODE = 3
    ERROR_BLEAK = 4
    ERROR_CHECKSUM = 6

    def __init__(
        self,
        bluetooth_device_mac: str,
        pair_device: bool = False,
        timeout: float = 2,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        catalog: CommandCatalog = PQ_COMMANDS,
        logger=None,
    ):
        """
        Initialize a BatteryInfo instance for reading BMS data.

        Args:
            bluetooth_device_mac (str): Bluetooth MAC address of the battery,
                e.g. "12:34:56:78:AA:CC".
            pair_device (bool, optional): Pair with the device before
                communication. Defaults to False.
            timeout (float, optional): Timeout in seconds for connecting and
                for each GATT operation. Defaults to 2 seconds.
            response_timeout (float, optional): Seconds to wait for the BMS
                to answer each command. Defaults to 1 second.
            catalog (CommandCatalog, optional): Commands to poll. Defaults to
                the full PowerQueen command set.
            logger (logging.Logger | None, optional): Logger for debug output.
                Defaults to the module logger.
        """
        self.catalog = catalog
        self.response_timeout = response_timeout

        self.telemetry: Optional[BatteryTelemetry] = None
        self.version: Optional[VersionInfo] = None
        self.serial_number: Optional[SerialNumber] = None
        self.results: List[PollResult] = []

        ## Error handling
        self.error_code = 0
        self.error_message: Optional[str] = None

        self._debug = False

        if logger:
            self._logger = logger
        else:
            self._logger = logging.getLogger(__name__)

        self._request = Request(
            bluetooth_device_mac,
            pair_device=pair_device,
            timeout=timeout,
            logger=self._logger,
        )

    def get_request(self) -> Request:
        """Return the underlying Request, e.g. to list GATT services."""
        return self._request

    def get_logger(self) -> logging.Logger:
        return self._logger

    def set_debug(self, debug: bool) -> None:
        """
        Enable or disable debug mode for exception handling.

        With debug enabled, connection failures in read_bms() propagate
        instead of being stored in error_code/error_message. Per-command
        failures are always stored in results.
        """
        self._debug = debug

    def read_bms(self) -> None:
        """
        Read complete BMS information from the battery via Bluetooth.

        Connects, polls every catalog command once, disconnects, and
        populates telemetry, version, serial_number and results.

        Error Handling:
            In normal mode (debug=False), connection exceptions are caught:
            - error_code: ERROR_BLEAK, ERROR_TIMEOUT or ERROR_GENERIC.
            - error_message: Exception class and message.
            When the connection works, the first failing command sets
            error_code from its error, and a checksum mismatch on an
            otherwise good response sets ERROR_CHECKSUM.

        Note:
            Blocks until completion. From async code use read_bms_async().
        """
        try:
            asyncio.run(self.read_bms_async())
        except BleakError as e:
            self._set_error(self.ERROR_BLEAK, f"{e.__class__.__name__}: {e}")
            if self._debug:
                raise
        except (asyncio.TimeoutError, TimeoutError) as e:
            self._set_error(self.ERROR_TIMEOUT, f"{e.__class__.__name__}: {e}")
            if self._debug:
                raise
        except BMSError as e:
            self._set_error(e.error_code, f"{e.__class__.__name__}: {e}")
            if self._debug:
                raise
        except Exception as e:
            self._set_error(self.ERROR_GENERIC, f"{e}")
            if self._debug:
                raise

    async def read_bms_async(self) -> List[PollResult]:
        """Connect, run one polling pass and disconnect. Returns the results."""
        self._reset()
        async with self._request:
            poller = Poller(
                self._request,
                self.catalog,
                channel=BMS_CHARACTERISTIC_ID,
                response_timeout=self.response_timeout,
                logger=self._logger,
                on_result=self.handle_result,
            )
            await poller.poll_all()
        return self.results

    def handle_result(self, result: PollResult) -> None:
        """Store one poll result; used as the poller's result sink."""
        self.results.append(result)

        record = result.record
        if isinstance(record, BatteryTelemetry):
            self.telemetry = record
        elif isinstance(record, VersionInfo):
            self.version = record
        elif isinstance(record, SerialNumber):
            self.serial_number = record

        if result.error is not None:
            self._set_error(
                result.error.error_code,
                f"{result.command.name}: {result.error.message}",
                first_only=True,
            )
        elif result.checksum_ok is False:
            self._set_error(
                self.ERROR_CHECKSUM,
                f"{result.command.name}: checksum mismatch",
                first_only=True,
            )

    def to_dict(self) -> Dict[str, Any]:
        """Merge all decoded records into one flat dictionary."""
        state: Dict[str, Any] = {}
        for record in (self.version, self.telemetry, self.serial_number):
            if record is not None:
                state.update(record.to_dict())
        state["results"] = [result.to_dict() for result in self.results]
        state["error_code"] = self.error_code
        state["error_message"] = self.error_message
        return state

    def get_json(self) -> str:
        """
        Return complete battery data as a formatted JSON string.

        JSON Structure:
            - Device info: firmwareVersion, manufactureDate, hardwareVersion
            - Electrical metrics: packVoltage, voltage, current, watt
            - Cell data: cellVoltages (cell number to volts)
            - Capacity: remainAh, factoryAh, soc, soh
            - Temperature: cellTemperature, mosfetTemperature
            - States: batteryState, protectStateRaw, failureState, heatRaw
            - Counters: dischargesCount, dischargesAhCount
            - Human-readable: batteryStatus, balanceStatus, cellStatus, heatStatus
            - Per-command outcome: results
            - Error info: error_code, error_message

        Example:
            >>> print(battery.get_json())
            {
                "firmwareVersion": "1.4.0",
                ...
                "soc": 85,
                "batteryStatus": "Discharging",
                ...
                "error_code": 0,
                "error_message": null
            }
        """
        return json.dumps(self.to_dict(), sort_keys=False, indent=4)

    def _reset(self) -> None:
        self.telemetry = None
        self.version = None
        self.serial_number = None
        self.results = []
        self.error_code = 0
        self.error_message = None

    def _set_error(self, code: int, message: str, first_only: bool = False) -> None:
        if first_only and self.error_code:
            return
        self.error_code = code
        self.error_message = message
