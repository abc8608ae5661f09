"""
Bluetooth Low Energy transport for PowerQueen BMS communication.

This module provides the Request class, a thin layer over the Bleak library
that owns one BLE connection and exposes the three link operations the
poller relies on: subscribe, unsubscribe and write-without-response.

BLE Communication Flow:
    1. Client connects to device using MAC address
    2. Optional pairing is performed for secure communication
    3. The poller subscribes to the BMS characteristic
    4. Command bytes are written to the same characteristic
    5. BMS processes command and sends response via notification
    6. The poller unsubscribes before the next command
    7. Connection is closed and optionally unpaired

GATT Characteristics Used:
    - 0000FFE1-0000-1000-8000-00805F9B34FB: Primary BMS data read/write
    - 0000FFE2-0000-1000-8000-00805F9B34FB: Serial number (unimplemented)

Example Usage:
    >>> import asyncio
    >>> from pqbms.request import Request
    >>>
    >>> async def run():
    ...     async with Request("12:34:56:78:AA:CC", timeout=5) as request:
    ...         await request.subscribe(BMS_CHARACTERISTIC_ID, print)
    ...         await request.write_no_response(BMS_CHARACTERISTIC_ID, payload)
    >>> asyncio.run(run())
"""

import asyncio
import logging
from typing import Callable, Optional

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError

from .exceptions import TransportError


class Request:
    """
    Bluetooth Low Energy link to a single BMS.

    Attributes:
        bluetooth_device_mac (str): The MAC address of the target BLE device.
            Format: "XX:XX:XX:XX:XX:XX".
        pair (bool): Whether to pair with the device after connecting.
        bluetooth_timeout (float): Timeout in seconds for connection and
            individual GATT operations.
        logger (logging.Logger): Logger instance for debug output.

    Thread Safety:
        Not thread-safe. Use one Request per connection from a single event
        loop. Bleak may call notification callbacks from its own thread on
        some backends; callers must be prepared for that.

    Example:
        >>> request = Request("12:34:56:78:AA:CC", pair_device=True, timeout=5)
        >>> async with request:
        ...     await request.write_no_response(char_id, b"...")
    """

    def __init__(
        self,
        bluetooth_device_mac: str,
        pair_device: bool = False,
        timeout: float = 2,
        logger=None,
    ):
        """
        Initialize a Request for the given device.

        No connection is made until connect() is awaited or the instance is
        entered as an async context manager.

        Args:
            bluetooth_device_mac (str): MAC address of the target Bluetooth
                device, e.g. "12:34:56:78:AA:CC".
            pair_device (bool, optional): Pair after connecting. Some Linux
                Bluetooth stacks require it. Defaults to False.
            timeout (float, optional): Timeout in seconds for Bluetooth
                operations. Defaults to 2 seconds.
            logger (logging.Logger | None, optional): Logger for debug and
                info messages. Defaults to the module logger.
        """
        self.bluetooth_device_mac = bluetooth_device_mac
        self.pair = pair_device
        self.bluetooth_timeout = timeout
        self.client: Optional[BleakClient] = None

        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)

    async def __aenter__(self) -> "Request":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected

    async def connect(self) -> None:
        """
        Connect to the device and pair if requested.

        Raises:
            BleakError: If the device cannot be reached.
            TimeoutError: If connecting takes longer than bluetooth_timeout.
        """
        self.logger.info(
            "Connecting to %s... (timeout: %s)",
            self.bluetooth_device_mac,
            self.bluetooth_timeout,
        )
        self.client = BleakClient(
            self.bluetooth_device_mac, timeout=self.bluetooth_timeout
        )
        await self.client.connect()
        if self.pair:
            self.logger.info("Pairing %s...", self.bluetooth_device_mac)
            await self.client.pair()

    async def disconnect(self) -> None:
        if self.client is None:
            return
        self.logger.info("Disconnecting %s...", self.bluetooth_device_mac)
        try:
            if self.pair:
                await self.client.unpair()
            await self.client.disconnect()
        finally:
            self.client = None
        self.logger.info("Disconnected %s", self.bluetooth_device_mac)

    async def subscribe(self, channel: str, callback: Callable[[bytes], None]) -> None:
        """
        Start notifications on channel, forwarding each payload to callback.

        Raises:
            TransportError: If the device is not connected or Bleak fails.
        """

        def _data_callback(sender: BleakGATTCharacteristic, data: bytearray) -> None:
            self.logger.debug(
                "characteristic_id: %s\n Raw data: %s", sender, bytes(data).hex()
            )
            callback(bytes(data))

        await self._call(
            "subscribe", channel, self._client().start_notify, channel, _data_callback
        )

    async def unsubscribe(self, channel: str) -> None:
        """Stop notifications on channel."""
        await self._call("unsubscribe", channel, self._client().stop_notify, channel)

    async def write_no_response(self, channel: str, data: bytes) -> None:
        """Write data to channel without waiting for a write response."""
        await self._call(
            "write",
            channel,
            self._client().write_gatt_char,
            channel,
            data,
            response=False,
        )

    def _client(self) -> BleakClient:
        if self.client is None:
            raise TransportError(
                f"Not connected to {self.bluetooth_device_mac}", operation="connect"
            )
        return self.client

    async def _call(self, operation: str, channel: str, func, *args, **kwargs) -> None:
        try:
            await asyncio.wait_for(func(*args, **kwargs), self.bluetooth_timeout)
        except BleakError as e:
            raise TransportError(
                f"{operation} failed on {channel}: {e}", operation, channel
            ) from e
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TransportError(
                f"{operation} timed out on {channel} after {self.bluetooth_timeout}s",
                operation,
                channel,
            ) from e

    async def print_services(self) -> None:
        """
        Discover and print all GATT services and characteristics.

        Connects, enumerates every service and characteristic, and tries to
        read each characteristic's current value. Useful for checking that
        the BMS exposes the expected 0000FFE1 characteristic.

        Output Format:
            0000ffe0-0000-1000-8000-00805f9b34fb (Handle: 1): Unknown
                characteristic: $0000ffe1-0000-1000-8000-00805f9b34fb
                bytearray(b'...')
                characteristic: $0000ffe2-0000-1000-8000-00805f9b34fb
                Error: Characteristic not readable
        """
        async with self:
            await self.parse_services(self.client, self.client.services)

    async def parse_services(self, client: BleakClient, services) -> None:
        """Print services and characteristics; unreadable ones print their error."""
        for service in services:
            print(service)
            for charc in service.characteristics:
                print(f"\tcharacteristic: ${charc}")
                try:
                    result = await client.read_gatt_char(charc)
                    print(f"\t{result}")
                except BleakError as e:
                    print(f"\tError: {e}")
