"""Frame builders and an in-memory transport shared by the tests."""

import struct
import threading

from pqbms.commands import command_checksum
from pqbms.exceptions import TransportError

HEADER = bytes.fromhex("0000650113 55AA00".replace(" ", ""))


def build_battery_frame(
    pack_voltage=13280,
    voltage=13275,
    cells=(3320, 3321, 3319, 3320),
    current_ma=-2500,
    cell_temp=25,
    mosfet_temp=28,
    remain=8550,
    factory=10000,
    heat=b"\x00\x00\x00\x00",
    protect=b"\x00\x00\x00\x00",
    failure=b"\x00\x00\x00\x00",
    equilibrium=0,
    state=2,
    soc=85,
    soh=100,
    discharges=12,
    discharges_ah=1234,
    checksum=True,
):
    """Build a GET_BATTERY_INFO response laid out the way the BMS sends it."""
    frame = bytearray(104)
    frame[0:8] = HEADER
    frame[8:12] = struct.pack("<I", pack_voltage)
    frame[12:16] = struct.pack("<I", voltage)
    for index, millivolts in enumerate(cells):
        frame[16 + 2 * index : 18 + 2 * index] = struct.pack("<H", millivolts)
    frame[48:52] = struct.pack(">i", current_ma)
    frame[52:54] = struct.pack(">H", cell_temp)
    frame[54:56] = struct.pack(">H", mosfet_temp)
    frame[62:64] = struct.pack(">H", remain)
    frame[64:66] = struct.pack(">H", factory)
    frame[68:72] = heat
    frame[76:80] = protect
    frame[80:84] = failure
    frame[84:88] = struct.pack(">I", equilibrium)
    frame[88:90] = struct.pack(">H", state)
    frame[90:92] = struct.pack(">H", soc)
    frame[92:96] = struct.pack(">I", soh)
    frame[96:100] = struct.pack(">I", discharges)
    frame[100:104] = struct.pack(">I", discharges_ah)
    if checksum:
        frame.append(command_checksum(frame))
    return bytes(frame)


def build_version_frame(
    firmware=(1, 4, 0), date=(2023, 5, 15), tail=b"", checksum=True
):
    """Build a GET_VERSION response; tail follows the date bytes."""
    frame = bytearray(HEADER)
    frame += struct.pack(">HHH", *firmware)
    frame += struct.pack(">HBB", *date)
    frame += tail
    if checksum:
        frame.append(command_checksum(frame))
    return bytes(frame)


def build_serial_frame(serial=b"PQ24100", checksum=True):
    frame = bytearray(HEADER) + serial
    if checksum:
        frame.append(command_checksum(frame))
    return bytes(frame)


class FakeTransport:
    """
    In-memory transport that answers writes from a canned response table.

    responses maps a command payload to the frames notified after writing it.
    fail_subscribe and fail_unsubscribe hold 0-based call numbers that raise
    TransportError; fail_write holds payloads whose write raises.
    """

    def __init__(
        self,
        responses=None,
        fail_subscribe=(),
        fail_write=(),
        fail_unsubscribe=(),
        threaded=False,
        connect_error=None,
    ):
        self.responses = responses or {}
        self.fail_subscribe = set(fail_subscribe)
        self.fail_write = set(fail_write)
        self.fail_unsubscribe = set(fail_unsubscribe)
        self.threaded = threaded
        self.connect_error = connect_error
        self.calls = []
        self.callbacks = []
        self.callback = None
        self.entered = 0
        self.exited = 0
        self._subscribes = 0
        self._unsubscribes = 0

    async def __aenter__(self):
        self.entered += 1
        if self.connect_error is not None:
            raise self.connect_error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited += 1

    def count(self, operation):
        return sum(1 for call in self.calls if call[0] == operation)

    async def subscribe(self, channel, callback):
        self.calls.append(("subscribe", channel))
        number = self._subscribes
        self._subscribes += 1
        if number in self.fail_subscribe:
            raise TransportError("subscribe failed", "subscribe", channel)
        self.callback = callback
        self.callbacks.append(callback)

    async def unsubscribe(self, channel):
        self.calls.append(("unsubscribe", channel))
        number = self._unsubscribes
        self._unsubscribes += 1
        self.callback = None
        if number in self.fail_unsubscribe:
            raise TransportError("unsubscribe failed", "unsubscribe", channel)

    async def write_no_response(self, channel, data):
        self.calls.append(("write", channel, bytes(data)))
        if bytes(data) in self.fail_write:
            raise TransportError("write failed", "write", channel)
        self.notify(self.responses.get(bytes(data), []))

    def notify(self, frames):
        callback = self.callback
        for frame in frames:
            if self.threaded:
                thread = threading.Thread(target=callback, args=(frame,))
                thread.start()
                thread.join()
            else:
                callback(frame)
