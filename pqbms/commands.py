"""
Command catalog for the PowerQueen BMS protocol.

Commands are sent as 8-byte frames to the BMS characteristic
(0000FFE1-0000-1000-8000-00805F9B34FB):

    - Bytes 0-1: Header (00 00)
    - Byte 2: Packet length
    - Byte 3: Command type (01 for requests)
    - Byte 4: Command ID (10=SN, 13=battery info, 16=version)
    - Bytes 5-6: Magic bytes (55 AA)
    - Byte 7: Checksum (sum of bytes 0-6, masked to 8 bits)

The catalog is built once and is read-only afterwards. It is handed to the
poller by reference; a table with different bytes is a different catalog.

Example:
    >>> from pqbms.commands import PQ_COMMANDS
    >>> PQ_COMMANDS.lookup("GET_VERSION").payload.hex(" ")
    '00 00 04 01 16 55 aa 1a'
"""

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Tuple

from .exceptions import CatalogError, UnknownCommandError

BMS_CHARACTERISTIC_ID = "0000FFE1-0000-1000-8000-00805F9B34FB"
## Characteristic for reading serial number (seems not implemented)
SN_CHARACTERISTIC_ID = "0000FFE2-0000-1000-8000-00805F9B34FB"


class FrameKind(enum.Enum):
    """Which decoder understands the response to a command."""

    VERSION = "version"
    BATTERY_INFO = "battery_info"
    SERIAL_NUMBER = "serial_number"


def command_checksum(data: bytes) -> int:
    """Return the additive 8-bit checksum used by request and response frames."""
    return sum(data) & 0xFF


@dataclass(frozen=True)
class Command:
    """A named request frame and the kind of frame that answers it."""

    name: str
    payload: bytes
    kind: FrameKind

    @classmethod
    def from_hex(cls, name: str, command: str, kind: FrameKind) -> "Command":
        """
        Build a command from a space-separated hex string.

        Args:
            name (str): Catalog key, e.g. "GET_BATTERY_INFO".
            command (str): Frame bytes, e.g. "00 00 04 01 13 55 AA 17".
            kind (FrameKind): Decoder to use for the response.

        Raises:
            ValueError: If the string contains invalid hex digits.
        """
        return cls(name, bytes(int(el, 16) for el in command.split()), kind)

    @property
    def checksum_ok(self) -> bool:
        return (
            len(self.payload) > 1
            and command_checksum(self.payload[:-1]) == self.payload[-1]
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.payload.hex(' ').upper()})"


class CommandCatalog:
    """
    Immutable, ordered table of BMS commands.

    Iteration and all_commands() yield commands in the order they were given.
    The order carries no protocol meaning, since each command is polled
    independently, but it is stable from run to run.

    Args:
        commands (Iterable[Command]): Commands to register. Names must be
            unique and every payload must carry a valid trailing checksum.

    Raises:
        CatalogError: On duplicate names or checksum mismatch.
    """

    __slots__ = ("_commands",)

    def __init__(self, commands: Iterable[Command]):
        table = {}
        for command in commands:
            if command.name in table:
                raise CatalogError(
                    f"Duplicate command name: {command.name}",
                    {"command": command.name},
                )
            if not command.checksum_ok:
                raise CatalogError(
                    f"Checksum mismatch in command {command}",
                    {"command": command.name, "payload": command.payload.hex()},
                )
            table[command.name] = command
        object.__setattr__(self, "_commands", MappingProxyType(table))

    def __setattr__(self, name, value):
        raise AttributeError("CommandCatalog is read-only")

    def lookup(self, name: str) -> Command:
        """Return the command registered under name or raise UnknownCommandError."""
        try:
            return self._commands[name]
        except KeyError:
            raise UnknownCommandError(name) from None

    def all_commands(self) -> Tuple[Command, ...]:
        return tuple(self._commands.values())

    def names(self) -> Tuple[str, ...]:
        return tuple(self._commands)

    def select(self, names: Iterable[str]) -> "CommandCatalog":
        """Return a catalog holding only the named commands, in the given order."""
        return CommandCatalog(self.lookup(name) for name in names)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name) -> bool:
        return name in self._commands

    def __repr__(self) -> str:
        return f"CommandCatalog({list(self._commands)})"


PQ_COMMANDS = CommandCatalog(
    [
        Command.from_hex("GET_VERSION", "00 00 04 01 16 55 AA 1A", FrameKind.VERSION),
        Command.from_hex(
            "GET_BATTERY_INFO", "00 00 04 01 13 55 AA 17", FrameKind.BATTERY_INFO
        ),
        ## Native application does not read internal serial number.
        ## On version 1.1.4 used SN from QR code, during adding battery
        Command.from_hex(
            "SERIAL_NUMBER", "00 00 04 01 10 55 AA 14", FrameKind.SERIAL_NUMBER
        ),
    ]
)
