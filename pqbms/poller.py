"""
Poll sequencer for the PowerQueen BMS command set.

The BMS answers every command on the same notification characteristic and
its responses carry nothing that ties them to the request. The only way to
attribute a response is timing: the poller keeps at most one command in
flight and treats whatever notification arrives in that command's window as
its answer.

Per command the poller walks this state machine:

    IDLE -> SUBSCRIBED -> AWAITING_RESPONSE -> DECODED -> UNSUBSCRIBED
                                 |                            ^
                                 +------- timeout ------------+

and after the last catalog entry it ends in DONE. Notifications are
explicitly unsubscribed after every command so a late reply cannot land in
the next command's window.

Failures never stop the pass. Each command yields a PollResult holding
either the decoded record or the error that ended it.

Example:
    >>> async with Request("12:34:56:78:AA:CC") as request:
    ...     poller = Poller(request, PQ_COMMANDS, response_timeout=1.0)
    ...     for result in await poller.poll_all():
    ...         print(result.command.name, result.ok)
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .commands import (
    BMS_CHARACTERISTIC_ID,
    PQ_COMMANDS,
    Command,
    CommandCatalog,
    command_checksum,
)
from .decoder import Record, decode_frame, verify_checksum
from .exceptions import (
    BMSError,
    DecodeError,
    PollCancelledError,
    PollTimeoutError,
    TransportError,
)

## Matches the fixed one second wait the BMS app uses between commands
DEFAULT_RESPONSE_TIMEOUT = 1.0


class Transport(Protocol):
    """Link operations the poller needs. Failures raise TransportError."""

    async def subscribe(
        self, channel: str, callback: Callable[[bytes], None]
    ) -> None: ...

    async def unsubscribe(self, channel: str) -> None: ...

    async def write_no_response(self, channel: str, data: bytes) -> None: ...


class PollState(enum.Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    AWAITING_RESPONSE = "awaiting_response"
    DECODED = "decoded"
    UNSUBSCRIBED = "unsubscribed"
    DONE = "done"


@dataclass(frozen=True)
class PollResult:
    """Outcome of polling one command: a record or the error that ended it."""

    command: Command
    record: Optional[Record] = None
    error: Optional[BMSError] = None
    raw: Optional[bytes] = None
    checksum_ok: Optional[bool] = None

    @property
    def ok(self) -> bool:
        return self.record is not None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command.name,
            "ok": self.ok,
            "checksum_ok": self.checksum_ok,
            "raw": self.raw.hex() if self.raw is not None else None,
            "error": self.error.to_dict() if self.error else None,
        }


class Poller:
    """
    Sequential request/response driver over a single characteristic.

    Args:
        transport (Transport): Connected link, e.g. a Request instance.
        catalog (CommandCatalog): Commands to poll, in order.
        channel (str): Characteristic used for both writes and notifications.
        response_timeout (float): Seconds to wait for each response.
        logger (logging.Logger | None): Defaults to the module logger.
        on_result (Callable | None): Sink called with every PollResult as
            soon as the command completes.

    Note:
        The poller owns the characteristic for the length of a pass. Nothing
        else may subscribe or write to it meanwhile, and two passes must not
        run concurrently on the same link.
    """

    def __init__(
        self,
        transport: Transport,
        catalog: CommandCatalog = PQ_COMMANDS,
        channel: str = BMS_CHARACTERISTIC_ID,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        logger: Optional[logging.Logger] = None,
        on_result: Optional[Callable[[PollResult], None]] = None,
    ):
        self.transport = transport
        self.catalog = catalog
        self.channel = channel
        self.response_timeout = response_timeout
        self.on_result = on_result
        self.logger = logger or logging.getLogger(__name__)

        self.state = PollState.IDLE
        self._in_flight: Optional[Command] = None
        self._window: Optional[object] = None
        self._response: Optional[bytes] = None
        self._response_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def poll_all(
        self, stop_event: Optional[asyncio.Event] = None
    ) -> List[PollResult]:
        """
        Poll every catalog command once, strictly one after another.

        Args:
            stop_event (asyncio.Event | None): When set, the command in
                flight ends with PollCancelledError and the pass stops.

        Returns:
            list[PollResult]: One result per command attempted.
        """
        results = []
        for command in self.catalog:
            if stop_event is not None and stop_event.is_set():
                self.logger.info("Polling stopped before %s", command.name)
                break
            result = await self.poll_command(command, stop_event)
            results.append(result)
            if isinstance(result.error, PollCancelledError):
                break

        self.state = PollState.DONE
        return results

    async def poll_command(
        self, command: Command, stop_event: Optional[asyncio.Event] = None
    ) -> PollResult:
        """Run the full subscribe/write/wait/unsubscribe cycle for one command."""
        self._loop = asyncio.get_running_loop()
        self._response_event = asyncio.Event()
        self._response = None
        self._in_flight = command
        self._window = object()
        self.state = PollState.IDLE

        try:
            result = await self._exchange(command, stop_event)
        finally:
            self._in_flight = None
            self._window = None

        if result.error is not None:
            self.logger.warning("Command %s failed: %s", command.name, result.error)
        if self.on_result is not None:
            self.on_result(result)
        return result

    async def _exchange(
        self, command: Command, stop_event: Optional[asyncio.Event]
    ) -> PollResult:
        handler = self._make_handler(command)
        try:
            await self.transport.subscribe(self.channel, handler)
        except TransportError as e:
            self.state = PollState.UNSUBSCRIBED
            return PollResult(command, error=e)
        self.state = PollState.SUBSCRIBED

        try:
            result = await self._request(command, stop_event)
        finally:
            unsubscribe_error = await self._unsubscribe(command)

        if unsubscribe_error is not None and result.error is None:
            result = PollResult(
                command,
                record=result.record,
                error=unsubscribe_error,
                raw=result.raw,
                checksum_ok=result.checksum_ok,
            )
        return result

    async def _request(
        self, command: Command, stop_event: Optional[asyncio.Event]
    ) -> PollResult:
        ## Open the window before writing; a fast reply may beat the write ack
        self.state = PollState.AWAITING_RESPONSE
        self.logger.info("Sending command: %s", command)
        try:
            await self.transport.write_no_response(self.channel, command.payload)
        except TransportError as e:
            return PollResult(command, error=e)

        outcome = await self._wait_for_response(stop_event)
        if outcome == "cancelled":
            return PollResult(command, error=PollCancelledError(command.name))
        if outcome == "timeout":
            return PollResult(
                command, error=PollTimeoutError(command.name, self.response_timeout)
            )

        raw = self._response
        self.logger.debug("Raw data for %s: %s", command.name, raw.hex())
        checksum_ok = verify_checksum(raw)
        if not checksum_ok:
            self.logger.warning(
                "Checksum mismatch for %s: data:%s, crc-packet:%s",
                command.name,
                command_checksum(raw[:-1]),
                raw[-1] if raw else None,
            )

        try:
            record = decode_frame(command.kind, raw)
        except DecodeError as e:
            return PollResult(command, error=e, raw=raw, checksum_ok=checksum_ok)

        self.state = PollState.DECODED
        return PollResult(command, record=record, raw=raw, checksum_ok=checksum_ok)

    async def _wait_for_response(self, stop_event: Optional[asyncio.Event]) -> str:
        waiters = [asyncio.ensure_future(self._response_event.wait())]
        if stop_event is not None:
            waiters.append(asyncio.ensure_future(stop_event.wait()))
        try:
            await asyncio.wait(
                waiters,
                timeout=self.response_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()

        if self._response_event.is_set():
            return "response"
        if stop_event is not None and stop_event.is_set():
            return "cancelled"
        return "timeout"

    async def _unsubscribe(self, command: Command) -> Optional[TransportError]:
        try:
            await self.transport.unsubscribe(self.channel)
        except TransportError as e:
            self.logger.warning(
                "Failed to close notifications for %s: %s", command.name, e
            )
            return e
        finally:
            self.state = PollState.UNSUBSCRIBED
        return None

    def _make_handler(self, command: Command) -> Callable[[bytes], None]:
        loop = self._loop
        window = self._window

        def handler(data: bytes) -> None:
            loop.call_soon_threadsafe(self._deliver, window, command, bytes(data))

        return handler

    def _deliver(self, window: object, command: Command, data: bytes) -> None:
        if (
            window is not self._window
            or self.state is not PollState.AWAITING_RESPONSE
            or self._response is not None
        ):
            self.logger.debug(
                "Dropping notification for %s in state %s: %s",
                command.name,
                self.state.value,
                data.hex(),
            )
            return
        self._response = data
        self._response_event.set()
