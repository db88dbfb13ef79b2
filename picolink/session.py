"""
Device Session
==============

Protocol engine for a MicroPython board attached to a :class:`StreamPort`.

One byte stream, two consumers:

- passthrough: a background task streams whatever the board prints to
  the terminal sink and derives the advisory status from it;
- raw commands: a foreground operation takes over the reader, switches
  the board into raw REPL, exchanges one framed command and hands the
  stream back.

Mode Transitions
----------------
    REPL ──(run_code / write_file / read_file / list_files)──> RAW
    RAW  ──(always, on success and on failure)───────────────> REPL

Only one raw command may be in flight; a second one fails with
:class:`Busy` instead of interleaving on the stream.

Raw Command Exchange
--------------------
    host:   0x01                          enter raw REPL
    device: raw REPL; CTRL-B to exit\\r\\n>
    host:   <script> 0x04
    device: OK <stdout> 0x04 <stderr> 0x04 >
    host:   0x02                          back to the friendly REPL

Bytes read past a delimiter are kept as the leftover buffer and seed the
next read, so a chunk that straddles two exchanges is never dropped.

Example:
    >>> async with DeviceSession(sink=StreamSink()) as session:
    ...     await session.write_file("main.py", b"print('hi')\\n")
    ...     print(await session.list_files())
    ...     await session.run_code("import main")
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from .codec import (
    build_list_script,
    build_read_script,
    build_write_script,
    hex_decode,
    parse_file_list,
)
from .config import SessionConfig
from .data_types import Connection, DeviceStatus, SessionMode, StatusEvent
from .errors import (
    Busy,
    DeviceError,
    NoResponse,
    PicolinkError,
    PortNotReady,
    TransportClosed,
    VerificationFailed,
)
from .port import ReaderHandle, StreamPort
from .protocol import Marker, Sentinel
from .terminal import IncrementalTextDecoder, NullSink, TerminalSink, deliver, sanitize
from .tools import log_async_exceptions

logger = logging.getLogger(__name__)

StatusObserver = Callable[[StatusEvent], None]
T = TypeVar("T")


class DeviceSession:
    """
    High-level interface to one MicroPython board.

    Args:
        port: Stream port to drive. A new :class:`StreamPort` is built
            from ``config`` when omitted.
        sink: Receiver for passthrough terminal text
        config: Session settings
    """

    def __init__(
        self,
        port: Optional[StreamPort] = None,
        sink: Optional[TerminalSink] = None,
        config: Optional[SessionConfig] = None,
    ):
        self.config = config or SessionConfig()
        self.port = port or StreamPort(
            ready_attempts=self.config.ready_attempts,
            ready_interval=self.config.ready_interval,
            read_timeout=self.config.read_timeout,
        )
        self.sink = sink or NullSink()

        self._mode = SessionMode.REPL
        self._status: Optional[DeviceStatus] = None
        self._prompt_tail = ""
        self._observers: List[StatusObserver] = []
        self._leftover = b""
        self._decoder = IncrementalTextDecoder()

        self._command_reader: Optional[ReaderHandle] = None
        self._passthrough_reader: Optional[ReaderHandle] = None
        self._passthrough_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "DeviceSession":
        await self.connect(self.config.port)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def status(self) -> Optional[DeviceStatus]:
        """Advisory status, None until the board has printed something."""
        return self._status

    @property
    def leftover(self) -> bytes:
        return self._leftover

    @property
    def is_connected(self) -> bool:
        return self.port.is_connected

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self, port_name: Optional[str] = None) -> Connection:
        """
        Open the port and start terminal passthrough.

        Raises:
            PortUnavailable: If no port could be opened
        """
        connection = await self.port.open(port_name)
        await self.start()
        return connection

    async def start(self) -> None:
        """Start passthrough on an already open port."""
        if self._passthrough_task is not None and not self._passthrough_task.done():
            return
        await self._start_passthrough()

    async def disconnect(self) -> None:
        """Stop passthrough and close the port."""
        await self._stop_passthrough()
        await self.port.close()
        self._leftover = b""
        self._decoder.reset()

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """
        Register for status-changed notifications.

        Returns:
            A callable that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # =========================================================================
    # Passthrough
    # =========================================================================

    async def _start_passthrough(self) -> None:
        reader = await self.port.acquire_reader()
        self._passthrough_reader = reader
        self._passthrough_task = asyncio.ensure_future(self._passthrough(reader))

    async def _stop_passthrough(self) -> None:
        reader, self._passthrough_reader = self._passthrough_reader, None
        task, self._passthrough_task = self._passthrough_task, None
        if reader is not None:
            await reader.cancel()
        if task is not None:
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Passthrough had already stopped: %r", task.exception())

    @log_async_exceptions
    async def _passthrough(self, reader: ReaderHandle) -> None:
        try:
            if self._leftover:
                data, self._leftover = self._leftover, b""
                await self._forward(data)
            while True:
                chunk = await reader.read()
                if not chunk:
                    break
                await self._forward(chunk)
        except TransportClosed as e:
            logger.warning("Terminal passthrough stopped: %s", e)

    async def _forward(self, data: bytes) -> None:
        text = self._decoder.decode(data)
        if not text:
            return
        self._classify(text)
        cleaned = sanitize(text)
        if cleaned:
            await deliver(self.sink, cleaned)

    def _classify(self, text: str) -> None:
        # a prompt may straddle two chunks, but one already counted must not be reused
        probe = self._prompt_tail + text
        end = probe.rfind(Marker.PROMPT)
        rest = probe if end < 0 else probe[end + len(Marker.PROMPT):]
        self._prompt_tail = rest[-(len(Marker.PROMPT) - 1):]

        status = DeviceStatus.REPL if end >= 0 else DeviceStatus.RUNNING
        if status is self._status:
            return
        self._status = status
        logger.debug("Device status: %s", status.value)
        event = StatusEvent(status=status)
        for observer in list(self._observers):
            observer(event)

    # =========================================================================
    # Raw Command Scope
    # =========================================================================

    @asynccontextmanager
    async def command(self, mode: SessionMode = SessionMode.RAW):
        """
        Run a block with the board in raw REPL and the reader held.

        Raises:
            Busy: If another raw command is already in flight
        """
        if mode is SessionMode.REPL:
            raise ValueError("command() needs a raw mode")
        if self._mode is not SessionMode.REPL:
            raise Busy(f"{self._mode.value} command already in flight")
        self._mode = mode
        logger.debug("Entering %s mode", mode.value)
        try:
            await self._enter_raw()
            yield self
        except PicolinkError as e:
            logger.error("%s command failed: %s", mode.value, e)
            raise
        finally:
            await self._leave_raw()

    async def _enter_raw(self) -> None:
        await self._stop_passthrough()
        self._command_reader = await self.port.acquire_reader()
        if self.config.interrupt_before_raw:
            await self._write(Sentinel.INTERRUPT)
        await self._write(Sentinel.RAW_ENTER)

        # whatever the board prints before the banner (the tail of an earlier
        # run_code, an interrupt message) still belongs on the terminal
        earlier = await self.read_until(Marker.RAW_BANNER)
        if earlier:
            await self._forward(earlier)

    async def _leave_raw(self) -> None:
        """Run :meth:`_exit_raw` to completion even if the caller is cancelled."""
        exit_task = asyncio.ensure_future(self._exit_raw())
        try:
            await asyncio.shield(exit_task)
        except asyncio.CancelledError:
            await exit_task
            raise

    async def _exit_raw(self) -> None:
        try:
            if self.port.is_connected:
                await self._write(Sentinel.RAW_EXIT)
        except PicolinkError as e:
            logger.error("Could not leave raw REPL: %s", e)
        finally:
            reader, self._command_reader = self._command_reader, None
            if reader is not None:
                await reader.cancel()
            self._mode = SessionMode.REPL
            logger.debug("Back in repl mode")

        if self.port.is_connected:
            try:
                await self._start_passthrough()
            except PortNotReady as e:
                logger.error("Could not resume passthrough: %s", e)

    async def _write(self, data: bytes) -> None:
        writer = self.port.acquire_writer()
        if writer is None:
            raise PortNotReady("port is not writable")
        try:
            await self.port.write_bytes(data)
        finally:
            writer.release()

    async def read_until(self, delimiter: bytes) -> bytes:
        """
        Read up to the first ``delimiter`` and return what precedes it.

        Reading starts from the leftover buffer. Everything after the
        delimiter becomes the new leftover. There is no timeout here;
        the operations take a ``timeout`` for that.

        Raises:
            TransportClosed: If the stream ends before the delimiter
        """
        reader = self._command_reader
        if reader is None:
            raise RuntimeError("read_until() must run inside command()")

        buffer = bytearray(self._leftover)
        self._leftover = b""
        try:
            index = buffer.find(delimiter)
            while index < 0:
                chunk = await reader.read()
                if not chunk:
                    raise TransportClosed(f"stream ended while waiting for {delimiter!r}")
                start = max(0, len(buffer) - len(delimiter) + 1)
                buffer.extend(chunk)
                index = buffer.find(delimiter, start)
            response = bytes(buffer[:index])
            del buffer[:index + len(delimiter)]
        finally:
            self._leftover = bytes(buffer)
        return response

    async def exec_raw(self, script: str) -> bytes:
        """
        Execute ``script`` in raw REPL and return what it printed.

        Raises:
            DeviceError: If the board reported an exception
        """
        if self._command_reader is None:
            raise RuntimeError("exec_raw() must run inside command()")
        await self._write(script.encode("utf-8"))
        await self._write(Sentinel.END_OF_COMMAND)

        await self.read_until(Marker.ACK)
        output = await self.read_until(Sentinel.END_OF_COMMAND)
        error = await self.read_until(Sentinel.END_OF_COMMAND)
        if error.strip():
            raise DeviceError(error.decode("utf-8", errors="replace"))
        return output

    async def _bounded(self, operation: Awaitable[T], timeout: Optional[float]) -> T:
        if timeout is None:
            timeout = self.config.command_timeout
        if timeout is None:
            return await operation
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError as e:
            logger.error("No response from device within %.2fs", timeout)
            raise NoResponse(f"no response from device within {timeout}s") from e

    # =========================================================================
    # Operations
    # =========================================================================

    async def run_code(self, text: str, timeout: Optional[float] = None) -> None:
        """
        Execute ``text`` in raw REPL. Its output reaches the terminal sink
        once the session is back in passthrough.

        Returns as soon as the code has been sent, not when the board has
        finished running it. The next raw command waits for the board's
        raw REPL banner before framing its own exchange, so output still
        arriving from this run goes to the terminal instead of being
        mistaken for that command's response.
        """
        async def operation():
            async with self.command(SessionMode.RAW):
                await self._write(text.encode("utf-8"))
                await self._write(Sentinel.END_OF_COMMAND)

        await self._bounded(operation(), timeout)

    async def send_raw(self, data: bytes) -> None:
        """
        Write bytes straight to the board without a mode change.

        Raises:
            Busy: If a raw command is in flight
        """
        if self._mode is not SessionMode.REPL:
            raise Busy(f"cannot write while a {self._mode.value} command is in flight")
        await self._write(bytes(data))

    async def write_terminal(self, text: str) -> None:
        """Send keystrokes typed at the terminal."""
        await self.send_raw(text.encode("utf-8"))

    async def interrupt(self) -> None:
        """Send Ctrl-C to stop the running program."""
        await self.send_raw(Sentinel.INTERRUPT)

    async def write_file(
        self,
        name: str,
        data: bytes,
        verify: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Write ``data`` to ``name`` on the board, replacing it.

        Args:
            name: Path on the board
            data: File contents
            verify: Read the file back and compare. None uses the config.
            timeout: Seconds to wait for the board. None uses the config.

        Raises:
            VerificationFailed: If the read-back differs
            DeviceError: If the board could not open or write the file
        """
        data = bytes(data)
        if verify is None:
            verify = self.config.verify_writes
        chunk_size = self.config.chunk_size

        async def operation():
            async with self.command(SessionMode.FILE_TRANSFER):
                await self.exec_raw(build_write_script(name, data, chunk_size))
                if verify:
                    printed = await self.exec_raw(build_read_script(name, chunk_size))
                    readback = hex_decode(printed.decode("ascii", errors="replace"))
                    if readback != data:
                        raise VerificationFailed(name, len(data), len(readback))
            logger.info("Wrote %d bytes to %s", len(data), name)

        await self._bounded(operation(), timeout)

    async def read_file(self, name: str, timeout: Optional[float] = None) -> bytes:
        """
        Read ``name`` from the board.

        Raises:
            DecodeError: If the board's hex output is malformed
            DeviceError: If the board could not open the file
        """
        chunk_size = self.config.chunk_size

        async def operation():
            async with self.command(SessionMode.FILE_TRANSFER):
                printed = await self.exec_raw(build_read_script(name, chunk_size))
                data = hex_decode(printed.decode("ascii", errors="replace"))
            logger.info("Read %d bytes from %s", len(data), name)
            return data

        return await self._bounded(operation(), timeout)

    async def list_files(
        self,
        extensions: Optional[Iterable[str]] = None,
        path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[str]:
        """
        List directory entries on the board.

        Args:
            extensions: Suffixes to keep. None uses the config; an empty
                collection keeps everything.
            path: Directory to list, the board's current one by default
            timeout: Seconds to wait for the board. None uses the config.
        """
        if extensions is None:
            extensions = self.config.file_extensions

        async def operation():
            async with self.command(SessionMode.RAW):
                printed = await self.exec_raw(build_list_script(path))
            return parse_file_list(printed.decode("utf-8", errors="replace"), extensions)

        return await self._bounded(operation(), timeout)
