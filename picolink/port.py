"""
Serial Stream Port
==================

Owns the physical byte channel to the board: open/close, one writer
handle, one reader handle. Knows nothing about the REPL.

pyserial is blocking, so every call that touches the device runs on the
event loop's default executor and the public API is ``async``.

Reader handoff
--------------
Only one :class:`ReaderHandle` exists at a time. All serial reads go
through a single lock, and a read that completes after its handle was
cancelled parks its bytes in the port's pending buffer. The next reader
drains that buffer before touching the device, so bytes are never lost
or reordered when ownership of the stream changes hands.

>>> port = StreamPort()
>>> await port.open("/dev/ttyACM0")
>>> reader = await port.acquire_reader()
>>> writer = port.acquire_writer()
>>> await writer.write(b"print(1)\\r")
>>> chunk = await reader.read()
>>> await port.close()
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

import serial
import serial.tools.list_ports

from .data_types import Connection
from .errors import PortNotReady, PortUnavailable, TransportClosed
from .protocol import BAUDRATE, READY_ATTEMPTS, READY_INTERVAL_S, READ_TIMEOUT_S

logger = logging.getLogger(__name__)


# USB vendor IDs seen on MicroPython boards
MICROPYTHON_VIDS = {
    0x2E8A,  # Raspberry Pi (RP2040 / RP2350)
    0x303A,  # Espressif native USB
    0x10C4,  # Silicon Labs CP210x bridge
    0x1A86,  # WCH CH340 bridge
    0xF055,  # MicroPython pyboard
}

DESCRIPTION_KEYWORDS = (
    "MicroPython",
    "Espressif",
    "CP210",
    "CH340",
    "Board CDC",
)


def enumerate_ports() -> List[Tuple[str, str]]:
    """
    Enumerate available serial ports

    Returns:
        List of (port_name, description) tuples sorted by port name
        Example: [("/dev/ttyACM0", "Board CDC"), ...]
    """
    ports = [
        (port_info.device, port_info.description)
        for port_info in serial.tools.list_ports.comports()
    ]
    ports.sort(key=lambda x: x[0])
    return ports


def find_micropython_ports() -> List[str]:
    """Detect serial ports that look like a MicroPython board."""
    ports = []
    for port_info in serial.tools.list_ports.comports():
        text = f"{port_info.manufacturer} {port_info.description}".lower()
        if port_info.vid in MICROPYTHON_VIDS or any(
            k.lower() in text for k in DESCRIPTION_KEYWORDS
        ):
            ports.append(port_info.device)
    return sorted(ports)


class ReaderHandle:
    """
    Exclusive cursor over inbound bytes.

    Obtained from :meth:`StreamPort.acquire_reader`. Once cancelled the
    handle is dead: :meth:`read` returns ``b""`` and a new handle must be
    acquired.
    """

    def __init__(self, port: "StreamPort"):
        self._port = port
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def read(self) -> bytes:
        """
        Wait for the next chunk of inbound bytes.

        Returns:
            A non-empty chunk, or ``b""`` once the handle is cancelled

        Raises:
            TransportClosed: If the connection is closed or drops
        """
        while not self._cancelled:
            data = await self._port._read_for(self)
            if data:
                return data
        return b""

    async def cancel(self) -> None:
        """Cancel the handle and wait for any in-flight read to settle."""
        self._cancelled = True
        await self._port._settle_reader(self)


class WriterHandle:
    """Cursor over outbound bytes. Cheap to acquire, release it promptly."""

    def __init__(self, port: "StreamPort"):
        self._port = port
        self.released = False

    async def write(self, data: bytes) -> None:
        """
        Write raw bytes and flush them to the device.

        Raises:
            PortNotReady: If this handle has been released
            TransportClosed: If the connection is closed or drops
        """
        if self.released:
            raise PortNotReady("writer handle has been released")
        if data:
            await self._port._write(data)

    def release(self) -> None:
        self.released = True
        self._port._forget_writer(self)


class StreamPort:
    """
    Manages the serial connection to one board.

    Attributes:
        connection: Currently open :class:`Connection`, or None
        on_connected: Called with the connection after a successful open
        on_disconnected: Called with the device name after close or a
            hardware disconnect
    """

    def __init__(
        self,
        ready_attempts: int = READY_ATTEMPTS,
        ready_interval: float = READY_INTERVAL_S,
        read_timeout: float = READ_TIMEOUT_S,
    ):
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval
        self.read_timeout = read_timeout

        self.connection: Optional[Connection] = None
        self.on_connected: Optional[Callable[[Connection], None]] = None
        self.on_disconnected: Optional[Callable[[str], None]] = None

        self._reader: Optional[ReaderHandle] = None
        self._writer: Optional[WriterHandle] = None
        self._pending = bytearray()
        self._read_lock: Optional[asyncio.Lock] = None
        self._write_lock: Optional[asyncio.Lock] = None

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_open

    @property
    def reader(self) -> Optional[ReaderHandle]:
        return self._reader

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def open(self, port_name: Optional[str] = None) -> Connection:
        """
        Open the serial port at the REPL baud rate.

        Args:
            port_name: Device to open. None picks the first detected board.

        Returns:
            The open connection

        Raises:
            PortUnavailable: If no board is found or the open call fails
        """
        if self.is_connected:
            return self.connection

        if port_name is None:
            candidates = find_micropython_ports()
            if not candidates:
                raise PortUnavailable("no MicroPython board detected")
            port_name = candidates[0]

        loop = asyncio.get_running_loop()
        try:
            handle = await loop.run_in_executor(None, self._open_serial, port_name)
        except (serial.SerialException, OSError, ValueError) as e:
            logger.error("Failed to open %s: %s", port_name, e)
            raise PortUnavailable(f"could not open {port_name}: {e}") from e

        self.connection = Connection(device=port_name, baudrate=BAUDRATE, handle=handle)
        self._pending.clear()
        self._read_lock = None
        self._write_lock = None
        logger.info("Connected to %s at %d baud", port_name, BAUDRATE)

        if self.on_connected:
            self.on_connected(self.connection)
        return self.connection

    def _open_serial(self, port_name: str) -> serial.Serial:
        return serial.Serial(
            port=port_name,
            baudrate=BAUDRATE,
            timeout=self.read_timeout,
        )

    async def close(self) -> None:
        """Cancel the reader, release the writer and close the port. Idempotent."""
        reader, self._reader = self._reader, None
        if reader is not None:
            await reader.cancel()

        if self._writer is not None:
            self._writer.release()

        connection, self.connection = self.connection, None
        self._pending.clear()
        if connection is None:
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, connection.handle.close)
        except (serial.SerialException, OSError) as e:
            logger.warning("Error while closing %s: %s", connection.device, e)

        logger.info("Disconnected from %s", connection.device)
        if self.on_disconnected:
            self.on_disconnected(connection.device)

    def _drop_connection(self) -> None:
        """Tear down after a hardware failure. Must not wait on the read lock."""
        connection, self.connection = self.connection, None
        if self._reader is not None:
            self._reader._cancelled = True
            self._reader = None
        if self._writer is not None:
            self._writer.released = True
            self._writer = None
        self._pending.clear()
        if connection is None:
            return
        try:
            connection.handle.close()
        except (serial.SerialException, OSError) as e:
            logger.debug("Ignoring close error on %s: %s", connection.device, e)

        logger.warning("Lost connection to %s", connection.device)
        if self.on_disconnected:
            self.on_disconnected(connection.device)

    # =========================================================================
    # Handles
    # =========================================================================

    def acquire_writer(self) -> Optional[WriterHandle]:
        """Return the port's writer, or None if the port is not writable."""
        if not self.is_connected:
            self._writer = None
            return None
        if self._writer is None or self._writer.released:
            self._writer = WriterHandle(self)
        return self._writer

    def _forget_writer(self, writer: WriterHandle) -> None:
        if self._writer is writer:
            self._writer = None

    async def acquire_reader(self) -> ReaderHandle:
        """
        Obtain the exclusive reader, cancelling any previous one.

        Polls for a readable connection ``ready_attempts`` times,
        ``ready_interval`` seconds apart.

        Raises:
            PortNotReady: If the port never became readable
        """
        attempt = 1
        while not self.is_connected:
            if attempt >= self.ready_attempts:
                raise PortNotReady(
                    f"port not readable after {self.ready_attempts} attempts"
                )
            attempt += 1
            await asyncio.sleep(self.ready_interval)

        while self._reader is not None:
            previous, self._reader = self._reader, None
            await previous.cancel()

        self._reader = ReaderHandle(self)
        return self._reader

    async def write_bytes(self, data: bytes) -> bool:
        """
        Write through the held writer.

        Returns:
            True if written, False if no writer is held
        """
        writer = self._writer
        if writer is None or writer.released:
            logger.warning("Dropping %d bytes: no writer held", len(data))
            return False
        await writer.write(data)
        return True

    # =========================================================================
    # I/O
    # =========================================================================

    def _get_read_lock(self) -> asyncio.Lock:
        if self._read_lock is None:
            self._read_lock = asyncio.Lock()
        return self._read_lock

    def _get_write_lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    @staticmethod
    def _read_available(handle) -> bytes:
        waiting = handle.in_waiting
        data = handle.read(max(1, waiting))
        # a blocking single-byte read may have woken on a larger burst
        if data and handle.in_waiting > 0:
            data += handle.read(handle.in_waiting)
        return data

    @staticmethod
    def _write_all(handle, data: bytes) -> None:
        handle.write(data)
        handle.flush()

    async def _read_for(self, reader: ReaderHandle) -> bytes:
        async with self._get_read_lock():
            if reader.cancelled:
                return b""
            if self._pending:
                data = bytes(self._pending)
                self._pending.clear()
                return data

            connection = self.connection
            if connection is None or not connection.is_open:
                raise TransportClosed("port is closed")

            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(None, self._read_available, connection.handle)
            try:
                data = await asyncio.shield(future)
            except asyncio.CancelledError:
                # the executor thread finishes its read regardless; keep the bytes
                await self._stash_late_read(future)
                raise
            except (serial.SerialException, OSError) as e:
                logger.error("Read from %s failed: %s", connection.device, e)
                self._drop_connection()
                raise TransportClosed(f"read failed: {e}") from e

            if reader.cancelled:
                self._pending.extend(data)
                return b""
            return data

    async def _stash_late_read(self, future) -> None:
        try:
            data = await future
        except (serial.SerialException, OSError) as e:
            logger.debug("Read abandoned during cancellation failed: %s", e)
            return
        self._pending.extend(data)

    async def _settle_reader(self, reader: ReaderHandle) -> None:
        if self._reader is reader:
            self._reader = None
        async with self._get_read_lock():
            pass

    async def _write(self, data: bytes) -> None:
        async with self._get_write_lock():
            connection = self.connection
            if connection is None or not connection.is_open:
                raise TransportClosed("port is closed")
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_all, connection.handle, data)
            except (serial.SerialException, OSError) as e:
                logger.error("Write to %s failed: %s", connection.device, e)
                self._drop_connection()
                raise TransportClosed(f"write failed: {e}") from e
