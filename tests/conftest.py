"""
Shared fixtures: fake serial ports and a simulated MicroPython board.

``FakeSerial`` only records writes and returns whatever a test feeds it.
``MicroPythonDevice`` speaks the REPL byte protocol (friendly prompt,
raw REPL banner, ``OK``/``\\x04``/``\\x04>`` framing) and executes the
scripts it receives against an in-memory filesystem.
"""

import asyncio
import builtins
import io
import threading
import time
import types
from typing import Callable, Dict, Optional
from unittest.mock import patch

import pytest
import serial

from picolink import DeviceSession, SessionConfig

BANNER = (
    b"MicroPython v1.23.0 on 2024-06-02; Raspberry Pi Pico with RP2040\r\n"
    b"Type \"help()\" for more information.\r\n>>> "
)
RAW_BANNER = b"raw REPL; CTRL-B to exit\r\n>"


# =============================================================================
# FAKE SERIAL PORTS
# =============================================================================

class FakeSerial:
    """Thread-safe stand-in for serial.Serial."""

    def __init__(self, max_chunk: Optional[int] = None, timeout: float = 0.01):
        self.is_open = True
        self.timeout = timeout
        self.max_chunk = max_chunk
        self.written = bytearray()
        self.writes = []
        self.fail_reads = False
        self.fail_writes = False
        self._inbound = bytearray()
        self._cond = threading.Condition()

    @property
    def in_waiting(self) -> int:
        with self._cond:
            return len(self._inbound)

    def feed(self, data: bytes) -> None:
        """Queue bytes for the host to read."""
        with self._cond:
            self._inbound.extend(data)
            self._cond.notify_all()

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if self.fail_reads:
                raise serial.SerialException("device reports readiness to read but returned no data")
            if not self._inbound:
                self._cond.wait(self.timeout)
            if self.fail_reads:
                raise serial.SerialException("device disconnected")
            count = min(size, len(self._inbound))
            if self.max_chunk:
                count = min(count, self.max_chunk)
            data = bytes(self._inbound[:count])
            del self._inbound[:count]
            return data

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise serial.SerialException("write failed")
        data = bytes(data)
        with self._cond:
            self.written.extend(data)
            self.writes.append(data)
        self.on_write(data)
        return len(data)

    def on_write(self, data: bytes) -> None:
        pass

    def flush(self) -> None:
        pass

    def close(self) -> None:
        with self._cond:
            self.is_open = False
            self._cond.notify_all()


class _DeviceFile(io.BytesIO):
    """Writable file that lands in the device's file table on close."""

    def __init__(self, device: "MicroPythonDevice", name: str):
        super().__init__()
        self._device = device
        self._name = name

    def close(self) -> None:
        if not self.closed:
            self._device.files[self._name] = self._device.store_filter(self.getvalue())
        super().close()


class MicroPythonDevice(FakeSerial):
    """
    Simulated MicroPython board.

    Attributes:
        files: In-memory filesystem, name -> bytes, listing order preserved
        raw: True while in raw REPL
        executed: Every raw script received, in order
        mute: Swallow raw commands without answering
        stdout_override: Bytes printed instead of running the next scripts
        store_filter: Applied to file contents as they are stored
        run_seconds: How long a raw command keeps the board busy. Input
            sent meanwhile is queued and handled once the run finishes.
        exit_delay: Seconds a write carrying Ctrl-B blocks the host
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None, **kwargs):
        super().__init__(**kwargs)
        self.files: Dict[str, bytes] = dict(files or {})
        self.raw = False
        self.executed = []
        self.mute = False
        self.stdout_override: Optional[bytes] = None
        self.store_filter: Callable[[bytes], bytes] = lambda data: data
        self.run_seconds = 0.0
        self.exit_delay = 0.0
        self._code = bytearray()
        self._line = bytearray()
        self._running = False
        self._queued = bytearray()
        self._input_lock = threading.RLock()

    def on_write(self, data: bytes) -> None:
        if self.exit_delay and b"\x02" in data:
            time.sleep(self.exit_delay)
        with self._input_lock:
            if self._running:
                self._queued.extend(data)
                return
            for index, value in enumerate(data):
                if self.raw:
                    self._raw_byte(value)
                else:
                    self._friendly_byte(value)
                if self._running:
                    self._queued.extend(data[index + 1:])
                    return

    def _finish_run(self, response: bytes) -> None:
        with self._input_lock:
            self.feed(response)
            self._running = False
            queued = bytes(self._queued)
            self._queued.clear()
            self.on_write(queued)

    def _raw_byte(self, value: int) -> None:
        if value == 0x02:
            self.raw = False
            self.feed(b"\r\n" + BANNER)
        elif value == 0x01:
            self._code.clear()
            self.feed(RAW_BANNER)
        elif value == 0x04:
            code = self._code.decode("utf-8", errors="replace")
            self._code.clear()
            self.executed.append(code)
            if self.mute:
                return
            if self.stdout_override is not None:
                out, err = self.stdout_override, b""
            else:
                out, err = self.execute(code)
            response = b"OK" + out + b"\x04" + err + b"\x04>"
            if self.run_seconds:
                self._running = True
                threading.Timer(self.run_seconds, self._finish_run, [response]).start()
            else:
                self.feed(response)
        else:
            self._code.append(value)

    def _friendly_byte(self, value: int) -> None:
        if value == 0x01:
            self.raw = True
            self._code.clear()
            self.feed(RAW_BANNER)
        elif value == 0x03:
            self._line.clear()
            self.feed(b"\r\nKeyboardInterrupt: \r\n>>> ")
        elif value == 0x0D:
            line = self._line.decode("utf-8", errors="replace")
            self._line.clear()
            self.feed(b"\r\n")
            if line.strip():
                out, err = self.execute(line)
                self.feed(out + err)
            self.feed(b">>> ")
        else:
            self._line.append(value)
            self.feed(bytes([value]))

    def execute(self, code: str):
        """Run ``code`` and return (stdout, stderr) as the board would print them."""
        stdout = io.StringIO()
        device = self

        def _print(*args, sep=" ", end="\n", file=None):
            stdout.write(sep.join(str(a) for a in args) + end)

        def _open(name, mode="r"):
            if "w" in mode:
                return _DeviceFile(device, name)
            if name not in device.files:
                raise OSError(2, "ENOENT")
            data = device.files[name]
            return io.BytesIO(data) if "b" in mode else io.StringIO(data.decode())

        fake_os = types.SimpleNamespace(listdir=lambda path=None: list(device.files))

        def _import(name, *args, **kwargs):
            if name in ("os", "uos"):
                return fake_os
            return builtins.__import__(name, *args, **kwargs)

        namespace_builtins = dict(builtins.__dict__)
        namespace_builtins.update(print=_print, open=_open, __import__=_import)
        namespace = {"__builtins__": namespace_builtins, "__name__": "__main__"}

        try:
            exec(compile(code.replace("\r\n", "\n"), "<stdin>", "exec"), namespace)
        except Exception as e:
            err = (
                "Traceback (most recent call last):\r\n"
                "  File \"<stdin>\", line 1, in <module>\r\n"
                f"{type(e).__name__}: {e}\r\n"
            )
            return _crlf(stdout.getvalue()), err.encode()
        return _crlf(stdout.getvalue()), b""


class RawPromptSerial(FakeSerial):
    """Answers Ctrl-A with the raw REPL banner and stays silent otherwise."""

    def on_write(self, data: bytes) -> None:
        if b"\x01" in data:
            self.feed(RAW_BANNER)


def _crlf(text: str) -> bytes:
    return text.replace("\n", "\r\n").encode("utf-8")


# =============================================================================
# FIXTURES AND HELPERS
# =============================================================================

def _opener(fake: FakeSerial):
    """serial.Serial replacement that (re)opens and returns ``fake``."""
    def open_serial(*args, **kwargs):
        fake.is_open = True
        return fake
    return open_serial


@pytest.fixture
def device():
    """Simulated board returned by every serial.Serial() call."""
    dev = MicroPythonDevice()
    with patch("serial.Serial", side_effect=_opener(dev)):
        yield dev


@pytest.fixture
def fake_serial():
    """Near-silent serial port returned by every serial.Serial() call."""
    fake = RawPromptSerial()
    with patch("serial.Serial", side_effect=_opener(fake)):
        yield fake


def make_session(sink=None, **overrides) -> DeviceSession:
    """Session on /dev/test with fast readiness polling."""
    settings = dict(port="/dev/test", ready_attempts=3, ready_interval=0.01)
    settings.update(overrides)
    return DeviceSession(sink=sink, config=SessionConfig(**settings))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` from the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %.1fs" % timeout)
        await asyncio.sleep(0.01)
