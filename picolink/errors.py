"""Exceptions raised by picolink."""


class PicolinkError(Exception):
    """Base class for all picolink errors."""


class PortUnavailable(PicolinkError):
    """No serial port was chosen, or opening it was rejected."""


class PortNotReady(PicolinkError):
    """The port did not become readable/writable within the retry budget."""


class Busy(PicolinkError):
    """A raw command is already in flight on this session."""


class NoResponse(PicolinkError):
    """The device did not answer before the caller's timeout expired."""


class DecodeError(PicolinkError):
    """Hex payload from the device is malformed."""


class VerificationFailed(PicolinkError):
    """File read back after a write does not match what was written."""

    def __init__(self, name: str, expected: int, actual: int):
        super().__init__(
            f"verification of {name!r} failed: wrote {expected} bytes, read back {actual}"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class TransportClosed(PicolinkError):
    """The serial connection dropped or the reader ended mid-operation."""


class DeviceError(PicolinkError):
    """The device raised an exception while executing a raw command."""

    def __init__(self, traceback_text: str):
        lines = [line for line in traceback_text.strip().splitlines() if line.strip()]
        summary = lines[-1] if lines else "device error"
        super().__init__(summary)
        self.traceback_text = traceback_text
