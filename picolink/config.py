"""Session configuration."""

from dataclasses import dataclass
from typing import Optional, Tuple

from .protocol import (
    READY_ATTEMPTS,
    READY_INTERVAL_S,
    READ_TIMEOUT_S,
    TRANSFER_CHUNK_SIZE,
)


@dataclass
class SessionConfig:
    """
    Configuration for a device session.

    Attributes
    ----------
    port : str, optional
        Serial device to open. None picks the first detected MicroPython board.
    ready_attempts : int
        How many times to poll for a readable port before giving up
    ready_interval : float
        Seconds between readiness polls
    read_timeout : float
        pyserial read timeout; bounds how long a cancelled read can linger
    chunk_size : int
        Bytes per write/read statement in generated device scripts
    file_extensions : tuple of str
        Suffixes kept by ``list_files`` when the caller passes none.
        An empty tuple keeps every entry.
    verify_writes : bool
        Read every written file back and compare it byte for byte
    command_timeout : float, optional
        Default timeout for raw commands in seconds. None waits forever.
    interrupt_before_raw : bool
        Send Ctrl-C before Ctrl-A so a running program cannot swallow
        the raw-mode request
    """
    port: Optional[str] = None
    ready_attempts: int = READY_ATTEMPTS
    ready_interval: float = READY_INTERVAL_S
    read_timeout: float = READ_TIMEOUT_S
    chunk_size: int = TRANSFER_CHUNK_SIZE
    file_extensions: Tuple[str, ...] = (".py",)
    verify_writes: bool = True
    command_timeout: Optional[float] = None
    interrupt_before_raw: bool = False

    def __post_init__(self):
        if self.ready_attempts < 1:
            raise ValueError("ready_attempts must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if isinstance(self.file_extensions, str):
            self.file_extensions = (self.file_extensions,)
        self.file_extensions = tuple(self.file_extensions)
