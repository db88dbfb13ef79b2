"""
Data Types for picolink
=======================

Plain enums and dataclasses shared by the port, the session and its
observers. No serial or asyncio dependencies live here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .protocol import BAUDRATE


class SessionMode(Enum):
    """What the session is currently doing with the stream."""
    REPL = "repl"                    # Terminal passthrough
    RAW = "raw"                      # One framed raw-REPL command in flight
    FILE_TRANSFER = "file-transfer"  # Raw command moving file contents


class DeviceStatus(str, Enum):
    """
    Advisory device state derived from the passthrough stream.

    Only meant for UI enablement; framing never depends on it.
    """
    REPL = "REPL"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class StatusEvent:
    """
    Notification sent to status observers.

    Attributes:
        status: New advisory status
        name: Event name, kept for observers that multiplex several feeds
    """
    status: DeviceStatus
    name: str = "status-changed"


@dataclass
class Connection:
    """
    An opened serial port.

    Attributes:
        device: Port device name (e.g. "/dev/ttyACM0", "COM3")
        baudrate: Line speed, always 115200 for the REPL
        handle: Underlying pyserial object
    """
    device: str
    baudrate: int = BAUDRATE
    handle: Optional[Any] = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return self.handle is not None and bool(getattr(self.handle, "is_open", False))
