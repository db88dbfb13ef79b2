"""
picolink - MicroPython REPL link
================================

Drive a MicroPython board over a serial port: stream its REPL to a
terminal, run code, and move files through the raw REPL.

Example:
    >>> import asyncio
    >>> from picolink import DeviceSession, StreamSink
    >>>
    >>> async def main():
    ...     async with DeviceSession(sink=StreamSink()) as session:
    ...         await session.write_file("temp.py", b"print(42)\\n")
    ...         print(await session.list_files())
    >>>
    >>> asyncio.run(main())
"""

from .config import SessionConfig
from .data_types import Connection, DeviceStatus, SessionMode, StatusEvent
from .errors import (
    PicolinkError,
    PortUnavailable,
    PortNotReady,
    Busy,
    NoResponse,
    DecodeError,
    VerificationFailed,
    TransportClosed,
    DeviceError,
)
from .port import (
    StreamPort,
    ReaderHandle,
    WriterHandle,
    enumerate_ports,
    find_micropython_ports,
)
from .session import DeviceSession
from .terminal import (
    TerminalSink,
    CallbackSink,
    StreamSink,
    NullSink,
    sanitize,
)
from .files import FileManager, EditorBuffer, TextBuffer
from .codec import hex_encode, hex_decode
from .protocol import Sentinel, Marker, BAUDRATE

__version__ = "1.0.0"
__all__ = [
    "SessionConfig",
    "Connection",
    "DeviceStatus",
    "SessionMode",
    "StatusEvent",
    "PicolinkError",
    "PortUnavailable",
    "PortNotReady",
    "Busy",
    "NoResponse",
    "DecodeError",
    "VerificationFailed",
    "TransportClosed",
    "DeviceError",
    "StreamPort",
    "ReaderHandle",
    "WriterHandle",
    "enumerate_ports",
    "find_micropython_ports",
    "DeviceSession",
    "TerminalSink",
    "CallbackSink",
    "StreamSink",
    "NullSink",
    "sanitize",
    "FileManager",
    "EditorBuffer",
    "TextBuffer",
    "hex_encode",
    "hex_decode",
    "Sentinel",
    "Marker",
    "BAUDRATE",
]
