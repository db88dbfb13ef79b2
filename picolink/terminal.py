"""
Terminal Sinks
==============

The session never renders anything itself. Inbound passthrough text is
handed to a :class:`TerminalSink`; implement ``accept`` to route it to
a widget, a file or a queue.

>>> class ListSink(TerminalSink):
...     def __init__(self):
...         self.chunks = []
...     def accept(self, chunk):
...         self.chunks.append(chunk)
"""

import codecs
import inspect
import re
import sys
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TextIO, Union

# C0 controls except BEL, BS, TAB, LF, CR and ESC (ANSI sequences pass)
_CONTROL_RE = re.compile(r"[\x00-\x06\x0b\x0c\x0e-\x1a\x1c-\x1f\x7f]")


def sanitize(text: str) -> str:
    """Strip control characters a terminal should never see (REPL sentinels)."""
    return _CONTROL_RE.sub("", text)


class IncrementalTextDecoder:
    """UTF-8 decoder that carries partial multibyte sequences across chunks."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def decode(self, data: bytes, final: bool = False) -> str:
        return self._decoder.decode(data, final)

    def reset(self) -> None:
        self._decoder.reset()


class TerminalSink(ABC):
    """Receiver for sanitized terminal text."""

    @abstractmethod
    def accept(self, chunk: str) -> Optional[Awaitable[Any]]:
        """Take one chunk of text. May return an awaitable."""


class NullSink(TerminalSink):
    def accept(self, chunk: str) -> None:
        pass


class CallbackSink(TerminalSink):
    """Adapts a plain or ``async`` callable to the sink interface."""

    def __init__(self, callback: Callable[[str], Union[None, Awaitable[Any]]]):
        self.callback = callback

    def accept(self, chunk: str):
        return self.callback(chunk)


class StreamSink(TerminalSink):
    """Writes chunks to a text stream, ``sys.stdout`` by default."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdout

    def accept(self, chunk: str) -> None:
        self.stream.write(chunk)
        self.stream.flush()


async def deliver(sink: TerminalSink, chunk: str) -> None:
    """Hand ``chunk`` to ``sink``, awaiting it if the sink is asynchronous."""
    result = sink.accept(chunk)
    if inspect.isawaitable(result):
        await result
