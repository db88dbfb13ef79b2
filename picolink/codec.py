"""
File Transfer Codec
===================

The only channel into the board is source text typed at the REPL, so
file contents travel as code:

Write (host → device):
    Bytes become decimal literals inside ``bytes([...])`` statements
    that the device executes against an open file.

Read (device → host):
    The device prints the file as lowercase hex, two characters per
    byte, which is decoded here.

The script builders embed file names with ``repr()`` so quotes in a
name cannot break out of the string literal.
"""

import re
from typing import Iterable, List, Optional

from .errors import DecodeError
from .protocol import TRANSFER_CHUNK_SIZE

_HEX_RE = re.compile(r"[0-9a-fA-F]*")

_LINE_END = "\r\n"


def hex_encode(data: bytes) -> str:
    """Encode bytes as lowercase hex, two digits per byte."""
    return bytes(data).hex()


def hex_decode(text: str) -> bytes:
    """
    Decode a hex string printed by the device.

    Leading and trailing whitespace (the device's print newline) is
    ignored. An empty payload decodes to ``b""``.

    Raises:
        DecodeError: If the payload has odd length or non-hex characters
    """
    payload = text.strip()
    if len(payload) % 2:
        raise DecodeError(f"odd-length hex payload ({len(payload)} characters)")
    if not _HEX_RE.fullmatch(payload):
        raise DecodeError("hex payload contains non-hex characters")
    return bytes(int(payload[i:i + 2], 16) for i in range(0, len(payload), 2))


def bytes_literal(data: bytes) -> str:
    """Render bytes as ``bytes([1,2,3])`` source text."""
    return "bytes([" + ",".join(str(b) for b in data) + "])"


def _chunks(data: bytes, size: int) -> Iterable[bytes]:
    for start in range(0, len(data), size):
        yield data[start:start + size]


def build_write_script(name: str, data: bytes, chunk_size: int = TRANSFER_CHUNK_SIZE) -> str:
    """
    Device script that writes ``data`` to ``name``, replacing the file.

    One ``f.write`` statement per chunk keeps individual source lines
    short enough for the device's compiler.
    """
    lines = [f"with open({name!r}, 'wb') as f:"]
    for chunk in _chunks(bytes(data), chunk_size):
        lines.append(f"  f.write({bytes_literal(chunk)})")
    if not data:
        lines.append("  pass")
    return _LINE_END.join(lines) + _LINE_END


def build_read_script(name: str, chunk_size: int = TRANSFER_CHUNK_SIZE) -> str:
    """Device script that prints the contents of ``name`` as one hex run."""
    lines = [
        "import binascii",
        f"with open({name!r}, 'rb') as f:",
        "  while True:",
        f"    b = f.read({chunk_size})",
        "    if not b:",
        "      break",
        "    print(binascii.hexlify(b).decode(), end='')",
    ]
    return _LINE_END.join(lines) + _LINE_END


def build_list_script(path: Optional[str] = None) -> str:
    """Device script that prints ``os.listdir()`` for ``path``."""
    target = "" if path is None else repr(path)
    return f"import os{_LINE_END}print(os.listdir({target})){_LINE_END}"


def parse_file_list(text: str, extensions: Optional[Iterable[str]] = None) -> List[str]:
    """
    Parse the printed form of a directory listing.

    >>> parse_file_list("['a.py', 'b.txt', 'c.bin']", {".py", ".txt"})
    ['a.py', 'b.txt']

    Args:
        text: Output such as ``['main.py', 'lib']``
        extensions: Suffixes to keep, or a single suffix string;
            None or empty keeps every entry

    Returns:
        Entry names in device order
    """
    cleaned = re.sub(r"[\[\]'\" ]", "", text.strip())
    names = [name for name in cleaned.split(",") if name]
    if not extensions:
        return names
    if isinstance(extensions, str):
        extensions = (extensions,)
    suffixes = tuple(ext.lower() for ext in extensions)
    return [name for name in names if name.lower().endswith(suffixes)]
