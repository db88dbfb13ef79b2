"""
Raw REPL Protocol Constants
===========================

This module defines the byte-level vocabulary used to talk to a
MicroPython REPL over a serial link.

Protocol Overview
-----------------
The REPL has no message framing of its own. Everything is inferred from
control bytes and marker text in the stream.

Host → Device:
    0x01 (Ctrl-A)     - Enter raw REPL
    0x02 (Ctrl-B)     - Leave raw REPL, back to the friendly prompt
    0x03 (Ctrl-C)     - Interrupt the running program
    0x04 (Ctrl-D)     - End of command (execute the buffered code)

Device → Host (raw REPL):
    raw REPL; CTRL-B to exit\\r\\n>      - Banner after entering raw mode
    OK<stdout>\\x04<stderr>\\x04>        - Response to one executed command

Device → Host (friendly REPL):
    >>>                                - Interactive prompt
"""


class Sentinel:
    """Control bytes with REPL-defined meaning."""
    RAW_ENTER = b"\x01"      # Ctrl-A
    RAW_EXIT = b"\x02"       # Ctrl-B
    INTERRUPT = b"\x03"      # Ctrl-C
    END_OF_COMMAND = b"\x04" # Ctrl-D


class Marker:
    """Text the device emits that the host keys on."""
    RAW_BANNER = b"raw REPL; CTRL-B to exit\r\n"  # Raw prompt ">" follows
    ACK = b">OK"             # Raw prompt followed by OK: output starts here
    PROMPT = ">>>"           # Friendly REPL prompt


# Serial line settings
BAUDRATE = 115200

# Port readiness polling
READY_ATTEMPTS = 20
READY_INTERVAL_S = 0.1

# Serial read timeout, keeps blocked reads responsive to cancellation
READ_TIMEOUT_S = 0.05

# Bytes per f.write()/f.read() statement in generated device scripts
TRANSFER_CHUNK_SIZE = 256

# Editor scratch file
DEFAULT_FILENAME = "temp.py"
