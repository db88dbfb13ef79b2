#!/usr/bin/env python3
"""
picolink command line
=====================

Usage:
    picolink ports
    picolink [--port PORT] ls [--ext .py --ext .txt] [--path DIR]
    picolink [--port PORT] get NAME [-o FILE]
    picolink [--port PORT] put LOCAL [NAME] [--no-verify]
    picolink [--port PORT] run FILE [--follow SECONDS]
    picolink [--port PORT] term

In ``term`` every line typed is sent to the board followed by a carriage
return. A line reading ``:stop`` sends Ctrl-C, ``:quit`` or end of input
leaves the terminal.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import SessionConfig
from .errors import PicolinkError
from .port import enumerate_ports
from .session import DeviceSession
from .terminal import NullSink, StreamSink
from .tools import log_exceptions

logger = logging.getLogger(__name__)

STOP_COMMAND = ":stop"
QUIT_COMMAND = ":quit"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="picolink",
        description="Talk to a MicroPython board over its serial REPL",
    )
    parser.add_argument('--port', '-p', default=None,
                        help='Serial port (default: first detected board)')
    parser.add_argument('--timeout', '-t', type=float, default=None,
                        help='Seconds to wait for the board per command (default: no limit)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('ports', help='List serial ports')

    ls = sub.add_parser('ls', help='List files on the board')
    ls.add_argument('--ext', action='append', default=None,
                    help='Extension to keep, repeatable (default: .py)')
    ls.add_argument('--all', action='store_true', help='Show every entry')
    ls.add_argument('--path', default=None, help='Directory on the board')

    get = sub.add_parser('get', help='Copy a file from the board')
    get.add_argument('name')
    get.add_argument('--output', '-o', default=None,
                     help='Local file (default: stdout)')

    put = sub.add_parser('put', help='Copy a file to the board')
    put.add_argument('local')
    put.add_argument('name', nargs='?', default=None,
                     help='Name on the board (default: local file name)')
    put.add_argument('--no-verify', action='store_true',
                     help='Skip reading the file back')

    run = sub.add_parser('run', help='Run a local script on the board')
    run.add_argument('file')
    run.add_argument('--follow', type=float, default=2.0,
                     help='Seconds to keep streaming output (default: 2.0)')

    sub.add_parser('term', help='Interactive terminal')

    return parser


def config_from_args(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(port=args.port, command_timeout=args.timeout)


async def _cmd_ls(session: DeviceSession, args: argparse.Namespace) -> int:
    extensions = () if args.all else args.ext
    for name in await session.list_files(extensions=extensions, path=args.path):
        print(name)
    return 0


async def _cmd_get(session: DeviceSession, args: argparse.Namespace) -> int:
    data = await session.read_file(args.name)
    if args.output:
        Path(args.output).write_bytes(data)
        print(f"{args.name} -> {args.output} ({len(data)} bytes)")
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    return 0


async def _cmd_put(session: DeviceSession, args: argparse.Namespace) -> int:
    local = Path(args.local)
    name = args.name or local.name
    data = local.read_bytes()
    await session.write_file(name, data, verify=not args.no_verify)
    print(f"{local} -> {name} ({len(data)} bytes)")
    return 0


async def _cmd_run(session: DeviceSession, args: argparse.Namespace) -> int:
    code = Path(args.file).read_text(encoding="utf-8")
    await session.run_code(code)
    await asyncio.sleep(args.follow)
    return 0


async def _cmd_term(session: DeviceSession, args: argparse.Namespace) -> int:
    print(f"Connected. '{STOP_COMMAND}' sends Ctrl-C, '{QUIT_COMMAND}' exits.")
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line or line.strip() == QUIT_COMMAND:
            break
        if line.strip() == STOP_COMMAND:
            await session.interrupt()
            continue
        await session.write_terminal(line.rstrip("\r\n") + "\r")
    return 0


COMMANDS = {
    'ls': _cmd_ls,
    'get': _cmd_get,
    'put': _cmd_put,
    'run': _cmd_run,
    'term': _cmd_term,
}

STREAMING_COMMANDS = {'run', 'term'}


async def run_command(args: argparse.Namespace, session: Optional[DeviceSession] = None) -> int:
    """Open a session (unless one is given) and run the chosen subcommand."""
    handler = COMMANDS[args.command]
    if session is None:
        sink = StreamSink() if args.command in STREAMING_COMMANDS else NullSink()
        session = DeviceSession(sink=sink, config=config_from_args(args))
    async with session:
        return await handler(session, args)


@log_exceptions
def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == 'ports':
        for device, description in enumerate_ports():
            print(f"{device}\t{description}")
        return 0

    try:
        return asyncio.run(run_command(args))
    except PicolinkError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 130


if __name__ == '__main__':
    sys.exit(main())
