from __future__ import annotations

import logging
import socket

from rich.console import Console
from rich.logging import RichHandler

# Process exit codes, shared by server and client.
EX_OK = 0
EX_ARGFAIL = 1
EX_SYSERR = 2
EX_NOMEM = 3

DEFAULT_PORT = "9000"


class EchoError(RuntimeError):
    """Fatal setup error; carries the exit code the process should use."""

    exit_code = EX_SYSERR

    def __init__(self, operation: str, detail: object):
        self.errno = None
        if isinstance(detail, OSError):
            self.errno = detail.errno
            detail = detail.strerror or detail
        super().__init__(f"{operation}: {detail}")
        self.operation = operation
        self.detail = detail


class ConfigError(EchoError):
    exit_code = EX_ARGFAIL


class TransportError(EchoError):
    exit_code = EX_SYSERR


class ConnectError(EchoError):
    exit_code = EX_ARGFAIL


def resolve_port(name: str) -> int:
    """Turn ``"9000"`` or a service name such as ``"echo"`` into a port number."""
    try:
        number = int(name, 0)
    except ValueError:
        number = None
    if number is not None:
        if 0 < number <= 0xFFFF:
            return number
        raise ConfigError("resolve_port", f"bad port {name}")

    try:
        return socket.getservbyname(name, "tcp")
    except OSError as exc:
        raise ConfigError("resolve_port", f"bad port {name}") from exc


def make_console(stderr: bool = False) -> Console:
    return Console(stderr=stderr, highlight=False)


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    handler = RichHandler(
        console=console or make_console(stderr=True),
        show_path=False,
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
