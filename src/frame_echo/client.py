from __future__ import annotations

import contextlib
import errno
import logging
import socket
from typing import Callable, Optional

from rich.console import Console
from rich.markup import escape

from frame_echo.common import EX_OK, ConnectError, TransportError, make_console
from frame_echo.config import ClientConfig
from frame_echo.protocol import FRAME_SIZE, decode_frame, encode_request

logger = logging.getLogger(__name__)

LineReader = Callable[[str], Optional[str]]


def console_line_reader(console: Console) -> LineReader:
    """Prompt on ``console``; returns ``None`` at end of input."""
    with contextlib.suppress(ImportError):
        import readline  # noqa: F401  (line editing and history for input())

    def read_line(prompt: str) -> str | None:
        try:
            return console.input(prompt)
        except (EOFError, KeyboardInterrupt):
            console.print()
            return None

    return read_line


def open_connection(host: str, port: int, console: Console | None = None) -> socket.socket:
    """Connect to the first address of ``host`` that accepts, trying each in order."""
    console = console or make_console()
    try:
        candidates = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise TransportError("getaddrinfo", exc) from exc

    for family, socktype, proto, _canonname, sockaddr in candidates:
        try:
            numeric, _ = socket.getnameinfo(sockaddr, socket.NI_NUMERICHOST | socket.NI_NUMERICSERV)
        except OSError as exc:
            logger.warning("getnameinfo: %s", exc)
        else:
            console.print(f"Trying {escape(numeric)} ...")

        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            if family == socket.AF_INET6 and exc.errno == errno.EAFNOSUPPORT:
                logger.warning("socket: no IPv6 support on this host")
            else:
                logger.warning("socket: %s", exc)
            continue

        try:
            sock.connect(sockaddr)
        except OSError as exc:
            logger.warning("connect: %s", exc.strerror or exc)
            sock.close()
            continue

        console.print(f"[green]connected to {escape(host)}[/green]")
        return sock

    raise ConnectError("connect", f"could not connect to host {host}")


class ClientSession:
    """Interactive loop: one line out as a frame, one reply frame back.

    Stops at end of input, on the line ``"."``, or when the connection fails.
    The socket is shut down whichever way the loop ends.
    """

    def __init__(
        self,
        sock: socket.socket,
        config: ClientConfig,
        read_line: LineReader | None = None,
        console: Console | None = None,
    ):
        self.sock = sock
        self.config = config
        self.console = console or make_console()
        self.read_line = read_line or console_line_reader(self.console)

    def run(self) -> None:
        self.console.print(f"\n[cyan]Welcome to {escape(self.config.prog)}: period newline exits[/cyan]\n")
        try:
            while True:
                line = self.read_line(self.config.prompt)
                if line is None or line == ".":
                    break
                if not line:
                    continue
                reply = self.exchange(line)
                if reply is None:
                    break
                self.console.print(f"[green]response:[/green] {escape(reply)}")
        except KeyboardInterrupt:
            # Ctrl-C during an exchange ends the session like end of input.
            self.console.print()
        finally:
            self.close()

    def exchange(self, line: str) -> str | None:
        """Send ``line`` and wait for the reply; ``None`` means the session is over."""
        try:
            self.sock.sendall(encode_request(line))
        except OSError as exc:
            logger.error("%s: write: %s", self.config.prog, exc)
            return None

        try:
            data = self.sock.recv(FRAME_SIZE)
        except OSError as exc:
            logger.error("%s: read: %s", self.config.prog, exc)
            return None
        if not data:
            logger.error("%s: read: connection closed by server", self.config.prog)
            return None
        return decode_frame(data)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            logger.warning("%s: shutdown error: %s", self.config.prog, exc)
        self.sock.close()
        self.console.print("[yellow]client connection closed[/yellow]")


def run_client(
    config: ClientConfig,
    read_line: LineReader | None = None,
    console: Console | None = None,
) -> int:
    console = console or make_console()
    sock = open_connection(config.host, config.port, console)
    ClientSession(sock, config, read_line=read_line, console=console).run()
    return EX_OK
