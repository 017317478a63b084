from __future__ import annotations

import argparse
import sys

from rich.markup import escape

from frame_echo.client import run_client
from frame_echo.common import (
    DEFAULT_PORT,
    EX_ARGFAIL,
    EX_NOMEM,
    EchoError,
    configure_logging,
    make_console,
    resolve_port,
)
from frame_echo.config import ClientConfig, ServerConfig
from frame_echo.server import run_server


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with 2 on bad arguments; this CLI reserves 2 for system errors."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EX_ARGFAIL, f"{self.prog}: error: {message}\n")


def _add_server(sub: argparse._SubParsersAction) -> None:
    srv = sub.add_parser("server", help="Run the frame echo server (IPv6 dual-stack, IPv4 fallback)")
    srv.add_argument("-p", "--port", default=DEFAULT_PORT, help="TCP port number or service name (default: 9000)")
    srv.add_argument("-n", "--numeric", action="store_true", help="Log peer addresses without name lookups")
    srv.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")


def _add_client(sub: argparse._SubParsersAction) -> None:
    cli = sub.add_parser("client", help="Interactively send lines to a frame echo server")
    cli.add_argument("-p", "--port", default=DEFAULT_PORT, help="TCP port number or service name (default: 9000)")
    cli.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")
    cli.add_argument("host", help="Server host name or IP address")


def _fatal(prog: str, exc: EchoError) -> int:
    make_console(stderr=True).print(f"[red]{escape(prog)}: {escape(str(exc))}[/red]")
    return exc.exit_code


def main(argv: list[str] | None = None) -> int:
    parser = _ArgumentParser(
        prog="frame-echo",
        description=(
            "Fixed-frame TCP echo service. The server answers every frame with 'ok' "
            "(under 16 bytes) or 'noname'; the client sends one line per frame."
        ),
    )
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_server(sub)
    _add_client(sub)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    prog = f"{parser.prog} {args.cmd}"

    if args.cmd == "server":
        try:
            config = ServerConfig(port=resolve_port(args.port), resolve_peer_names=not args.numeric, prog=prog)
            return run_server(config)
        except EchoError as exc:
            return _fatal(prog, exc)
        except MemoryError:
            make_console(stderr=True).print(f"[red]{escape(prog)}: cannot allocate memory[/red]")
            return EX_NOMEM

    if args.cmd == "client":
        try:
            config = ClientConfig(host=args.host, port=resolve_port(args.port), prog=prog)
            return run_client(config)
        except EchoError as exc:
            return _fatal(prog, exc)

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return EX_ARGFAIL


def server_main(argv: list[str] | None = None) -> int:
    return main(["server", *(sys.argv[1:] if argv is None else argv)])


def client_main(argv: list[str] | None = None) -> int:
    return main(["client", *(sys.argv[1:] if argv is None else argv)])


if __name__ == "__main__":
    raise SystemExit(main())
