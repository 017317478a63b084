from __future__ import annotations

import errno
import logging
import signal
import socket
import threading
from types import FrameType, TracebackType

from frame_echo.common import EX_OK, TransportError
from frame_echo.config import ServerConfig
from frame_echo.protocol import FRAME_SIZE, choose_reply, decode_frame, pack_frame

logger = logging.getLogger(__name__)

# socket() errno values meaning "this host cannot do IPv6".
_NO_IPV6 = {errno.EAFNOSUPPORT, errno.EPROTONOSUPPORT}

_SHUTDOWN_SIGNALS = ("SIGHUP", "SIGINT", "SIGTERM")


class ConnectionCounter:
    """Process-wide accept counter, used only to label log lines."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ConnectionHandler:
    """Runs the frame exchange on one accepted connection until it closes.

    The handler owns ``conn`` exclusively. Read and write errors end this
    handler only; nothing is propagated to the listener.
    """

    def __init__(self, conn: socket.socket, peer: tuple, number: int, resolve_names: bool = True):
        self.conn = conn
        self.peer = peer
        self.number = number
        self.resolve_names = resolve_names

    def run(self) -> None:
        try:
            host, service = self._peer_name()
        except OSError as exc:
            logger.error("conn=%d getnameinfo: %s", self.number, exc)
            self._close()
            return

        logger.info("accept connection n. %d: host = %s port = %s", self.number, host, service)
        try:
            self.serve()
        finally:
            self._close()

    def serve(self) -> None:
        while True:
            try:
                data = self.conn.recv(FRAME_SIZE)
            except OSError as exc:
                logger.error("conn=%d read: %s", self.number, exc)
                return
            if not data:
                logger.info("conn=%d client closed connection", self.number)
                return

            logger.info("conn=%d client: %s", self.number, decode_frame(data))
            reply = pack_frame(choose_reply(len(data)))
            try:
                self.conn.sendall(reply)
            except OSError as exc:
                logger.error("conn=%d write: %s", self.number, exc)
                return

    def _peer_name(self) -> tuple[str, str]:
        flags = 0 if self.resolve_names else socket.NI_NUMERICHOST | socket.NI_NUMERICSERV
        return socket.getnameinfo(self.peer, flags)

    def _close(self) -> None:
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            logger.debug("conn=%d shutdown: %s", self.number, exc)
        self.conn.close()


class EchoServer:
    def __init__(self, config: ServerConfig):
        self.config = config
        self.counter = ConnectionCounter()
        self._socket: socket.socket | None = None
        self._stop = threading.Event()
        self._stop_signal: int | None = None
        self._signals_installed = False

    @property
    def port(self) -> int:
        if self._socket is None:
            raise RuntimeError("Server is not bound")
        return self._socket.getsockname()[1]

    @property
    def family(self) -> socket.AddressFamily:
        if self._socket is None:
            raise RuntimeError("Server is not bound")
        return self._socket.family

    def bind(self) -> None:
        if self._socket is not None:
            raise RuntimeError("Server is already bound")

        sock = self._create_socket()
        family = sock.family
        try:
            self._bind_and_listen(sock)
        except TransportError as exc:
            sock.close()
            # IPv6 sockets exist but the host has no IPv6 address to bind.
            if family != socket.AF_INET6 or exc.errno != errno.EADDRNOTAVAIL:
                raise
            logger.debug("IPv6 wildcard address unavailable, using IPv4")
            sock = self._create_ipv4_socket()
            try:
                self._bind_and_listen(sock)
            except TransportError:
                sock.close()
                raise
        self._socket = sock

    def _create_socket(self) -> socket.socket:
        try:
            sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
        except OSError as exc:
            if exc.errno not in _NO_IPV6:
                raise TransportError("socket", exc) from exc
            logger.debug("no IPv6 support on this host, using IPv4")
            return self._create_ipv4_socket()

        try:
            # Accept IPv4 clients too, as v4-mapped addresses.
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        except OSError as exc:
            sock.close()
            raise TransportError("setsockopt", exc) from exc
        return sock

    def _create_ipv4_socket(self) -> socket.socket:
        try:
            return socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            raise TransportError("socket", exc) from exc

    def _bind_and_listen(self, sock: socket.socket) -> None:
        wildcard = "::" if sock.family == socket.AF_INET6 else ""
        operation = "setsockopt"
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            operation = "bind"
            sock.bind((wildcard, self.config.port))
            operation = "listen"
            sock.listen(self.config.backlog)
        except OSError as exc:
            raise TransportError(operation, exc) from exc

    def install_signal_handlers(self) -> None:
        """Route hang-up, interrupt and terminate to :meth:`stop`.

        Python only delivers signals to the main thread, so this is a no-op
        anywhere else (tests drive :meth:`stop` directly instead).
        """
        if self._signals_installed:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("signal handlers skipped: not in main thread")
            return
        for name in _SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                signal.signal(signum, self._on_signal)
        self._signals_installed = True

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        # Only flag the stop here; the accept loop does the logging and cleanup.
        self._stop_signal = signum
        self._stop.set()

    def stop(self) -> None:
        self._stop.set()

    def serve_forever(self) -> None:
        if self._socket is None:
            self.bind()
        listener = self._socket
        listener.settimeout(self.config.poll_interval)
        logger.info(
            "%s: Initialized, waiting for incoming connections on port %d (%s)",
            self.config.prog,
            self.port,
            self.family.name,
        )

        while not self._stop.is_set():
            try:
                conn, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set() or listener.fileno() < 0:
                    break
                logger.error("accept: %s", exc)
                continue
            self._dispatch(conn, addr)

        if self._stop_signal is not None:
            logger.info("received %s", signal.Signals(self._stop_signal).name)

    def _dispatch(self, conn: socket.socket, addr: tuple) -> None:
        number = self.counter.next()
        # Handlers never see the listening socket and never time out.
        conn.setblocking(True)
        handler = ConnectionHandler(conn, addr, number, resolve_names=self.config.resolve_peer_names)
        thread = threading.Thread(target=handler.run, name=f"conn-{number}", daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            logger.error("conn=%d cannot start handler: %s", number, exc)
            conn.close()

    def close(self) -> None:
        if self._socket is None:
            return
        self._socket.close()
        self._socket = None
        logger.info("%s: shutdown after %d connections", self.config.prog, self.counter.value)

    def __enter__(self) -> "EchoServer":
        if self._socket is None:
            self.bind()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def run_server(config: ServerConfig) -> int:
    """Serve until a termination signal arrives, then close the endpoint.

    In-flight connection handlers are daemon threads and are not joined.
    """
    server = EchoServer(config)
    server.install_signal_handlers()
    with server:
        server.serve_forever()
    return EX_OK
