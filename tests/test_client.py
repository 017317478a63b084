import io
import socket
import threading
import unittest
from unittest import mock

from rich.console import Console

from frame_echo.client import ClientSession, open_connection, run_client
from frame_echo.common import EX_OK, ConnectError
from frame_echo.config import ClientConfig, ServerConfig
from frame_echo.protocol import FRAME_SIZE, pack_frame
from frame_echo.server import EchoServer


def quiet_console():
    return Console(file=io.StringIO(), force_terminal=False, width=200)


def scripted(lines):
    remaining = list(lines)

    def read_line(prompt):
        return remaining.pop(0) if remaining else None

    return read_line


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class FakeServer:
    """Other end of a socketpair: records every frame and answers each one."""

    def __init__(self, sock, reply=b"ok"):
        self.sock = sock
        self.reply = reply
        self.received = []
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def _run(self):
        with self.sock:
            while True:
                data = self.sock.recv(FRAME_SIZE)
                if not data:
                    return
                self.received.append(data)
                self.sock.sendall(pack_frame(self.reply))


class ClientSessionTests(unittest.TestCase):
    def setUp(self):
        self.client_side, server_side = socket.socketpair()
        self.fake = FakeServer(server_side)
        self.console = quiet_console()
        self.config = ClientConfig(host="localhost", prog="frame-echo client")

    def session(self, lines):
        return ClientSession(self.client_side, self.config, read_line=scripted(lines), console=self.console)

    def output(self):
        return self.console.file.getvalue()

    def test_sends_each_line_and_prints_reply(self):
        self.session(["hello", "world"]).run()
        self.fake.thread.join(timeout=2)
        self.assertEqual(self.fake.received, [b"hello", b"world"])
        self.assertIn("response: ok", self.output())
        self.assertIn("client connection closed", self.output())

    def test_period_ends_session_without_sending(self):
        self.session(["."]).run()
        self.fake.thread.join(timeout=2)
        self.assertFalse(self.fake.thread.is_alive())
        self.assertEqual(self.fake.received, [])

    def test_lines_after_period_are_ignored(self):
        self.session(["first", ".", "never"]).run()
        self.fake.thread.join(timeout=2)
        self.assertEqual(self.fake.received, [b"first"])

    def test_empty_lines_are_skipped(self):
        self.session(["", "x"]).run()
        self.fake.thread.join(timeout=2)
        self.assertEqual(self.fake.received, [b"x"])

    def test_server_close_ends_session(self):
        client_side, server_side = socket.socketpair()
        server_side.close()
        session = ClientSession(client_side, self.config, read_line=scripted(["a", "b"]), console=self.console)
        self.assertIsNone(session.exchange("a"))
        session.close()

    def test_interrupt_while_waiting_for_reply_ends_session(self):
        class InterruptedSocket:
            closed = False

            def sendall(self, data):
                pass

            def recv(self, size):
                raise KeyboardInterrupt

            def shutdown(self, how):
                pass

            def close(self):
                self.closed = True

        sock = InterruptedSocket()
        ClientSession(sock, self.config, read_line=scripted(["hello"]), console=self.console).run()
        self.assertTrue(sock.closed)
        self.assertIn("client connection closed", self.output())


class OpenConnectionTests(unittest.TestCase):
    def test_falls_through_to_the_next_address(self):
        live = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        live.bind(("127.0.0.1", 0))
        live.listen(1)
        self.addCleanup(live.close)
        live_port = live.getsockname()[1]
        candidates = [
            (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", ("127.0.0.1", free_port())),
            (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", ("127.0.0.1", live_port)),
        ]
        console = quiet_console()
        with mock.patch("frame_echo.client.socket.getaddrinfo", return_value=candidates):
            sock = open_connection("example.test", live_port, console)
        with sock:
            self.assertEqual(sock.getpeername()[1], live_port)
        out = console.file.getvalue()
        self.assertEqual(out.count("Trying 127.0.0.1 ..."), 2)
        self.assertIn("connected to example.test", out)

    def test_connect_failure_raises_connect_error(self):
        with self.assertRaisesRegex(ConnectError, "could not connect to host 127.0.0.1"):
            open_connection("127.0.0.1", free_port(), quiet_console())

    def test_end_to_end_against_server(self):
        server = EchoServer(ServerConfig(port=0, poll_interval=0.05, resolve_peer_names=False))
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        try:
            console = quiet_console()
            config = ClientConfig(host="localhost", port=server.port)
            status = run_client(config, read_line=scripted(["hello", "x" * 20, "."]), console=console)
            self.assertEqual(status, EX_OK)

            out = console.file.getvalue()
            self.assertIn("connected to localhost", out)
            self.assertIn("response: ok", out)
            self.assertIn("response: noname", out)

            # The server keeps accepting after the session ends.
            with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
                sock.sendall(b"again")
                self.assertTrue(sock.recv(FRAME_SIZE).startswith(b"ok"))
        finally:
            server.stop()
            thread.join(timeout=2)
            server.close()


if __name__ == "__main__":
    unittest.main()
