import errno
import socket
import unittest

from frame_echo.common import (
    EX_ARGFAIL,
    EX_SYSERR,
    DEFAULT_PORT,
    ConfigError,
    ConnectError,
    TransportError,
    resolve_port,
)
from frame_echo.config import ClientConfig, ServerConfig


class ResolvePortTests(unittest.TestCase):
    def test_numeric_port(self):
        self.assertEqual(resolve_port("9000"), 9000)
        self.assertEqual(resolve_port("65535"), 65535)

    def test_out_of_range_ports_are_rejected(self):
        for name in ("0", "-1", "65536", "70000"):
            with self.assertRaises(ConfigError):
                resolve_port(name)

    def test_unknown_service_name(self):
        with self.assertRaisesRegex(ConfigError, "bad port no-such-service"):
            resolve_port("no-such-service")

    def test_service_name(self):
        try:
            expected = socket.getservbyname("echo", "tcp")
        except OSError:
            self.skipTest("no services database on this host")
        self.assertEqual(resolve_port("echo"), expected)


class ErrorTests(unittest.TestCase):
    def test_exit_codes(self):
        self.assertEqual(ConfigError("resolve_port", "bad").exit_code, EX_ARGFAIL)
        self.assertEqual(ConnectError("connect", "nope").exit_code, EX_ARGFAIL)
        self.assertEqual(TransportError("bind", "busy").exit_code, EX_SYSERR)

    def test_os_error_detail(self):
        exc = TransportError("bind", OSError(errno.EADDRINUSE, "Address already in use"))
        self.assertEqual(str(exc), "bind: Address already in use")
        self.assertEqual(exc.errno, errno.EADDRINUSE)
        self.assertEqual(exc.operation, "bind")


class DefaultPortTests(unittest.TestCase):
    def test_configs_share_the_cli_default(self):
        self.assertEqual(ServerConfig().port, resolve_port(DEFAULT_PORT))
        self.assertEqual(ClientConfig(host="localhost").port, resolve_port(DEFAULT_PORT))


if __name__ == "__main__":
    unittest.main()
