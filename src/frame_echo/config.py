from __future__ import annotations

import socket
from dataclasses import dataclass

from frame_echo.common import DEFAULT_PORT


@dataclass(frozen=True)
class ServerConfig:
    # The listening endpoint always binds the wildcard address.
    port: int = int(DEFAULT_PORT)
    backlog: int = socket.SOMAXCONN
    # How often the accept loop wakes up to look at the stop event.
    poll_interval: float = 0.5
    resolve_peer_names: bool = True
    prog: str = "frame-echo-server"


@dataclass(frozen=True)
class ClientConfig:
    host: str
    port: int = int(DEFAULT_PORT)
    prompt: str = "> "
    prog: str = "frame-echo-client"
