"""Fixed-size frame exchange shared by the server and the client.

A frame is whatever a single ``recv``/``send`` call moves, capped at
``FRAME_SIZE`` bytes. There is no length prefix and no terminator, so frame
boundaries depend on how TCP batches the bytes. Short reads and coalesced
writes are not detected.
"""

from __future__ import annotations

FRAME_SIZE = 255

# Requests shorter than this many bytes are answered with REPLY_SHORT.
SHORT_FRAME_LIMIT = 16

REPLY_SHORT = b"ok"
REPLY_LONG = b"noname"


def choose_reply(nbytes: int) -> bytes:
    """Pick the reply token from the byte count of one read; content is ignored."""
    if nbytes < SHORT_FRAME_LIMIT:
        return REPLY_SHORT
    return REPLY_LONG


def pack_frame(payload: bytes) -> bytes:
    """NUL-pad (or truncate) ``payload`` to exactly one frame."""
    return payload[:FRAME_SIZE].ljust(FRAME_SIZE, b"\0")


def encode_request(line: str) -> bytes:
    return line.encode("utf-8")[:FRAME_SIZE]


def decode_frame(data: bytes) -> str:
    """Text up to the first NUL, for display and logging."""
    return data.split(b"\0", 1)[0].decode("utf-8", errors="replace")
