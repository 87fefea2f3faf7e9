"""Per-connection line loop: read a line, answer ``OK <N>``.

Lines are unbounded; a peer that never sends a newline keeps the handler
waiting and buffering.  That is an accepted limitation of the service.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netrepro.net.listeners import Connection

logger = logging.getLogger(__name__)

EchoFn = Callable[[str], None]


def strip_terminator(line: bytes) -> bytes:
    """Drop the trailing ``\\n`` and an optional ``\\r`` before it."""
    if line.endswith(b"\n"):
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
    return line


def ack_for(line: bytes) -> bytes:
    """Acknowledgment for one line: ``OK <byte length>\\n``, terminator excluded."""
    return b"OK %d\n" % len(strip_terminator(line))


def handle_connection(conn: Connection, *, echo: EchoFn | None = None) -> int:
    """Acknowledge every complete line on *conn* until it ends.

    Each line's acknowledgment is written before the next line is read.
    Trailing bytes without a newline at stream end get no answer.  The
    connection is closed on every exit path.

    Returns the number of lines acknowledged.
    """
    count = 0
    logger.info("Connected from %r", conn.remote_address)
    try:
        while True:
            line = conn.readline()
            if not line.endswith(b"\n"):
                break
            body = strip_terminator(line)
            if echo is not None:
                echo(body.decode("utf-8", errors="replace"))
            conn.write(ack_for(line))
            count += 1
    except OSError as exc:
        logger.info("Connection %s ended: %s", conn.remote_address, exc)
    finally:
        conn.close()
    logger.info("Connection %s closed after %d line(s)", conn.remote_address, count)
    return count
