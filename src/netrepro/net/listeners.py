"""Listener abstraction with local-socket and overlay-network variants.

The rest of the program only sees :class:`Listener` and :class:`Connection`;
which stack sits underneath is decided once by :func:`select_listener`.
"""

from __future__ import annotations

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Protocol

from netrepro.errors import BindError

if TYPE_CHECKING:
    from contextlib import ExitStack

    from netrepro.config.models import ServerConfig
    from netrepro.plugins.manager import PluginManager

logger = logging.getLogger(__name__)
overlay_logger = logging.getLogger("netrepro.overlay")

RECV_SIZE = 65536


def format_address(addr: Any) -> str:
    """Render a socket address as ``host:port`` (IPv6 hosts bracketed)."""
    if isinstance(addr, tuple) and len(addr) >= 2:
        host, port = addr[0], addr[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(addr)


def split_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts. Raises ``ValueError`` on a bad port."""
    host, sep, port = address.rpartition(":")
    if not sep:
        msg = f"missing port in address {address!r}"
        raise ValueError(msg)
    return host.strip("[]"), int(port)


# ── Socket-shaped protocols for overlay providers ─────────────────────


class StreamSocket(Protocol):
    """The subset of :class:`socket.socket` a connection needs."""

    def recv(self, bufsize: int) -> bytes: ...

    def sendall(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class SocketListener(Protocol):
    """What an overlay client's ``listen`` returns: a listening socket look-alike."""

    def accept(self) -> tuple[StreamSocket, Any]: ...

    def close(self) -> None: ...

    def getsockname(self) -> Any: ...


class OverlayClient(Protocol):
    """A started overlay-network client supplied by a provider plugin."""

    def listen(self, network: str, address: str) -> SocketListener: ...

    def close(self) -> Any: ...


# ── Connection ────────────────────────────────────────────────────────


class Connection:
    """A live byte stream with one peer, read line by line.

    Closed exactly once; later :meth:`close` calls are no-ops.
    """

    def __init__(self, sock: StreamSocket, remote_address: str) -> None:
        self._sock = sock
        self._buffer = bytearray()
        self._eof = False
        self._closed = False
        self._lock = threading.Lock()
        self.remote_address = remote_address

    def readline(self) -> bytes:
        """Return the next line including its ``\\n``.

        Blocks until a newline arrives.  At stream end, returns whatever
        partial data is left (possibly ``b""``), which has no terminator.
        Transport errors propagate as :class:`OSError`.
        """
        # Bytes before scan_from are known to hold no newline.
        scan_from = 0
        while True:
            idx = self._buffer.find(b"\n", scan_from)
            if idx >= 0:
                line = bytes(self._buffer[: idx + 1])
                del self._buffer[: idx + 1]
                return line
            if self._eof:
                rest = bytes(self._buffer)
                self._buffer.clear()
                return rest
            scan_from = len(self._buffer)
            chunk = self._sock.recv(RECV_SIZE)
            if not chunk:
                self._eof = True
            else:
                self._buffer += chunk

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._sock.close()


# ── Listener variants ─────────────────────────────────────────────────


class Listener(ABC):
    """An open, bound listener. Owned by the lifecycle, closed at most once."""

    def __init__(self) -> None:
        self._close_lock = threading.Lock()
        self._closed = False

    @abstractmethod
    def accept(self) -> Connection:
        """Block until a peer connects. Raises :class:`OSError` once closed."""

    @property
    @abstractmethod
    def local_address(self) -> str:
        """The bound address as ``host:port``."""

    @abstractmethod
    def _close(self) -> None:
        """Release the underlying resource."""

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """Close the listener, unblocking a pending :meth:`accept`.

        Safe to call from any thread.  Returns True only for the call that
        actually closed it.
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True
        self._close()
        return True


class LocalListener(Listener):
    """TCP listener on the standard local network stack."""

    def __init__(self, host: str, port: int) -> None:
        super().__init__()
        self._sock = socket.create_server((host, port))
        self._address = format_address(self._sock.getsockname())

    @classmethod
    def from_address(cls, address: str) -> LocalListener:
        host, port = split_address(address)
        return cls(host, port)

    def accept(self) -> Connection:
        if self._closed:
            raise OSError("listener is closed")
        sock, addr = self._sock.accept()
        return Connection(sock, format_address(addr))

    @property
    def local_address(self) -> str:
        return self._address

    def _close(self) -> None:
        # close() alone does not wake a thread blocked in accept() on Linux.
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()


class OverlayListener(Listener):
    """Listener obtained from an overlay client's ``listen`` capability."""

    def __init__(self, client: OverlayClient, address: str) -> None:
        super().__init__()
        self._inner = client.listen("tcp", address)
        self._address = format_address(self._inner.getsockname())

    def accept(self) -> Connection:
        if self._closed:
            raise OSError("listener is closed")
        sock, addr = self._inner.accept()
        return Connection(sock, format_address(addr))

    @property
    def local_address(self) -> str:
        return self._address

    def _close(self) -> None:
        shutdown = getattr(self._inner, "shutdown", None)
        if shutdown is not None:
            try:
                shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self._inner.close()


# ── Selection ─────────────────────────────────────────────────────────


def overlay_logf(message: str) -> None:
    """Logging sink handed to overlay clients."""
    overlay_logger.info(message)


def _release_overlay(client: OverlayClient) -> None:
    try:
        outcome = client.close()
    except Exception as exc:
        logger.warning("Server close: %s", exc)
    else:
        logger.info("Server close: %s", outcome)


def select_listener(
    config: ServerConfig,
    *,
    stack: ExitStack,
    plugins: PluginManager | None = None,
    provider: str | None = None,
) -> Listener:
    """Return a :class:`Listener` bound to ``config.address``.

    ``localhost`` (or ``net_listen``) binds on the local stack.  Any other
    hostname asks the plugin layer for an overlay client, whose release is
    pushed onto *stack* before ``listen`` is attempted.

    Raises:
        BindError: binding failed; there is no fallback to the other variant.
    """
    if config.is_local or config.net_listen:
        if config.is_local:
            logger.info("Hostname is localhost; bypassing overlay")
        else:
            logger.info("Hostname is %r; -net-listen set, using the local stack", config.hostname)
        try:
            return LocalListener.from_address(config.address)
        except (OSError, ValueError) as exc:
            raise BindError(f"Listen: {exc}") from exc

    logger.info("Hostname is %r; starting overlay client...", config.hostname)
    if plugins is None:
        raise BindError("Listen: no overlay-network provider is available")
    client = plugins.overlay_client(
        hostname=config.hostname,
        state_dir=config.state_dir,
        logf=overlay_logf,
        provider=provider,
    )
    stack.callback(_release_overlay, client)
    try:
        return OverlayListener(client, config.address)
    except Exception as exc:
        raise BindError(f"Listen: {exc}") from exc
