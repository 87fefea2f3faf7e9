"""Lifecycle controller: accept loop, cancellation, and scoped cleanup.

States: RUNNING until the cancel token fires, then SHUTTING_DOWN (terminal).
A watcher thread waits on the token and closes the listener, which makes the
blocked ``accept()`` fail and ends the loop.  Handlers already running are
left to drain on their own and joined before returning.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Generator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from netrepro.errors import ConfigError
from netrepro.net.handler import EchoFn, handle_connection
from netrepro.net.listeners import select_listener

if TYPE_CHECKING:
    from netrepro.config.models import ServerConfig
    from netrepro.net.listeners import Connection, Listener
    from netrepro.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


class ServerState(StrEnum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class CancelToken:
    """Process-wide cancellation handle, passed explicitly to its users."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@contextmanager
def interrupt_cancels(token: CancelToken) -> Generator[CancelToken]:
    """Fire *token* on SIGINT while the block runs.  Main thread only."""

    def _on_interrupt(signum: int, _frame: Any) -> None:
        logger.info("Received %s; shutting down", signal.Signals(signum).name)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


@dataclass(frozen=True)
class ServeStats:
    """Summary of a finished run."""

    address: str
    connections: int


class ReproServer:
    """Accepts connections on *listener* until *token* is cancelled.

    Parameters:
        listener: Open listener; this server closes it exactly once.
        token: Cancellation handle shared with the watcher.
        echo: Called with each received line's text (stdout in the CLI).
        plugins: Optional plugin manager for connection observation hooks.
    """

    def __init__(
        self,
        listener: Listener,
        token: CancelToken,
        *,
        echo: EchoFn | None = None,
        plugins: PluginManager | None = None,
    ) -> None:
        self._listener = listener
        self._token = token
        self._echo = echo
        self._plugins = plugins
        self._handlers: list[threading.Thread] = []
        self._accepted = 0
        self.state = ServerState.RUNNING

    @property
    def address(self) -> str:
        return self._listener.local_address

    def serve(self) -> ServeStats:
        """Run the accept loop, then shut down and wait for handlers."""
        watcher = threading.Thread(
            target=self._watch, name="netrepro-cancel-watcher", daemon=True
        )
        watcher.start()
        try:
            self._accept_loop()
        finally:
            self.state = ServerState.SHUTTING_DOWN
            self._listener.close()
            self._join_handlers()
        return ServeStats(address=self.address, connections=self._accepted)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _watch(self) -> None:
        self._token.wait()
        if self._listener.close():
            logger.debug("Listener closed by cancellation")

    def _accept_loop(self) -> None:
        while not self._token.cancelled:
            try:
                conn = self._listener.accept()
            except OSError as exc:
                logger.info("Accept failed: %s", exc)
                break
            if self._token.cancelled:
                # Accepted in the window between the signal and close().
                conn.close()
                break
            self._accepted += 1
            thread = threading.Thread(
                target=self._handle,
                args=(conn,),
                name=f"netrepro-conn-{self._accepted}",
            )
            # Finished handlers are dropped so the list tracks live connections.
            self._handlers = [t for t in self._handlers if t.is_alive()]
            self._handlers.append(thread)
            thread.start()

    def _handle(self, conn: Connection) -> None:
        self._notify("netrepro_connection_opened", remote_address=conn.remote_address)
        lines = handle_connection(conn, echo=self._echo)
        self._notify("netrepro_connection_closed", remote_address=conn.remote_address, lines=lines)

    def _notify(self, hook_name: str, **payload: Any) -> None:
        if self._plugins is not None:
            self._plugins.notify(hook_name, **payload)

    def _join_handlers(self) -> None:
        for thread in self._handlers:
            thread.join()
        self._handlers.clear()


def validate(config: ServerConfig) -> None:
    """Reject configurations that cannot start.

    Raises:
        ConfigError: hostname is empty or the port is zero or out of range.
    """
    if not config.hostname:
        raise ConfigError("You must provide a -hostname to use")
    if config.port == 0:
        raise ConfigError("You must set a non-zero -port to listen on")
    if not 0 < config.port < 65536:
        raise ConfigError(f"Port {config.port} is out of range")


def run(
    config: ServerConfig,
    token: CancelToken,
    *,
    plugins: PluginManager | None = None,
    provider: str | None = None,
    echo: EchoFn | None = None,
) -> ServeStats:
    """Validate, bind, serve until cancelled, and release everything.

    The overlay client (when one is started) is released on every exit
    path through the enclosing :class:`ExitStack`.

    Raises:
        ConfigError: before any resource is acquired.
        BindError: the listener could not be created.
    """
    validate(config)
    with ExitStack() as stack:
        listener = select_listener(config, stack=stack, plugins=plugins, provider=provider)
        stack.callback(listener.close)
        logger.info("Listen %r OK", listener.local_address)
        server = ReproServer(listener, token, echo=echo, plugins=plugins)
        return server.serve()
