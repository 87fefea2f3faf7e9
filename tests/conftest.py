"""Shared pytest fixtures and test helpers for netrepro tests."""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from netrepro.net.listeners import split_address
from netrepro.plugins.hookspecs import hookimpl
from netrepro.plugins.manager import PluginManager


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    """Restore root logger state after each test.

    The CLI points the root handler at the runner's captured stderr, which
    is closed once the invocation returns.
    """
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    repro = logging.getLogger("netrepro")
    repro_level = repro.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    repro.setLevel(repro_level)


@pytest.fixture
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run from an empty directory with no NETREPRO_* environment."""
    monkeypatch.chdir(tmp_path)
    for name in ("NETREPRO_CONFIG", "NETREPRO_HOSTNAME", "NETREPRO_PORT", "NETREPRO_STATE_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def free_port() -> int:
    """A loopback TCP port that was free a moment ago."""
    return find_free_port()


@pytest.fixture
def overlay_provider() -> LoopbackOverlayProvider:
    return LoopbackOverlayProvider()


@pytest.fixture
def plugins(overlay_provider: LoopbackOverlayProvider) -> PluginManager:
    """Plugin manager with the loopback overlay provider registered."""
    pm = PluginManager()
    pm.register_plugin(overlay_provider, name="loopback")
    return pm


# ---------------------------------------------------------------------------
# Loopback overlay provider
# ---------------------------------------------------------------------------


class LoopbackOverlayClient:
    """Overlay client stand-in that listens on 127.0.0.1 at the requested port."""

    def __init__(
        self,
        hostname: str,
        state_dir: Path | None,
        logf: Callable[[str], None],
        *,
        fail_listen: bool = False,
    ) -> None:
        self.hostname = hostname
        self.state_dir = state_dir
        self.fail_listen = fail_listen
        self.listen_calls: list[tuple[str, str]] = []
        self.close_calls = 0
        logf(f"loopback overlay up as {hostname}")

    def listen(self, network: str, address: str) -> socket.socket:
        self.listen_calls.append((network, address))
        if self.fail_listen:
            raise OSError("overlay refused to listen")
        _host, port = split_address(address)
        return socket.create_server(("127.0.0.1", port))

    def close(self) -> None:
        self.close_calls += 1


class LoopbackOverlayProvider:
    """Overlay provider plugin handing out :class:`LoopbackOverlayClient`."""

    def __init__(self, *, fail_listen: bool = False) -> None:
        self.fail_listen = fail_listen
        self.clients: list[LoopbackOverlayClient] = []

    @hookimpl
    def netrepro_overlay_client(
        self,
        hostname: str,
        state_dir: Path | None,
        logf: Callable[[str], None],
    ) -> LoopbackOverlayClient:
        client = LoopbackOverlayClient(hostname, state_dir, logf, fail_listen=self.fail_listen)
        self.clients.append(client)
        return client


# ---------------------------------------------------------------------------
# Socket helpers
# ---------------------------------------------------------------------------


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class LineClient:
    """Blocking line-oriented test client."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._reader = sock.makefile("rb")

    @classmethod
    def connect(cls, port: int, *, timeout: float = 5.0) -> LineClient:
        """Connect to 127.0.0.1:*port*, retrying while the server starts."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                sock = socket.create_connection(("127.0.0.1", port), timeout=timeout)
            except ConnectionRefusedError:
                if time.monotonic() > deadline:
                    raise
                time.sleep(0.02)
            else:
                return cls(sock)

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def readline(self) -> bytes:
        return self._reader.readline()

    def exchange(self, line: bytes) -> bytes:
        self.send(line)
        return self.readline()

    def read_rest(self) -> bytes:
        return self._reader.read()

    def close(self) -> None:
        self._reader.close()
        self.sock.close()


def wait_for(predicate: Callable[[], Any], *, timeout: float = 5.0) -> None:
    """Poll *predicate* until it is truthy, failing the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met in time")
        time.sleep(0.01)
