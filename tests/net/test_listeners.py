"""Tests for the Listener variants and listener selection."""

from __future__ import annotations

import socket
import threading
from contextlib import ExitStack
from pathlib import Path

import pytest

from netrepro.config.models import ServerConfig
from netrepro.errors import BindError
from netrepro.net.listeners import (
    Connection,
    LocalListener,
    OverlayListener,
    format_address,
    select_listener,
    split_address,
)
from netrepro.plugins.manager import PluginManager
from tests.conftest import LineClient, LoopbackOverlayProvider


class TestAddressHelpers:
    def test_format_ipv4(self) -> None:
        assert format_address(("127.0.0.1", 8080)) == "127.0.0.1:8080"

    def test_format_ipv6_brackets_host(self) -> None:
        assert format_address(("::1", 8080, 0, 0)) == "[::1]:8080"

    def test_format_non_tuple(self) -> None:
        assert format_address("/tmp/sock") == "/tmp/sock"

    def test_split(self) -> None:
        assert split_address("repro-test:31337") == ("repro-test", 31337)

    def test_split_ipv6(self) -> None:
        assert split_address("[::1]:9") == ("::1", 9)

    def test_split_missing_port(self) -> None:
        with pytest.raises(ValueError, match="missing port"):
            split_address("localhost")


class TestConnection:
    def test_readline_returns_partial_at_eof(self) -> None:
        server, client = socket.socketpair()
        with client:
            client.sendall(b"one\ntwo")
            client.shutdown(socket.SHUT_WR)
            conn = Connection(server, "peer")
            assert conn.readline() == b"one\n"
            assert conn.readline() == b"two"
            assert conn.readline() == b""
            conn.close()

    def test_close_is_idempotent(self) -> None:
        server, client = socket.socketpair()
        with client:
            conn = Connection(server, "peer")
            conn.close()
            conn.close()
            assert conn.closed
            assert server.fileno() == -1


class TestLocalListener:
    def test_accept_and_exchange(self) -> None:
        listener = LocalListener("127.0.0.1", 0)
        try:
            host, port = split_address(listener.local_address)
            assert host == "127.0.0.1"
            client = LineClient.connect(port)
            conn = listener.accept()
            assert conn.remote_address.startswith("127.0.0.1:")
            client.send(b"ping\n")
            assert conn.readline() == b"ping\n"
            conn.close()
            client.close()
        finally:
            listener.close()

    def test_close_once(self) -> None:
        listener = LocalListener("127.0.0.1", 0)
        assert listener.close() is True
        assert listener.close() is False
        assert listener.closed

    def test_accept_after_close_fails(self) -> None:
        listener = LocalListener("127.0.0.1", 0)
        listener.close()
        with pytest.raises(OSError):
            listener.accept()

    def test_close_unblocks_pending_accept(self) -> None:
        listener = LocalListener("127.0.0.1", 0)
        errors: list[OSError] = []

        def _accept() -> None:
            try:
                listener.accept()
            except OSError as exc:
                errors.append(exc)

        worker = threading.Thread(target=_accept)
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        listener.close()
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert len(errors) == 1

    def test_bind_conflict_raises(self) -> None:
        first = LocalListener("127.0.0.1", 0)
        try:
            _, port = split_address(first.local_address)
            with pytest.raises(OSError):
                LocalListener("127.0.0.1", port)
        finally:
            first.close()


class TestSelectListener:
    def test_localhost_uses_local_stack(self, free_port: int) -> None:
        config = ServerConfig(hostname="localhost", port=free_port)
        with ExitStack() as stack:
            listener = select_listener(config, stack=stack)
            stack.callback(listener.close)
            assert isinstance(listener, LocalListener)
            assert listener.local_address == f"127.0.0.1:{free_port}"

    def test_localhost_never_asks_plugins(
        self, free_port: int, plugins: PluginManager, overlay_provider: LoopbackOverlayProvider
    ) -> None:
        config = ServerConfig(hostname="localhost", port=free_port)
        with ExitStack() as stack:
            listener = select_listener(config, stack=stack, plugins=plugins)
            stack.callback(listener.close)
        assert overlay_provider.clients == []

    def test_net_listen_forces_local_stack(
        self, free_port: int, plugins: PluginManager, overlay_provider: LoopbackOverlayProvider
    ) -> None:
        config = ServerConfig(hostname="127.0.0.1", port=free_port, net_listen=True)
        with ExitStack() as stack:
            listener = select_listener(config, stack=stack, plugins=plugins)
            stack.callback(listener.close)
            assert isinstance(listener, LocalListener)
        assert overlay_provider.clients == []

    def test_local_bind_failure_is_bind_error(self) -> None:
        occupied = LocalListener("127.0.0.1", 0)
        try:
            _, port = split_address(occupied.local_address)
            config = ServerConfig(hostname="localhost", port=port)
            with ExitStack() as stack, pytest.raises(BindError, match="Listen"):
                select_listener(config, stack=stack)
        finally:
            occupied.close()

    def test_overlay_hostname_uses_provider(
        self,
        free_port: int,
        tmp_path: Path,
        plugins: PluginManager,
        overlay_provider: LoopbackOverlayProvider,
    ) -> None:
        config = ServerConfig(hostname="repro-test", state_dir=tmp_path, port=free_port)
        with ExitStack() as stack:
            listener = select_listener(config, stack=stack, plugins=plugins)
            stack.callback(listener.close)
            assert isinstance(listener, OverlayListener)
            (client,) = overlay_provider.clients
            assert client.hostname == "repro-test"
            assert client.state_dir == tmp_path
            assert client.listen_calls == [("tcp", f"repro-test:{free_port}")]
            assert client.close_calls == 0
        assert client.close_calls == 1

    def test_overlay_logf_goes_to_overlay_logger(
        self, free_port: int, plugins: PluginManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = ServerConfig(hostname="repro-test", port=free_port)
        with caplog.at_level("INFO", logger="netrepro"), ExitStack() as stack:
            listener = select_listener(config, stack=stack, plugins=plugins)
            stack.callback(listener.close)
        records = [r for r in caplog.records if r.name == "netrepro.overlay"]
        assert any("loopback overlay up as repro-test" in r.getMessage() for r in records)

    def test_overlay_listen_failure_still_releases_client(self, free_port: int) -> None:
        provider = LoopbackOverlayProvider(fail_listen=True)
        pm = PluginManager()
        pm.register_plugin(provider, name="loopback")
        config = ServerConfig(hostname="repro-test", port=free_port)
        with pytest.raises(BindError, match="overlay refused"), ExitStack() as stack:
            select_listener(config, stack=stack, plugins=pm)
        assert provider.clients[0].close_calls == 1

    def test_overlay_without_plugins_is_bind_error(self, free_port: int) -> None:
        config = ServerConfig(hostname="repro-test", port=free_port)
        with ExitStack() as stack, pytest.raises(BindError):
            select_listener(config, stack=stack)

    def test_overlay_without_provider_is_bind_error(self, free_port: int) -> None:
        config = ServerConfig(hostname="repro-test", port=free_port)
        with ExitStack() as stack, pytest.raises(BindError, match="No overlay-network provider"):
            select_listener(config, stack=stack, plugins=PluginManager())

    def test_overlay_close_unblocks_accept(self, free_port: int, plugins: PluginManager) -> None:
        config = ServerConfig(hostname="repro-test", port=free_port)
        with ExitStack() as stack:
            listener = select_listener(config, stack=stack, plugins=plugins)
            worker = threading.Thread(target=lambda: pytest.raises(OSError, listener.accept))
            worker.start()
            worker.join(timeout=0.2)
            listener.close()
            worker.join(timeout=5)
            assert not worker.is_alive()
