"""Pluggy hook specifications for overlay providers and connection events.

One setup-time hook supplies the overlay-network client.  Two observation
hooks report connection start and end; their failures are warnings only.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from pathlib import Path

    from netrepro.net.listeners import OverlayClient

hookspec = pluggy.HookspecMarker("netrepro")
hookimpl = pluggy.HookimplMarker("netrepro")


class ReproHookSpec:
    """Hook specifications for the netrepro plugin system."""

    @hookspec(firstresult=True)
    def netrepro_overlay_client(
        self,
        hostname: str,
        state_dir: Path | None,
        logf: Callable[[str], None],
    ) -> OverlayClient | None:
        """Start an overlay-network client registered as *hostname*.

        Return None to let another provider answer.  The credential, if any,
        is the provider's business (usually an environment variable).
        """

    @hookspec
    def netrepro_connection_opened(self, remote_address: str) -> None:
        """Called when a connection is accepted, before its first read."""

    @hookspec
    def netrepro_connection_closed(self, remote_address: str, lines: int) -> None:
        """Called after a connection has been closed."""
