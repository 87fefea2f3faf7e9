"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, netrepro.toml only contains overrides.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel

DEFAULT_PORT = 31337
LOCALHOST = "localhost"


class ServerConfig(BaseModel):
    """Startup parameters for one server run, read once and never mutated."""

    model_config = {"frozen": True}

    hostname: str = ""
    state_dir: Path | None = None
    net_listen: bool = False
    port: int = DEFAULT_PORT

    @property
    def address(self) -> str:
        """``hostname:port`` as handed to the listener."""
        return f"{self.hostname}:{self.port}"

    @property
    def is_local(self) -> bool:
        return self.hostname == LOCALHOST


# --- netrepro.toml sections ---


class OverlayConfig(BaseModel):
    """[overlay] section."""

    model_config = {"frozen": True}

    # Name of the plugin that supplies the overlay client. None asks every
    # registered provider and takes the first answer.
    provider: str | None = None


class PluginsConfig(BaseModel):
    """[plugins] section."""

    model_config = {"frozen": True}

    local_dir: Path | None = None
