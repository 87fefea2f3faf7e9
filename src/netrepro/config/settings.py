"""Unified settings — CLI flags, env vars, and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs  — CLI flags passed by Click
  2. Env vars     — ``NETREPRO_*`` prefix
  3. TOML file    — ``netrepro.toml`` discovered via walk-up
  4. Code defaults — baked into the section models

Uses Pydantic Settings v2 with a custom :class:`TomlSettingsSource` that
reuses the walk-up discovery from :mod:`netrepro.config.discovery`.
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from netrepro.config.discovery import find_config
from netrepro.config.models import DEFAULT_PORT, OverlayConfig, PluginsConfig, ServerConfig


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``netrepro.toml`` file discovered via walk-up."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                import click

                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise click.ClickException(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        """Return the full TOML data dict for Pydantic to merge."""
        return self._data


# Thread-local storage for TOML path during construction.
_tls = threading.local()


class ReproSettings(BaseSettings):
    """Unified settings for the netrepro CLI.

    Merges CLI flags, environment variables, TOML config sections,
    and code-baked defaults into a single frozen object.  Stored in
    ``click.Context.obj`` via :class:`~netrepro.commands._context.AppContext`.

    Attributes:
        config_path: The TOML file the settings were read from, if any.
        hostname: Target identifier. ``localhost`` bypasses the overlay.
        state_dir: Persistent state location for the overlay client.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "NETREPRO_",
        "env_nested_delimiter": "__",
    }

    config_path: Path | None = None

    # --- Server flags ---
    hostname: str = ""
    state_dir: Path | None = None
    net_listen: bool = False
    port: int = DEFAULT_PORT

    # --- Output flags ---
    json_output: bool = False
    verbose: bool = False
    log_json: bool = False

    # --- TOML sections ---
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)

    _SERVER_FIELDS: ClassVar[tuple[str, ...]] = ("hostname", "state_dir", "net_listen", "port")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        start_dir: Path | None = None,
        **cli_flags: Any,
    ) -> ReproSettings:
        """Construct settings from CLI invocation.

        Discovers ``netrepro.toml`` via walk-up from *start_dir* (or uses an
        explicit *config_path*) and merges CLI flags as highest-priority
        overrides.  Flags passed as ``None`` are treated as "not given" so
        lower-priority sources still apply.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if p.is_file():
                toml_path = p
        else:
            toml_path = find_config(start_dir)

        overrides = {k: v for k, v in cli_flags.items() if v is not None}

        _tls.toml_path = toml_path
        try:
            return cls(config_path=toml_path, **overrides)
        finally:
            _tls.toml_path = None

    def server_config(self) -> ServerConfig:
        """Project the server-relevant fields into a :class:`ServerConfig`."""
        return ServerConfig(**{name: getattr(self, name) for name in self._SERVER_FIELDS})
