"""AppContext — settings, logging, and plugins for one CLI invocation.

Also owns result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from netrepro.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from netrepro.config.settings import ReproSettings
    from netrepro.plugins.manager import PluginManager
    from netrepro.services.result import ServiceResult


class AppContext:
    """Per-invocation context.

    Logging is configured at construction.  Plugins are discovered lazily
    so ``--help`` and ``--version`` never load entry points.
    """

    def __init__(self, settings: ReproSettings) -> None:
        self.settings = settings
        self._plugins: PluginManager | None = None

        from netrepro.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

    @property
    def plugins(self) -> PluginManager:
        """The plugin manager (discovered lazily on first access)."""
        if self._plugins is None:
            from netrepro.plugins.manager import PluginManager

            self._plugins = PluginManager()
            self._plugins.discover_and_load(local_dir=self.settings.plugins.local_dir)
        return self._plugins

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally.
          Warnings are emitted to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
