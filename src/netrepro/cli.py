"""Root CLI command for netrepro.

Flags take the single-dash form used in the usage notes (``-hostname``,
``-port``) as well as the usual double-dash form.
"""

from __future__ import annotations

from pathlib import Path

import click

from netrepro import __version__
from netrepro.commands._base import ReproCommand
from netrepro.commands._context import AppContext
from netrepro.config.settings import ReproSettings

EPILOG = """\
\b
Every newline-terminated line received is answered with "OK <N>",
N being the line's length in bytes. Lines are not length-limited:
a peer that never sends a newline is buffered without bound.

\b
The overlay credential (for example TS_AUTHKEY) is read by the
overlay provider plugin from the environment.
"""


def _echo_line(text: str) -> None:
    click.echo(f"-> {text}")


@click.command(
    cls=ReproCommand,
    epilog=EPILOG,
    examples="""\
  # Compare against the local network stack
  netrepro -hostname localhost -port 31337

  # Start on clean overlay state
  rm -fr -- repro.state
  TS_AUTHKEY="<auth key>" netrepro -hostname repro-test -dir repro.state -port 31337

  # Then, from another machine on the overlay network
  nc repro-test 31337""",
)
@click.version_option(version=__version__, prog_name="netrepro")
@click.option(
    "-hostname",
    "--hostname",
    "hostname",
    default=None,
    help="Overlay hostname to register (or localhost for comparison).",
)
@click.option(
    "-dir",
    "--dir",
    "state_dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="State directory for the overlay client.",
)
@click.option(
    "-net-listen",
    "--net-listen",
    "net_listen",
    is_flag=True,
    help="Use the local network stack instead of the overlay client.",
)
@click.option(
    "-port",
    "--port",
    "port",
    default=None,
    type=int,
    help="Service port.  [default: 31337]",
)
@click.option("--json", "json_output", is_flag=True, help="Structured JSON result output.")
@click.option("-v", "--verbose", is_flag=True, help="Debug-level logging.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option(
    "--plugins-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory of single-file plugins (overlay providers).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    hostname: str | None,
    state_dir: Path | None,
    net_listen: bool,
    port: int | None,
    json_output: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    plugins_dir: Path | None,
) -> None:
    """netrepro — answer every received line with "OK <length>"."""
    from netrepro.net.lifecycle import CancelToken, interrupt_cancels
    from netrepro.services.serve import ServeService

    # Flags only switch things on; unset ones leave env/TOML values alone.
    settings = ReproSettings.from_cli(
        config_path=config_path,
        hostname=hostname,
        state_dir=state_dir,
        net_listen=net_listen or None,
        port=port,
        json_output=json_output or None,
        verbose=verbose or None,
        log_json=log_json or None,
        plugins={"local_dir": plugins_dir} if plugins_dir else None,
    )
    app = AppContext(settings)
    ctx.obj = app

    token = CancelToken()
    with interrupt_cancels(token):
        result = ServeService(settings, app.plugins).serve(token, echo=_echo_line)
    app.emit(result)
