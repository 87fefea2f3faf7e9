"""Rich/JSON output helpers.

The CLI renders ServiceResult for humans (Rich styling) or machines
(--json).  The formatter layer adapts ServiceResult to the requested mode.
"""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from rich.text import Text

from netrepro.output.console import create_console, get_output

if TYPE_CHECKING:
    from netrepro.services.result import ServiceResult


class OutputSettings(BaseModel):
    """Output flags relevant to result formatting."""

    model_config = {"frozen": True}

    json_output: bool = False
    verbose: bool = False


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return _json.dumps(value, separators=(",", ":"))
    return str(value)


def _render_human(result: ServiceResult, *, verbose: bool) -> str:
    console = create_console()
    if result.ok:
        console.print(Text("OK", style="repro.ok"), Text(f"  {result.op}", style="repro.op"))
        for key, value in result.data.items():
            console.print(Text(f"  {key}: ", style="repro.key"), Text(_format_value(value)), sep="")
    else:
        message = result.error.message if result.error else "Unknown error"
        console.print(
            Text("ERROR", style="repro.error"),
            Text(f"  {result.op} — {message}"),
        )
        if verbose and result.error and result.error.detail:
            for key, value in result.error.detail.items():
                console.print(Text(f"  {key}: ", style="repro.key"), Text(_format_value(value)), sep="")
    return get_output(console).rstrip("\n")


def format_result(result: ServiceResult, *, settings: OutputSettings | None = None) -> str:
    """Format a ServiceResult for display.

    Args:
        result: The service result to format.
        settings: Output flags; defaults to human-readable text.
    """
    settings = settings or OutputSettings()
    if settings.json_output:
        return result.model_dump_json(indent=2)
    return _render_human(result, verbose=settings.verbose)
