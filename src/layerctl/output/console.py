"""Rich Console factory and theme for layerctl output.

Creates Console instances that render to a StringIO buffer, preserving
the ``format_result() -> str`` contract. In non-TTY environments
(tests, pipes) Rich automatically disables color codes.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

LAYERCTL_THEME = Theme(
    {
        "lc.ok": "bold green",
        "lc.error": "bold red",
        "lc.warning": "bold yellow",
        "lc.op": "bold cyan",
        "lc.key": "dim",
        "lc.layer": "bold blue",
        "lc.path": "dim",
        "lc.hint": "italic dim",
        "lc.status.pass": "bold green",
        "lc.status.fail": "bold red",
        "lc.status.config_error": "bold magenta",
    }
)

_STATUS_STYLES: dict[str, str] = {
    "pass": "lc.status.pass",
    "fail": "lc.status.fail",
    "config_error": "lc.status.config_error",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=LAYERCTL_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    """Return the Rich style name for a verdict status."""
    return _STATUS_STYLES.get(status, "")
