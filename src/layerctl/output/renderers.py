"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO). The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from layerctl.output.console import create_console, get_output, style_for_status

if TYPE_CHECKING:
    from rich.console import Console

    from layerctl.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    A failed ``check`` still renders its verdicts before the error line.
    """
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        if result.op == "check" and result.data.get("verdicts"):
            _render_check(result, console, verbose=verbose)
            console.print()
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if result.op == "check" and result.data.get("verdicts"):
        failed = [v["layer"] for v in result.data["verdicts"] if v["status"] != "pass"]
        if failed:
            return "\n".join(failed)
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"
    if result.op == "graph":
        return "\n".join(layer["name"] for layer in result.data.get("layers", []))
    if result.op == "unit":
        return str(result.data.get("lib_rs", "")).rstrip("\n")
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    """Print the OK status line."""
    label = Text("OK", style="lc.ok")
    op = Text(f"  {result.op}", style="lc.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="lc.key")
    if key == "layer":
        v = Text(str(value), style="lc.layer")
    elif key in ("path", "file"):
        v = Text(str(value), style="lc.path")
    elif isinstance(value, (list, tuple)):
        v = Text(", ".join(str(item) for item in value) or "-")
    else:
        v = Text(str(value))
    console.print(k, v, end="")
    console.print()


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Print meta block including telemetry span tree (verbose only)."""
    if not result.meta:
        return

    console.print()
    console.print(Text("  meta:", style="dim"))

    for k, v in result.meta.items():
        if k == "telemetry":
            _render_telemetry_tree(console, v, indent=4)
        else:
            console.print(f"    {k}: {v}")


def _render_telemetry_tree(
    console: Console,
    span_data: dict[str, Any],
    indent: int = 4,
) -> None:
    """Render a hierarchical span tree with color-coded timing."""
    prefix = " " * indent
    name = escape(str(span_data.get("name", "?")))
    duration = span_data.get("duration_ms", 0.0)

    if duration > 10_000:
        style = "bold red"
    elif duration > 1000:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>10.2f}ms[/{style}]  {name}"
    annotations = span_data.get("annotations") or {}
    if annotations:
        extras = ", ".join(f"{ak}={av}" for ak, av in annotations.items())
        line += f"  ({escape(extras)})"

    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


def _location(issue: dict[str, Any]) -> str:
    file = issue.get("file")
    if not file:
        return ""
    line = issue.get("line")
    return f"{file}:{line}" if line else str(file)


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="lc.error")
    op = Text(f"  {result.op}", style="lc.op")
    sep = Text(" — ")
    console.print(label, op, sep, Text(msg))

    if verbose and err and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            console.print(Text(f"    {k}: {v}"))


# ── Check ─────────────────────────────────────────────────────────────


def _render_check(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render one line per layer, with its issues indented below."""
    verdicts = result.data.get("verdicts", [])

    for verdict in verdicts:
        status = str(verdict.get("status", ""))
        style = style_for_status(status)
        line = Text(f"{status.upper():<13}", style=style)
        line.append(str(verdict.get("layer", "")), style="lc.layer")
        duration = verdict.get("duration_ms")
        if verbose and duration is not None:
            line.append(f"  ({duration / 1000:.2f}s)", style="dim")
        console.print(line)

        if verdict.get("reason"):
            console.print(Text(f"    {verdict['reason']}"))
        if verbose and verdict.get("modules"):
            console.print(Text(f"    unit: {', '.join(verdict['modules'])}", style="dim"))

        for issue in verdict.get("issues", []):
            fatal = issue.get("fatal", True)
            text = Text("    ")
            if fatal:
                text.append("error", style="lc.error")
            else:
                text.append("warning", style="lc.warning")
            text.append(f" {issue.get('kind', '')}")
            location = _location(issue)
            if location:
                text.append(f" {location}", style="lc.path")
            text.append(f": {issue.get('message', '')}")
            console.print(text)
            if issue.get("hint"):
                console.print(Text(f"      hint: {issue['hint']}", style="lc.hint"))

    summary = result.data.get("summary", {})
    if summary:
        console.print(
            f"\n{summary.get('pass', 0)} passed, {summary.get('fail', 0)} failed, "
            f"{summary.get('config_error', 0)} config errors"
        )
    if verbose:
        _render_meta(console, result)


# ── Graph ─────────────────────────────────────────────────────────────


def _render_graph(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render the layer graph as a table in top-down order."""
    layers = result.data.get("layers", [])
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Layer", style="lc.layer", no_wrap=True)
    table.add_column("Depends on")
    table.add_column("Impl")
    table.add_column("Visible")
    if verbose:
        table.add_column("Strict deps", style="dim")

    for layer in layers:
        row = [
            str(layer.get("name", "")),
            ", ".join(layer.get("depends_on", [])) or "-",
            ", ".join(layer.get("impl", [])) or "-",
            ", ".join(layer.get("visible", [])) or "-",
        ]
        if verbose:
            row.append(", ".join(layer.get("strict_deps", [])) or "-")
        table.add_row(*row)

    console.print(table)
    console.print(f"\n{result.data.get('count', len(layers))} layers")
    untracked = result.data.get("untracked", [])
    if untracked:
        console.print(Text(f"untracked modules: {', '.join(untracked)}", style="lc.warning"))
    if verbose:
        _render_meta(console, result)


# ── Unit ──────────────────────────────────────────────────────────────


def _render_unit(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render a projected unit's ``lib.rs`` (plus manifest and files when verbose)."""
    d = result.data
    _status_line(console, result)
    _field(console, "layer", d.get("layer", ""))
    _field(console, "dependencies", d.get("dependencies", []))
    console.print()
    console.print(Syntax(str(d.get("lib_rs", "")), "rust", line_numbers=True, word_wrap=False))
    if verbose:
        if d.get("manifest"):
            console.print()
            console.print(Syntax(str(d["manifest"]), "toml"))
        if d.get("deps_lib_rs"):
            console.print()
            console.print(Text("  deps/src/lib.rs:", style="lc.key"))
            deps_lib_rs = str(d["deps_lib_rs"])
            console.print(Syntax(deps_lib_rs, "rust", line_numbers=True, word_wrap=False))
        files = d.get("files", [])
        if files:
            console.print()
            console.print(Text("  files:", style="lc.key"))
            for dest in files:
                console.print(Text(f"    {dest}", style="lc.path"))
        _render_meta(console, result)


# ── Generic renderer ──────────────────────────────────────────────────


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


_OP_RENDERERS: dict[str, Any] = {
    "check": _render_check,
    "graph": _render_graph,
    "unit": _render_unit,
}
