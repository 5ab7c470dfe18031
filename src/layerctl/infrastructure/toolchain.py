"""Toolchain collaborator — runs ``cargo check`` and parses its diagnostics.

The driver talks to a :class:`Toolchain`; :class:`CargoToolchain` is the
production implementation. Each ``check`` call is one short-lived
subprocess with its own working directory, so several can run at once
from a thread pool. ``cancel`` kills every process tree still running.
"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import threading
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from layerctl.config.models import DEFAULT_CARGO_ARGS, DEFAULT_COMMAND
from layerctl.domain.diagnostics import Diagnostic, Severity
from layerctl.domain.errors import ToolchainInvocationError, ToolchainTimeoutError

logger = logging.getLogger(__name__)

DENY_UNUSED_FLAG = "-D unused-imports"

_SUMMARY = re.compile(
    r"^(aborting due to|\d+ warnings? emitted|some errors have detailed explanations|"
    r"for more information about (this|an) error)",
    re.IGNORECASE,
)
_TEXT_HEADER = re.compile(r"^(error|warning)(?:\[(\w+)\])?: (.+)$")
_TEXT_LOCATION = re.compile(r"^\s*--> (.+?):(\d+):(\d+)\s*$")
_TEXT_SOURCE = re.compile(r"^\s*(\d+)\s*\|\s?(.*)$")
_TEXT_LINT = re.compile(r"#\[(?:warn|deny)\((\w+)\)\]|-D ([\w-]+)")


class Toolchain(Protocol):
    """What the verification driver needs from the compiler frontend."""

    def check(self, unit_path: Path, extra_args: Sequence[str] = ()) -> list[Diagnostic]:
        """Type-check the crate at *unit_path* and return its diagnostics.

        Raises:
            ToolchainTimeoutError: the invocation exceeded its time limit.
            ToolchainInvocationError: the toolchain could not run or failed
                without reporting any error diagnostic.
        """
        ...

    def cancel(self) -> None:
        """Kill every invocation still in flight."""
        ...


# ---------------------------------------------------------------------------
# Diagnostic parsing
# ---------------------------------------------------------------------------


def _severity(level: str) -> Severity:
    if level.startswith("error"):
        return Severity.ERROR
    if level == "warning":
        return Severity.WARNING
    if level == "help":
        return Severity.HELP
    return Severity.NOTE


def _primary_span(spans: list[dict[str, Any]]) -> dict[str, Any] | None:
    for span in spans:
        if span.get("is_primary"):
            return span
    return spans[0] if spans else None


def diagnostic_from_json(message: Mapping[str, Any]) -> Diagnostic | None:
    """Convert one rustc JSON diagnostic; None for summary lines."""
    text = str(message.get("message", ""))
    spans = list(message.get("spans") or [])
    if not spans and _SUMMARY.search(text):
        return None
    code_info = message.get("code")
    code = code_info.get("code") if isinstance(code_info, dict) else None
    span = _primary_span(spans)
    snippet = ""
    if span and span.get("text"):
        snippet = str(span["text"][0].get("text", ""))
    return Diagnostic(
        severity=_severity(str(message.get("level", "note"))),
        message=text,
        code=code,
        file=span.get("file_name") if span else None,
        line_start=span.get("line_start") if span else None,
        line_end=span.get("line_end") if span else None,
        column=span.get("column_start") if span else None,
        snippet=snippet,
        label=span.get("label") if span else None,
        rendered=message.get("rendered"),
    )


def parse_json_messages(lines: Iterable[str]) -> tuple[list[Diagnostic], bool]:
    """Parse cargo ``--message-format=json`` output.

    Returns:
        ``(diagnostics, saw_json)``; ``saw_json`` is False when no line
        was a cargo JSON message, meaning the caller should fall back to
        text parsing.
    """
    diagnostics: list[Diagnostic] = []
    saw_json = False
    for line in lines:
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict) or "reason" not in record:
            continue
        saw_json = True
        if record["reason"] != "compiler-message":
            continue
        diagnostic = diagnostic_from_json(record.get("message", {}))
        if diagnostic is not None:
            diagnostics.append(diagnostic)
    return diagnostics, saw_json


def parse_text_diagnostics(text: str) -> list[Diagnostic]:
    """Best-effort parse of human-readable rustc output."""
    diagnostics: list[Diagnostic] = []
    current: dict[str, Any] | None = None

    def flush() -> None:
        if current is None:
            return
        if current["file"] is None and _SUMMARY.search(current["message"]):
            return
        diagnostics.append(Diagnostic(**current))

    for line in text.splitlines():
        header = _TEXT_HEADER.match(line)
        if header:
            flush()
            level, code, message = header.groups()
            current = {
                "severity": _severity(level),
                "message": message.strip(),
                "code": code,
                "file": None,
                "line_start": None,
                "line_end": None,
                "column": None,
                "snippet": "",
                "rendered": line,
            }
            continue
        if current is None:
            continue
        current["rendered"] = f"{current['rendered']}\n{line}"
        location = _TEXT_LOCATION.match(line)
        if location and current["file"] is None:
            current["file"] = location.group(1)
            current["line_start"] = current["line_end"] = int(location.group(2))
            current["column"] = int(location.group(3))
            continue
        source = _TEXT_SOURCE.match(line)
        if source and not current["snippet"] and current["line_start"] == int(source.group(1)):
            current["snippet"] = source.group(2)
            continue
        lint = _TEXT_LINT.search(line)
        if lint and current["code"] is None:
            current["code"] = (lint.group(1) or lint.group(2)).replace("-", "_")
    flush()
    return diagnostics


# ---------------------------------------------------------------------------
# Cargo
# ---------------------------------------------------------------------------


def add_rustflag(flags: str, flag: str) -> str:
    """Append *flag* to a RUSTFLAGS string unless it is already present."""
    if flag in flags:
        return flags
    return f"{flags} {flag}".strip()


def _kill_tree(proc: subprocess.Popen[str]) -> None:
    """SIGKILL *proc* and everything it spawned.

    Each invocation runs in its own session, so its process group holds
    cargo, rustc and any build scripts below them.
    """
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("process group %s already exited", proc.pid)
        return
    proc.kill()


class CargoToolchain:
    """Runs ``cargo check`` as a subprocess per unit.

    Args:
        command: Executable and leading arguments (default ``["cargo"]``).
        args: Subcommand arguments (default ``check --lib --message-format=json``).
        timeout: Seconds before an invocation is killed; None waits forever.
        deny_unused: Escalate ``unused_imports`` to an error via RUSTFLAGS.
        target_dir: Shared ``CARGO_TARGET_DIR`` so dependency builds are reused.
        env: Extra environment variables for every invocation.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_COMMAND,
        args: Sequence[str] = DEFAULT_CARGO_ARGS,
        *,
        timeout: float | None = None,
        deny_unused: bool = False,
        target_dir: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = tuple(command)
        self.args = tuple(args)
        self.timeout = timeout
        self.deny_unused = deny_unused
        self.target_dir = target_dir
        self.env = dict(env or {})
        self._active: set[subprocess.Popen[str]] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def _environment(self) -> dict[str, str]:
        env = {**os.environ, **self.env}
        env.setdefault("CARGO_TERM_COLOR", "never")
        if self.deny_unused:
            env["RUSTFLAGS"] = add_rustflag(env.get("RUSTFLAGS", ""), DENY_UNUSED_FLAG)
        if self.target_dir is not None:
            env["CARGO_TARGET_DIR"] = str(self.target_dir)
        return env

    def check(self, unit_path: Path, extra_args: Sequence[str] = ()) -> list[Diagnostic]:
        cmd = [*self.command, *self.args, *extra_args]
        logger.debug("running %s in %s", " ".join(cmd), unit_path)
        if self._cancelled.is_set():
            msg = "toolchain invocation cancelled"
            raise ToolchainInvocationError(msg, command=cmd)
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=unit_path,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self._environment(),
                start_new_session=True,
            )
        except OSError as exc:
            msg = f"failed to run `{cmd[0]}`: {exc}"
            raise ToolchainInvocationError(msg, command=cmd) from exc

        with self._lock:
            self._active.add(proc)
        try:
            try:
                stdout, stderr = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                _kill_tree(proc)
                proc.communicate()
                msg = f"`{' '.join(cmd)}` timed out after {self.timeout}s"
                raise ToolchainTimeoutError(msg, command=cmd, timeout=self.timeout) from exc
        finally:
            with self._lock:
                self._active.discard(proc)

        if self._cancelled.is_set():
            msg = "toolchain invocation cancelled"
            raise ToolchainInvocationError(msg, command=cmd)

        diagnostics, saw_json = parse_json_messages(stdout.splitlines())
        if not saw_json:
            diagnostics = parse_text_diagnostics(f"{stderr}\n{stdout}")
        logger.debug(
            "%s exited with %s (%d diagnostics)", cmd[0], proc.returncode, len(diagnostics)
        )

        if proc.returncode != 0 and not any(d.is_error for d in diagnostics):
            tail = "\n".join(stderr.strip().splitlines()[-20:])
            msg = f"`{' '.join(cmd)}` exited with status {proc.returncode} without diagnostics"
            if tail:
                msg = f"{msg}:\n{tail}"
            raise ToolchainInvocationError(msg, command=cmd, returncode=proc.returncode)
        return diagnostics

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            active = list(self._active)
        for proc in active:
            logger.debug("killing toolchain process %s", proc.pid)
            try:
                _kill_tree(proc)
            except OSError:
                logger.debug("process %s already exited", proc.pid)
