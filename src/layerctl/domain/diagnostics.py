"""Toolchain diagnostics in a toolchain-neutral shape."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class Severity(StrEnum):
    """Diagnostic level as reported by the compiler."""

    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"
    HELP = "help"


class Diagnostic(BaseModel):
    """One compiler message with its primary span.

    ``file`` is as reported by the toolchain: relative to the unit root, or
    absolute for modules included through ``#[path]``. ``snippet`` holds the
    source text of the primary span's line(s) when the toolchain supplies it.
    """

    model_config = {"frozen": True}

    severity: Severity
    message: str
    code: str | None = None
    file: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    column: int | None = None
    snippet: str = ""
    label: str | None = None
    rendered: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    @property
    def location(self) -> str:
        if self.file is None:
            return "<unknown>"
        if self.line_start is None:
            return self.file
        if self.column is None:
            return f"{self.file}:{self.line_start}"
        return f"{self.file}:{self.line_start}:{self.column}"
