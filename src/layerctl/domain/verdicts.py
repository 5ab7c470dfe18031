"""Per-layer verdicts and the aggregate verification report."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class IssueKind(StrEnum):
    """What went wrong while checking one layer."""

    LAYERING_VIOLATION = "layering_violation"
    DEPENDENCY_COMPILE_ERROR = "dependency_compile_error"
    UNUSED_DEPENDENCY = "unused_dependency"
    UNCLASSIFIED_DIAGNOSTIC = "unclassified_diagnostic"
    TOOLCHAIN_TIMEOUT = "toolchain_timeout"
    TOOLCHAIN_INVOCATION = "toolchain_invocation_error"


class VerdictStatus(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    CONFIG_ERROR = "config_error"


_HINTS: dict[IssueKind, str] = {
    IssueKind.LAYERING_VIOLATION: "add the target layer to `depends-on`, or move the code",
    IssueKind.DEPENDENCY_COMPILE_ERROR: (
        "a visible dependency does not compile on its own; check its `depends-on`"
    ),
    IssueKind.UNUSED_DEPENDENCY: "you might have specified an extraneous dependency",
    IssueKind.UNCLASSIFIED_DIAGNOSTIC: "see the compiler message",
    IssueKind.TOOLCHAIN_TIMEOUT: "raise --timeout or check the toolchain for hangs",
    IssueKind.TOOLCHAIN_INVOCATION: "check the toolchain command and arguments",
}


class Issue(BaseModel):
    """One finding attached to a layer's verdict.

    Attributes:
        kind: Issue category.
        message: Human-readable description (usually the compiler message).
        fatal: Whether this issue fails the layer.
        target_layer: Disallowed (or failing) layer the reference points at.
        reference: The offending path as written in the source, if known.
        file: Source location, mapped back to the original crate when possible.
        line: 1-based line of ``file``.
        code: Compiler error code or lint name.
    """

    model_config = {"frozen": True}

    kind: IssueKind
    message: str
    fatal: bool = True
    target_layer: str | None = None
    reference: str | None = None
    file: str | None = None
    line: int | None = None
    code: str | None = None

    @property
    def hint(self) -> str:
        return _HINTS[self.kind]


class Verdict(BaseModel):
    """Outcome of verifying one layer."""

    model_config = {"frozen": True}

    layer: str
    status: VerdictStatus
    issues: list[Issue] = Field(default_factory=list)
    reason: str | None = None
    modules: list[str] = Field(default_factory=list)
    duration_ms: float | None = None

    @classmethod
    def from_issues(
        cls,
        layer: str,
        issues: list[Issue],
        *,
        modules: list[str] | None = None,
        duration_ms: float | None = None,
    ) -> Verdict:
        status = VerdictStatus.FAIL if any(i.fatal for i in issues) else VerdictStatus.PASS
        return cls(
            layer=layer,
            status=status,
            issues=issues,
            modules=modules or [],
            duration_ms=duration_ms,
        )

    @classmethod
    def config_error(cls, layer: str, reason: str) -> Verdict:
        return cls(layer=layer, status=VerdictStatus.CONFIG_ERROR, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == VerdictStatus.PASS

    @property
    def violations(self) -> list[Issue]:
        return [i for i in self.issues if i.kind == IssueKind.LAYERING_VIOLATION]

    @property
    def warnings(self) -> list[Issue]:
        return [i for i in self.issues if not i.fatal]


class VerificationReport(BaseModel):
    """Verdicts for every checked layer, in configuration order."""

    model_config = {"frozen": True}

    verdicts: list[Verdict] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True iff every verdict passed (non-escalated warnings are ignored)."""
        return all(v.ok for v in self.verdicts)

    def __getitem__(self, layer: str) -> Verdict:
        for verdict in self.verdicts:
            if verdict.layer == layer:
                return verdict
        raise KeyError(layer)

    def as_mapping(self) -> dict[str, Verdict]:
        return {v.layer: v for v in self.verdicts}

    def summary(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in VerdictStatus}
        for verdict in self.verdicts:
            counts[verdict.status.value] += 1
        return {"ok": self.ok, "layers": len(self.verdicts), **counts}
