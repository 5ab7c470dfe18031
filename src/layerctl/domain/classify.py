"""Diagnostic classification — the single ``Diagnostic -> Issue`` boundary.

Everything that depends on the wording or codes of compiler messages lives
here, so the heuristics can be hardened without touching graph or
synthesis logic. Diagnostics that cannot be mapped with confidence are
never dropped when they are errors: they become ``UNCLASSIFIED_DIAGNOSTIC``.
"""

from __future__ import annotations

import re
from collections.abc import Collection
from enum import StrEnum
from pathlib import Path

from layerctl.domain.diagnostics import Diagnostic, Severity
from layerctl.domain.layers import Access, LayerGraph
from layerctl.domain.units import ProjectedUnit
from layerctl.domain.verdicts import Issue, IssueKind

NAME_NOT_FOUND_CODES = frozenset(
    {"E0405", "E0412", "E0422", "E0423", "E0425", "E0432", "E0433", "E0531"}
)
PRIVATE_ITEM_CODES = frozenset({"E0603", "E0616", "E0624"})
UNUSED_IMPORTS_LINT = "unused_imports"

_NAME_NOT_FOUND_TEXT = re.compile(
    r"unresolved import|failed to resolve|cannot find|could not find|"
    r"use of undeclared|unresolved module"
)
_PRIVATE_TEXT = re.compile(r"\bis private\b")
_UNUSED_TEXT = re.compile(r"^unused imports?\b")
_BACKTICKED = re.compile(r"`([^`]+)`")
_CRATE_PATH = re.compile(r"\bcrate\s*::\s*([A-Za-z_][A-Za-z0-9_]*)")
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class DiagnosticClass(StrEnum):
    NAME_NOT_FOUND = "name_not_found"
    PRIVATE_ITEM = "private_item"
    UNUSED_IMPORT = "unused_import"
    OTHER = "other"


def diagnostic_class(diagnostic: Diagnostic) -> DiagnosticClass:
    """Bucket a diagnostic by code, falling back to message text."""
    code = diagnostic.code
    if code == UNUSED_IMPORTS_LINT:
        return DiagnosticClass.UNUSED_IMPORT
    if code in NAME_NOT_FOUND_CODES:
        return DiagnosticClass.NAME_NOT_FOUND
    if code in PRIVATE_ITEM_CODES:
        return DiagnosticClass.PRIVATE_ITEM
    if code is None:
        message = diagnostic.message
        if _UNUSED_TEXT.search(message):
            return DiagnosticClass.UNUSED_IMPORT
        if _PRIVATE_TEXT.search(message):
            return DiagnosticClass.PRIVATE_ITEM
        if _NAME_NOT_FOUND_TEXT.search(message):
            return DiagnosticClass.NAME_NOT_FOUND
    return DiagnosticClass.OTHER


def referenced_module(
    diagnostic: Diagnostic, module_names: Collection[str]
) -> tuple[str | None, str | None]:
    """Find the top-level module a diagnostic's offending reference points at.

    Looks at backticked fragments of the message and label first, then the
    source snippet. ``crate::<name>`` paths win over bare identifiers.

    Returns:
        ``(module, reference_text)``; both None when nothing matches.
    """
    candidates = _BACKTICKED.findall(diagnostic.message)
    if diagnostic.label:
        candidates.extend(_BACKTICKED.findall(diagnostic.label))
    if diagnostic.snippet:
        candidates.append(diagnostic.snippet.strip())

    for text in candidates:
        for name in _CRATE_PATH.findall(text):
            if name in module_names:
                return name, text
    for text in candidates:
        for token in _IDENT.findall(text):
            if token in module_names:
                return token, text
    return None, None


def _issue(
    kind: IssueKind,
    diagnostic: Diagnostic,
    *,
    message: str | None = None,
    fatal: bool = True,
    target: str | None = None,
    reference: str | None = None,
    location: tuple[str | None, int | None] = (None, None),
) -> Issue:
    return Issue(
        kind=kind,
        message=message or diagnostic.message,
        fatal=fatal,
        target_layer=target,
        reference=reference,
        file=location[0],
        line=location[1],
        code=diagnostic.code,
    )


def classify(
    diagnostic: Diagnostic,
    *,
    layer: str,
    graph: LayerGraph,
    unit: ProjectedUnit,
    module_names: Collection[str],
    unit_root: Path | None = None,
) -> Issue | None:
    """Translate one diagnostic from *layer*'s unit into a verdict issue.

    Returns None for diagnostics of no interest: notes, help, warnings, and
    unused imports that do not name a declared dependency of *layer*.
    """
    if diagnostic.severity not in (Severity.ERROR, Severity.WARNING):
        return None

    kind = diagnostic_class(diagnostic)
    owner = unit.spans.owner_of(diagnostic.file, diagnostic.line_start, unit_root)
    location = unit.spans.original_location(diagnostic.file, diagnostic.line_start, unit_root)

    if kind == DiagnosticClass.UNUSED_IMPORT:
        target, reference = referenced_module(diagnostic, module_names)
        if owner == layer and target is not None and target in graph.direct_deps(layer):
            escalated = diagnostic.is_error
            return _issue(
                IssueKind.UNUSED_DEPENDENCY,
                diagnostic,
                message=f"`{layer}` declares `depends-on` `{target}` but never uses it: "
                f"{diagnostic.message}",
                fatal=escalated,
                target=target,
                reference=reference,
                location=location,
            )
        # Other unused imports are a lint matter, escalated or not.
        return None

    if not diagnostic.is_error:
        return None

    if owner is None:
        return _issue(IssueKind.UNCLASSIFIED_DIAGNOSTIC, diagnostic, location=location)

    if owner != layer:
        return _issue(
            IssueKind.DEPENDENCY_COMPILE_ERROR,
            diagnostic,
            message=f"dependency `{owner}` does not compile in `{layer}`'s unit: "
            f"{diagnostic.message}",
            target=owner,
            location=location,
        )

    if kind == DiagnosticClass.NAME_NOT_FOUND:
        target, reference = referenced_module(diagnostic, module_names)
        if target is None:
            return _issue(IssueKind.UNCLASSIFIED_DIAGNOSTIC, diagnostic, location=location)
        if graph.classify(layer, target) == Access.DISALLOWED:
            return _issue(
                IssueKind.LAYERING_VIOLATION,
                diagnostic,
                message=f"{diagnostic.message} (`{target}` is not visible from `{layer}`)",
                target=target,
                reference=reference,
                location=location,
            )
        return _issue(
            IssueKind.DEPENDENCY_COMPILE_ERROR,
            diagnostic,
            target=target,
            reference=reference,
            location=location,
        )

    if kind == DiagnosticClass.PRIVATE_ITEM:
        target, reference = referenced_module(diagnostic, module_names)
        if target is not None and target != layer:
            return _issue(
                IssueKind.LAYERING_VIOLATION,
                diagnostic,
                message=f"{diagnostic.message} (private to layer `{target}`)",
                target=target,
                reference=reference,
                location=location,
            )

    return _issue(IssueKind.UNCLASSIFIED_DIAGNOSTIC, diagnostic, location=location)
