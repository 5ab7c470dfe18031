"""Verification driver — check every layer's projected unit with the toolchain.

One run:

1. Optionally check the unmodified crate (the baseline). If it does not
   compile, no layer verdict would mean anything, so the run stops.
2. For each requested layer, on a worker thread: synthesize the unit,
   materialize it into a private scratch directory, run the toolchain,
   classify the diagnostics, and delete the directory.
3. Collect one :class:`Verdict` per layer, reported in configuration order
   whatever order the workers finish in.

Per-layer problems (toolchain timeouts, crashes, units that cannot be
synthesized) become that layer's verdict; they never abort the other layers.
"""

from __future__ import annotations

import contextvars
import logging
import os
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from layerctl.domain.classify import DiagnosticClass, classify, diagnostic_class
from layerctl.domain.errors import (
    BaselineError,
    ConfigError,
    LayerctlError,
    SynthesisError,
    ToolchainError,
    ToolchainTimeoutError,
)
from layerctl.domain.verdicts import Issue, IssueKind, Verdict, VerificationReport
from layerctl.infrastructure.scratch import create_scratch_dir, materialize, remove_scratch_dir
from layerctl.services.base import BaseService
from layerctl.services.result import ServiceError, ServiceResult
from layerctl.services.synthesize import UnitSynthesizer
from layerctl.services.telemetry import get_current_span, trace_span, traced

if TYPE_CHECKING:
    from layerctl.config.models import CheckConfig
    from layerctl.domain.diagnostics import Diagnostic
    from layerctl.domain.layers import LayerGraph
    from layerctl.domain.modules import ModuleTree
    from layerctl.domain.units import ProjectedUnit
    from layerctl.infrastructure.manifest import CrateManifest
    from layerctl.infrastructure.toolchain import Toolchain

logger = logging.getLogger(__name__)


@dataclass
class DriverOptions:
    """Knobs of one verification run.

    Attributes:
        jobs: Concurrent toolchain invocations (0 = one per CPU).
        extra_args: Appended to every toolchain invocation.
        baseline: Check the unmodified crate first.
        scratch_dir: Parent of the per-layer scratch directories
            (system temp directory when None).
        keep_scratch: Leave scratch directories behind for debugging.
    """

    jobs: int = 0
    extra_args: tuple[str, ...] = ()
    baseline: bool = True
    scratch_dir: Path | None = None
    keep_scratch: bool = False

    @classmethod
    def from_check(cls, check: CheckConfig, extra_args: Sequence[str] = ()) -> DriverOptions:
        return cls(
            jobs=check.jobs,
            extra_args=tuple(extra_args),
            baseline=check.baseline,
            scratch_dir=check.scratch_dir,
            keep_scratch=check.keep_scratch,
        )

    @property
    def workers(self) -> int:
        return self.jobs or os.cpu_count() or 1


def _toolchain_issue(exc: ToolchainError) -> Issue:
    kind = (
        IssueKind.TOOLCHAIN_TIMEOUT
        if isinstance(exc, ToolchainTimeoutError)
        else IssueKind.TOOLCHAIN_INVOCATION
    )
    return Issue(kind=kind, message=exc.message)


class VerificationDriver:
    """Runs the per-layer checks of one crate.

    Args:
        tree: Parsed module tree of the crate.
        graph: Validated layer graph.
        toolchain: Compiler frontend used for every unit.
        manifest: Resolved crate manifest (renders each unit's Cargo.toml
            and locates the crate for the baseline check).
        options: Concurrency, scratch and baseline settings.
    """

    def __init__(
        self,
        tree: ModuleTree,
        graph: LayerGraph,
        toolchain: Toolchain,
        *,
        manifest: CrateManifest | None = None,
        options: DriverOptions | None = None,
    ) -> None:
        self.tree = tree
        self.graph = graph
        self.toolchain = toolchain
        self.manifest = manifest
        self.options = options or DriverOptions()
        self.synthesizer = UnitSynthesizer(tree, manifest)
        self._module_names = frozenset(tree.module_names())

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, layers: Sequence[str] | None = None) -> VerificationReport:
        """Verify *layers* (default: every configured layer).

        Raises:
            ConfigError: a requested layer is not configured.
            BaselineError: the unmodified crate has compile errors.
            KeyboardInterrupt: after cancelling pending work and killing
                in-flight toolchain processes.
        """
        selected = self._select(layers)
        if self.options.baseline and self.manifest is not None:
            self.check_baseline()

        verdicts: dict[str, Verdict] = {}
        workers = min(self.options.workers, max(len(selected), 1))
        logger.debug("checking %d layers with %d workers", len(selected), workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="layerctl")
        futures: dict[str, Future[Verdict]] = {}
        try:
            for layer in selected:
                context = contextvars.copy_context()
                futures[layer] = executor.submit(context.run, self.verify_layer, layer)
            for layer, future in futures.items():
                verdicts[layer] = future.result()
        except KeyboardInterrupt:
            logger.warning("interrupted; cancelling pending layers")
            for future in futures.values():
                future.cancel()
            self.toolchain.cancel()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
        return VerificationReport(verdicts=[verdicts[layer] for layer in selected])

    def _select(self, layers: Sequence[str] | None) -> list[str]:
        if not layers:
            return list(self.graph.layers)
        unknown = [name for name in layers if name not in self.graph]
        if unknown:
            msg = f"unknown layer(s): {', '.join(unknown)}"
            raise ConfigError(msg, layers=unknown, known=list(self.graph.layers))
        wanted = set(layers)
        return [name for name in self.graph.layers if name in wanted]

    def check_baseline(self) -> None:
        """Check the crate as written; raise :class:`BaselineError` on errors."""
        assert self.manifest is not None
        with trace_span("baseline"):
            try:
                diagnostics = self.toolchain.check(self.manifest.root, self.options.extra_args)
            except ToolchainError as exc:
                msg = f"baseline check of {self.manifest.package_name} failed: {exc.message}"
                raise BaselineError(msg, cause=exc.code) from exc
        # Escalated unused imports are reported per layer, not by the baseline.
        errors = [
            d
            for d in diagnostics
            if d.is_error and diagnostic_class(d) != DiagnosticClass.UNUSED_IMPORT
        ]
        if errors:
            msg = (
                f"{self.manifest.package_name} does not compile as written "
                f"({len(errors)} error(s)); fix it before checking layers"
            )
            raise BaselineError(
                msg,
                diagnostics=[f"{d.location}: {d.message}" for d in errors[:10]],
            )

    # ------------------------------------------------------------------
    # One layer
    # ------------------------------------------------------------------

    def verify_layer(self, layer: str) -> Verdict:
        """Synthesize, check and classify one layer. Never raises for per-layer failures."""
        started = time.perf_counter()
        with trace_span(f"layer:{layer}") as span:
            try:
                unit = self.synthesizer.project(layer, self.graph)
            except SynthesisError as exc:
                logger.debug("cannot synthesize %s: %s", layer, exc.message)
                return Verdict.config_error(layer, exc.message)

            try:
                directory = create_scratch_dir(layer, self.options.scratch_dir)
            except SynthesisError as exc:
                return Verdict.config_error(layer, exc.message)
            try:
                try:
                    materialize(unit, directory)
                except SynthesisError as exc:
                    return Verdict.config_error(layer, exc.message)
                try:
                    diagnostics = self.toolchain.check(directory, self.options.extra_args)
                except ToolchainError as exc:
                    logger.debug("toolchain failed for %s: %s", layer, exc.message)
                    issues = [_toolchain_issue(exc)]
                else:
                    issues = self._classify(layer, unit, diagnostics, directory)
            finally:
                if self.options.keep_scratch:
                    logger.info("kept scratch unit for %s at %s", layer, directory)
                else:
                    remove_scratch_dir(directory)

            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            verdict = Verdict.from_issues(
                layer, issues, modules=unit.modules, duration_ms=duration_ms
            )
            if span is not None:
                span.annotate("status", verdict.status.value)
            logger.debug("layer %s: %s (%d issues)", layer, verdict.status, len(issues))
            return verdict

    def _classify(
        self,
        layer: str,
        unit: ProjectedUnit,
        diagnostics: list[Diagnostic],
        directory: Path,
    ) -> list[Issue]:
        issues: list[Issue] = []
        for diagnostic in diagnostics:
            issue = classify(
                diagnostic,
                layer=layer,
                graph=self.graph,
                unit=unit,
                module_names=self._module_names,
                unit_root=directory,
            )
            if issue is not None:
                issues.append(issue)
        return issues


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def report_data(report: VerificationReport) -> dict[str, object]:
    """Serializable payload of a report, with hints attached to issues."""
    verdicts = []
    for verdict in report.verdicts:
        entry = verdict.model_dump(mode="json")
        for issue, dumped in zip(verdict.issues, entry["issues"], strict=True):
            dumped["hint"] = issue.hint
        verdicts.append(entry)
    return {"summary": report.summary(), "verdicts": verdicts}


class VerifyService(BaseService):
    """Runs layer verification against the workspace's crate."""

    @traced
    def check(
        self,
        layers: Sequence[str] = (),
        *,
        check: CheckConfig | None = None,
        extra_args: Sequence[str] = (),
    ) -> ServiceResult:
        """Verify *layers* (every configured layer when empty).

        ``ok`` is False when any layer fails; the verdicts are still in
        ``data`` so callers can show what went wrong.
        """
        op = "check"
        workspace = self._workspace
        check = check or workspace.check_config
        try:
            driver = VerificationDriver(
                workspace.tree,
                workspace.graph,
                workspace.toolchain(check),
                manifest=workspace.manifest,
                options=DriverOptions.from_check(check, extra_args),
            )
            report = driver.run(layers)
        except LayerctlError as exc:
            return ServiceResult.failure(op, exc)

        warnings = self._warnings()
        data = report_data(report)
        span = get_current_span()
        if span is not None:
            span.annotate("layers", len(report.verdicts))
        if report.ok:
            return ServiceResult(ok=True, op=op, data=data, warnings=warnings)

        failed = [v.layer for v in report.verdicts if not v.ok]
        return ServiceResult(
            ok=False,
            op=op,
            data=data,
            warnings=warnings,
            error=ServiceError(
                code="LAYER_CHECK_FAILED",
                message=f"{len(failed)} of {len(report.verdicts)} layer(s) failed: "
                f"{', '.join(failed)}",
                detail={"failed": failed},
            ),
        )
