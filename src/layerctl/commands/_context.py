"""AppContext — shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``.  Provides lazy workspace initialization and centralized
result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from layerctl.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from layerctl.config.settings import LayerctlSettings
    from layerctl.infrastructure.workspace import CrateWorkspace
    from layerctl.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    Subcommands access it via ``@click.pass_obj``.  The workspace is lazily
    initialized on first use so ``--help`` and ``--version`` never read
    the crate.
    """

    def __init__(self, settings: LayerctlSettings) -> None:
        self.settings = settings
        self._workspace: CrateWorkspace | None = None

        # Configure structured logging
        from layerctl.config.logging import configure_logging

        configure_logging(
            verbose=settings.verbose, quiet=settings.quiet, log_json=settings.log_json
        )

        # Enable telemetry context var when verbose
        if settings.verbose:
            from layerctl.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def workspace(self) -> CrateWorkspace:
        """The crate workspace (created lazily on first access)."""
        if self._workspace is None:
            from layerctl.infrastructure.workspace import CrateWorkspace

            self._workspace = CrateWorkspace(self.settings)
        return self._workspace

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally.
          Warnings are emitted to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        # In JSON mode, warnings are already in the serialized payload.
        if not settings.json_output and not settings.quiet:
            for warning in result.warnings:
                click.echo(f"WARNING: {warning}", err=True)
        if result.ok:
            click.echo(output)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)
