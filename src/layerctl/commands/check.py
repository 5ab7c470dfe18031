"""Command: verify every layer's boundary with the toolchain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import click

from layerctl.commands._base import LayerCommand

if TYPE_CHECKING:
    from layerctl.commands._context import AppContext


class _CheckCommand(LayerCommand):
    """Everything after ``--`` is forwarded to the toolchain, not parsed as layers."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if "--" in args:
            index = args.index("--")
            ctx.meta["layerctl.cargo_args"] = tuple(args[index + 1 :])
            args = args[:index]
        return super().parse_args(ctx, args)


@click.command(
    cls=_CheckCommand,
    examples="""\
  layerctl check
  layerctl check api storage
  layerctl check --jobs 4 --timeout 300
  layerctl check --deny-unused
  layerctl check --no-baseline -- --features serde
  layerctl --json check""",
)
@click.argument("layers", nargs=-1)
@click.option(
    "-j",
    "--jobs",
    type=click.IntRange(min=0),
    default=None,
    help="Parallel checks (0 = one per CPU).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds before a layer's check is killed.",
)
@click.option("--deny-unused", is_flag=True, help="Fail layers with unused depends-on entries.")
@click.option("--no-baseline", is_flag=True, help="Skip checking the unmodified crate first.")
@click.option("--keep-scratch", is_flag=True, help="Keep synthesized units on disk.")
@click.pass_context
def check(
    ctx: click.Context,
    layers: tuple[str, ...],
    jobs: int | None,
    timeout: float | None,
    deny_unused: bool,
    no_baseline: bool,
    keep_scratch: bool,
) -> None:
    """Check that each layer compiles with only the layers it may see.

    Arguments after ``--`` are passed to every toolchain invocation.
    """
    from layerctl.services.verify import VerifyService

    app: AppContext = ctx.obj
    overrides: dict[str, Any] = {}
    if jobs is not None:
        overrides["jobs"] = jobs
    if timeout is not None:
        overrides["timeout"] = timeout
    if deny_unused:
        overrides["deny_unused"] = True
    if no_baseline:
        overrides["baseline"] = False
    if keep_scratch:
        overrides["keep_scratch"] = True

    config = app.settings.check.model_copy(update=overrides)
    cargo_args = ctx.meta.get("layerctl.cargo_args", ())
    app.emit(
        VerifyService(app.workspace).check(layers, check=config, extra_args=cargo_args)
    )
