"""Root CLI group for layerctl with global flags and command registration."""

from __future__ import annotations

import click

from layerctl import __version__
from layerctl.commands import register_commands
from layerctl.commands._context import AppContext
from layerctl.config.settings import LayerctlSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="layerctl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option(
    "-L",
    "--layerfile",
    default=None,
    help="Layerfile.toml to use instead of walk-up discovery.",
)
@click.option("--manifest-path", default=None, help="Path to the crate's Cargo.toml.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    layerfile: str | None,
    manifest_path: str | None,
) -> None:
    """layerctl — declare and verify layer dependencies inside a Rust crate."""
    ctx.ensure_object(dict)
    settings = LayerctlSettings.from_cli(
        layerfile=layerfile,
        manifest_path=manifest_path,
        json_output=json_output,
        quiet=quiet,
        verbose=verbose,
        log_json=log_json,
    )
    ctx.obj = AppContext(settings)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
