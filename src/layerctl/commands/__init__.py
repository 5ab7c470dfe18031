"""Subcommand modules for layerctl.

Provides register_commands() which uses deferred imports to keep
``layerctl --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the standalone commands on the root CLI group."""
    from layerctl.commands.check import check
    from layerctl.commands.graph import graph
    from layerctl.commands.unit import unit

    cli.add_command(check)
    cli.add_command(graph)
    cli.add_command(unit)
