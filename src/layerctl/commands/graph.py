"""Command: show the validated layer graph."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from layerctl.commands._base import LayerCommand
from layerctl.services.graph import GraphService

if TYPE_CHECKING:
    from layerctl.commands._context import AppContext


@click.command(
    cls=LayerCommand,
    examples="""\
  layerctl graph
  layerctl -v graph
  layerctl --json graph""",
)
@click.pass_obj
def graph(app: AppContext) -> None:
    """Show layers top-down with their dependencies and visible sets."""
    app.emit(GraphService(app.workspace).graph())
