"""Command: print the unit synthesized for one layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from layerctl.commands._base import LayerCommand
from layerctl.services.synthesize import UnitService

if TYPE_CHECKING:
    from layerctl.commands._context import AppContext


@click.command(
    cls=LayerCommand,
    examples="""\
  layerctl unit api
  layerctl -v unit api
  layerctl -q unit api > lib.rs""",
)
@click.argument("layer")
@click.pass_obj
def unit(app: AppContext, layer: str) -> None:
    """Print the lib.rs that LAYER is checked against."""
    app.emit(UnitService(app.workspace).unit(layer))
