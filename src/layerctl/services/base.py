"""BaseService — abstract foundation for all layerctl services.

Every service receives a :class:`CrateWorkspace` at construction time. The
workspace lazily provides the Layerfile, manifest, module tree and layer
graph; services translate failures into ``ServiceResult`` errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from layerctl.infrastructure.workspace import CrateWorkspace


class BaseService:
    """Abstract base for all service-layer classes.

    Usage::

        class GraphService(BaseService):
            def graph(self) -> ServiceResult:
                graph = self._workspace.graph
                ...
    """

    def __init__(self, workspace: CrateWorkspace) -> None:
        self._workspace = workspace

    def _warnings(self) -> list[str]:
        """Non-fatal graph warnings (unconfigured or unknown excluded modules)."""
        return list(self._workspace.graph.warnings)
