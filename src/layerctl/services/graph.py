"""GraphService — report the validated layer graph without running the toolchain."""

from __future__ import annotations

from layerctl.domain.errors import LayerctlError
from layerctl.services.base import BaseService
from layerctl.services.result import ServiceResult
from layerctl.services.telemetry import traced


class GraphService(BaseService):
    """Layer graph inspection."""

    @traced
    def graph(self) -> ServiceResult:
        """Layers in top-down order with declared edges and derived closures."""
        op = "graph"
        try:
            graph = self._workspace.graph
        except LayerctlError as exc:
            return ServiceResult.failure(op, exc)

        edges = graph.to_dict()
        layers = [{"name": name, **edges[name]} for name in graph.top_down_order()]
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "layers": layers,
                "count": len(layers),
                "untracked": list(graph.untracked),
                "excluded": list(graph.excluded),
            },
            warnings=self._warnings(),
        )
