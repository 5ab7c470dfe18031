"""Layer graph — declared layers, strict and relaxed edges, derived closures.

Two explicit edge sets over the same node set:

* ``strict`` — ``depends-on`` edges. Transitive: a layer may reference every
  layer reachable through strict edges.
* ``relaxed`` — ``impl`` edges. One hop: a layer additionally sees each
  ``impl`` target *and* that target's own strict closure, but nothing is
  granted in the reverse direction.

The graph is immutable once built; closures are memoized per layer.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum

import networkx as nx
from pydantic import BaseModel

from layerctl.domain.errors import ConfigError


class LayerConfig(BaseModel):
    """Declared edges of one layer."""

    model_config = {"frozen": True}

    depends_on: tuple[str, ...] = ()
    impl: tuple[str, ...] = ()


class Access(StrEnum):
    """Outcome of :meth:`LayerGraph.classify`."""

    ALLOWED = "allowed"
    DISALLOWED = "disallowed"


def format_cycle(edges: list[tuple[str, str]]) -> str:
    """Render a networkx cycle edge list as ``a -> b -> a``."""
    names = [edges[0][0], *(v for _, v in edges)]
    return " -> ".join(names)


class LayerGraph:
    """Validated layer graph. Build with :meth:`build`."""

    def __init__(
        self,
        order: tuple[str, ...],
        strict: nx.DiGraph,
        relaxed: nx.DiGraph,
        *,
        declared: Mapping[str, tuple[str, ...]] | None = None,
        untracked: tuple[str, ...] = (),
        excluded: tuple[str, ...] = (),
        warnings: list[str] | None = None,
    ) -> None:
        self._order = order
        self._strict = strict
        self._relaxed = relaxed
        self._declared = dict(declared or {})
        self.untracked = untracked
        self.excluded = excluded
        self.warnings = warnings or []
        self._strict_cache: dict[str, frozenset[str]] = {}
        self._visible_cache: dict[str, frozenset[str]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        config: Mapping[str, LayerConfig],
        module_names: Iterable[str],
        *,
        exclude: Iterable[str] = (),
    ) -> LayerGraph:
        """Validate *config* against the crate's top-level modules.

        Raises:
            ConfigError: unknown layer or reference, self-reference,
                strict-dependency cycle, or two layers that can each see
                the other.
        """
        excluded = tuple(dict.fromkeys(exclude))
        all_modules = list(dict.fromkeys(module_names))
        available = [m for m in all_modules if m not in excluded]
        warnings: list[str] = []

        for name in excluded:
            if name not in all_modules:
                warnings.append(f"excluded module `{name}` is not declared in the crate root")

        order = tuple(config)
        for name in order:
            if name in excluded:
                msg = f"layer `{name}` is listed in [crate] exclude"
                raise ConfigError(msg, layer=name)
            if name not in all_modules:
                msg = f"layer `{name}` does not name a top-level module of the crate"
                raise ConfigError(msg, layer=name, modules=all_modules)

        strict: nx.DiGraph = nx.DiGraph()
        relaxed: nx.DiGraph = nx.DiGraph()
        strict.add_nodes_from(order)
        relaxed.add_nodes_from(order)

        for name, layer in config.items():
            for kind, targets in (("depends-on", layer.depends_on), ("impl", layer.impl)):
                for target in targets:
                    if target == name:
                        msg = f"layer `{name}` lists itself in `{kind}`"
                        raise ConfigError(msg, layer=name, kind=kind)
                    if target not in config:
                        msg = (
                            f"layer `{name}` {kind} `{target}`, which is not a declared layer "
                            f"(declare [layer.{target}] even if it has no dependencies)"
                        )
                        raise ConfigError(msg, layer=name, kind=kind, target=target)
            for target in layer.impl:
                relaxed.add_edge(name, target)
            for target in layer.depends_on:
                # An edge listed in both sets is an impl edge.
                if target not in layer.impl:
                    strict.add_edge(name, target)

        try:
            cycle = nx.find_cycle(strict)
        except nx.NetworkXNoCycle:
            cycle = None
        if cycle:
            edges = [(u, v) for u, v, *_ in cycle]
            path = format_cycle(edges)
            msg = f"circular dependency detected: {path}"
            raise ConfigError(msg, cycle=[u for u, _ in edges])

        untracked = tuple(m for m in available if m not in config)
        for name in untracked:
            warnings.append(
                f"module `{name}` is not configured as a layer; "
                "it is excluded from every layer's visibility"
            )

        graph = cls(
            order,
            strict,
            relaxed,
            declared={name: layer.depends_on for name, layer in config.items()},
            untracked=untracked,
            excluded=excluded,
            warnings=warnings,
        )
        graph._check_ownership()
        return graph

    def _check_ownership(self) -> None:
        for name in self._order:
            for other in sorted(self.visible(name)):
                if name in self.visible(other):
                    first, second = sorted((name, other))
                    msg = (
                        f"layers `{first}` and `{second}` can each see the other; "
                        "exactly one of them must own the combined unit"
                    )
                    raise ConfigError(msg, layers=[first, second])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def layers(self) -> tuple[str, ...]:
        """Layer names in configuration order."""
        return self._order

    def __contains__(self, name: object) -> bool:
        return name in self._order

    def _require(self, layer: str) -> None:
        if layer not in self._order:
            msg = f"unknown layer `{layer}`"
            raise ConfigError(msg, layer=layer)

    def direct_deps(self, layer: str) -> frozenset[str]:
        """``depends-on`` targets declared directly on *layer*.

        Includes targets that are also ``impl`` targets, which carry no
        strict edge but are still declared dependencies.
        """
        self._require(layer)
        return frozenset(self._declared.get(layer, ()))

    def impls(self, layer: str) -> frozenset[str]:
        """``impl`` targets declared directly on *layer*."""
        self._require(layer)
        return frozenset(self._relaxed.successors(layer))

    def strict_deps(self, layer: str) -> frozenset[str]:
        """Transitive closure of ``depends-on`` from *layer*."""
        self._require(layer)
        cached = self._strict_cache.get(layer)
        if cached is None:
            cached = frozenset(nx.descendants(self._strict, layer))
            self._strict_cache[layer] = cached
        return cached

    def visible(self, layer: str) -> frozenset[str]:
        """Layers whose modules *layer* may see.

        ``strict_deps(layer)`` plus, for every direct ``impl`` target M,
        M itself and ``strict_deps(M)``. Never contains *layer*.
        """
        self._require(layer)
        cached = self._visible_cache.get(layer)
        if cached is None:
            seen = set(self.strict_deps(layer))
            for target in self._relaxed.successors(layer):
                seen.add(target)
                seen.update(self.strict_deps(target))
            seen.discard(layer)
            cached = frozenset(seen)
            self._visible_cache[layer] = cached
        return cached

    def classify(self, layer: str, target: str) -> Access:
        if target == layer or target in self.visible(layer):
            return Access.ALLOWED
        return Access.DISALLOWED

    def unit_layers(self, layer: str) -> list[str]:
        """``{layer} ∪ visible(layer)``, *layer* first, the rest in config order."""
        visible = self.visible(layer)
        return [layer, *(name for name in self._order if name in visible)]

    def unit_members(self, layer: str) -> list[str]:
        """Layers compiled in the same crate as *layer*, *layer* first.

        ``impl`` targets join *layer* so trait and inherent impls stay local.
        A visible layer with a strict path into a member joins as well, which
        keeps the rest of the visible set closed under strict edges.
        """
        members = {layer, *self.impls(layer)}
        others = set(self.visible(layer)) - members
        changed = True
        while changed:
            changed = False
            for name in sorted(others):
                if self.strict_deps(name) & members:
                    members.add(name)
                    others.discard(name)
                    changed = True
        return [layer, *(name for name in self._order if name in members and name != layer)]

    def unit_imports(self, layer: str) -> list[str]:
        """Visible layers compiled as a separate crate, in config order."""
        members = set(self.unit_members(layer))
        return [name for name in self.unit_layers(layer) if name not in members]

    def top_down_order(self) -> list[str]:
        """Layers ordered so every layer precedes its strict dependencies."""
        position = {name: i for i, name in enumerate(self._order)}
        return list(nx.lexicographical_topological_sort(self._strict, key=position.__getitem__))

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        """Serializable view of declared edges and derived closures."""
        return {
            name: {
                "depends_on": sorted(self.direct_deps(name)),
                "impl": sorted(self.impls(name)),
                "strict_deps": sorted(self.strict_deps(name)),
                "visible": sorted(self.visible(name)),
            }
            for name in self._order
        }
