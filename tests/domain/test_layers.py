"""Tests for the layer graph — validation, closures, and access rules."""

from __future__ import annotations

import pytest

from layerctl.domain.errors import ConfigError
from layerctl.domain.layers import Access, LayerConfig, LayerGraph, format_cycle


def _graph(
    config: dict[str, dict[str, list[str]]],
    modules: list[str] | None = None,
    **kwargs: object,
) -> LayerGraph:
    layers = {
        name: LayerConfig(
            depends_on=tuple(edges.get("depends_on", [])),
            impl=tuple(edges.get("impl", [])),
        )
        for name, edges in config.items()
    }
    return LayerGraph.build(layers, modules if modules is not None else list(config), **kwargs)


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


class TestBuild:
    def test_minimal(self) -> None:
        graph = _graph({"core": {}})
        assert graph.layers == ("core",)
        assert "core" in graph
        assert "other" not in graph
        assert graph.warnings == []

    def test_layer_must_be_a_module(self) -> None:
        with pytest.raises(ConfigError, match="does not name a top-level module"):
            _graph({"ghost": {}}, modules=["real"])

    def test_unknown_target(self) -> None:
        with pytest.raises(ConfigError, match="not a declared layer") as exc_info:
            _graph({"api": {"depends_on": ["db"]}}, modules=["api", "db"])
        assert exc_info.value.detail["target"] == "db"

    def test_unknown_impl_target(self) -> None:
        with pytest.raises(ConfigError, match="impl `db`"):
            _graph({"api": {"impl": ["db"]}}, modules=["api", "db"])

    def test_self_dependency(self) -> None:
        with pytest.raises(ConfigError, match="lists itself"):
            _graph({"api": {"depends_on": ["api"]}})

    def test_two_layer_cycle_names_both(self) -> None:
        with pytest.raises(ConfigError, match="circular dependency") as exc_info:
            _graph({"a": {"depends_on": ["b"]}, "b": {"depends_on": ["a"]}})
        assert set(exc_info.value.detail["cycle"]) == {"a", "b"}
        assert "a" in exc_info.value.message
        assert "b" in exc_info.value.message

    def test_long_cycle_reports_path(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            _graph(
                {
                    "a": {"depends_on": ["b"]},
                    "b": {"depends_on": ["c"]},
                    "c": {"depends_on": ["a"]},
                }
            )
        assert set(exc_info.value.detail["cycle"]) == {"a", "b", "c"}
        assert " -> " in exc_info.value.message

    def test_unconfigured_module_warns(self) -> None:
        graph = _graph({"api": {}}, modules=["api", "util"])
        assert graph.untracked == ("util",)
        assert len(graph.warnings) == 1
        assert "`util`" in graph.warnings[0]

    def test_excluded_module_not_untracked(self) -> None:
        graph = _graph({"api": {}}, modules=["api", "tests"], exclude=["tests"])
        assert graph.untracked == ()
        assert graph.excluded == ("tests",)
        assert graph.warnings == []

    def test_excluded_layer_rejected(self) -> None:
        with pytest.raises(ConfigError, match="exclude"):
            _graph({"api": {}}, modules=["api"], exclude=["api"])

    def test_exclude_of_missing_module_warns(self) -> None:
        graph = _graph({"api": {}}, modules=["api"], exclude=["gone"])
        assert any("gone" in w for w in graph.warnings)

    def test_mutual_visibility_rejected(self) -> None:
        with pytest.raises(ConfigError, match="can each see the other"):
            _graph({"a": {"depends_on": ["b"]}, "b": {"impl": ["a"]}})

    def test_edge_in_both_lists_is_impl(self) -> None:
        graph = _graph({"a": {"depends_on": ["b"], "impl": ["b"]}, "b": {}})
        assert graph.impls("a") == {"b"}
        assert graph.visible("a") == {"b"}
        assert graph.strict_deps("a") == frozenset()

    def test_edge_in_both_lists_stays_a_declared_dependency(self) -> None:
        graph = _graph({"a": {"depends_on": ["b", "c"], "impl": ["b"]}, "b": {}, "c": {}})
        assert graph.direct_deps("a") == {"b", "c"}
        assert graph.to_dict()["a"]["depends_on"] == ["b", "c"]


# ---------------------------------------------------------------------------
# Closures
# ---------------------------------------------------------------------------


class TestClosures:
    @pytest.fixture
    def graph(self) -> LayerGraph:
        return _graph(
            {
                "a": {"depends_on": ["b"], "impl": ["b"]},
                "b": {"depends_on": ["c"]},
                "c": {"depends_on": ["d"]},
                "d": {},
                "e": {"impl": ["c"]},
            }
        )

    def test_strict_deps_are_transitive(self, graph: LayerGraph) -> None:
        assert graph.strict_deps("b") == {"c", "d"}
        assert graph.strict_deps("d") == frozenset()

    def test_impl_pulls_in_target_closure(self, graph: LayerGraph) -> None:
        assert graph.visible("a") == {"b", "c", "d"}

    def test_impl_is_one_directional(self, graph: LayerGraph) -> None:
        assert "a" not in graph.visible("b")
        assert "e" not in graph.visible("c")

    def test_impl_only_target(self, graph: LayerGraph) -> None:
        assert graph.strict_deps("e") == frozenset()
        assert graph.visible("e") == {"c", "d"}

    def test_visible_contains_strict_deps(self, graph: LayerGraph) -> None:
        for layer in graph.layers:
            assert graph.strict_deps(layer) <= graph.visible(layer)
            assert layer not in graph.visible(layer)

    def test_no_implicit_symmetry(self, graph: LayerGraph) -> None:
        for layer in graph.layers:
            for other in graph.visible(layer):
                assert layer not in graph.visible(other)

    def test_closures_are_memoized(self, graph: LayerGraph) -> None:
        assert graph.visible("a") is graph.visible("a")

    def test_unknown_layer(self, graph: LayerGraph) -> None:
        with pytest.raises(ConfigError, match="unknown layer"):
            graph.visible("zzz")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_classify(self) -> None:
        graph = _graph({"top": {"depends_on": ["bottom"]}, "bottom": {}})
        assert graph.classify("top", "top") == Access.ALLOWED
        assert graph.classify("top", "bottom") == Access.ALLOWED
        assert graph.classify("bottom", "top") == Access.DISALLOWED

    def test_unit_layers_puts_layer_first(self) -> None:
        graph = _graph({"c": {}, "b": {"depends_on": ["c"]}, "a": {"depends_on": ["b"]}})
        assert graph.unit_layers("a") == ["a", "c", "b"]
        assert graph.unit_layers("c") == ["c"]

    def test_unit_members_and_imports(self) -> None:
        graph = _graph(
            {
                "a": {"depends_on": ["d"], "impl": ["b"]},
                "b": {"depends_on": ["c"]},
                "c": {},
                "d": {},
            }
        )
        assert graph.unit_members("a") == ["a", "b"]
        assert graph.unit_imports("a") == ["c", "d"]
        assert graph.unit_members("b") == ["b"]
        assert graph.unit_imports("b") == ["c"]

    def test_layer_depending_on_impl_target_joins_members(self) -> None:
        graph = _graph(
            {
                "a": {"depends_on": ["d"], "impl": ["b"]},
                "b": {},
                "d": {"depends_on": ["b"]},
                "e": {},
            }
        )
        assert graph.unit_members("a") == ["a", "b", "d"]
        assert graph.unit_imports("a") == []

    def test_top_down_order(self) -> None:
        graph = _graph({"c": {}, "b": {"depends_on": ["c"]}, "a": {"depends_on": ["b"]}})
        assert graph.top_down_order() == ["a", "b", "c"]

    def test_top_down_order_keeps_config_order_for_independent_layers(self) -> None:
        graph = _graph({"x": {}, "y": {}, "z": {}})
        assert graph.top_down_order() == ["x", "y", "z"]

    def test_to_dict(self) -> None:
        graph = _graph({"a": {"impl": ["b"]}, "b": {"depends_on": ["c"]}, "c": {}})
        data = graph.to_dict()
        assert data["a"] == {
            "depends_on": [],
            "impl": ["b"],
            "strict_deps": [],
            "visible": ["b", "c"],
        }


def test_format_cycle() -> None:
    assert format_cycle([("a", "b"), ("b", "a")]) == "a -> b -> a"
