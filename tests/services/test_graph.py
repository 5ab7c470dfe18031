"""Tests for GraphService."""

from __future__ import annotations

from pathlib import Path

import pytest

from layerctl.config.settings import LayerctlSettings
from layerctl.infrastructure.workspace import CrateWorkspace
from layerctl.services.graph import GraphService
from tests.conftest import LAYERFILE, write_crate


def _service(root: Path) -> GraphService:
    return GraphService(CrateWorkspace(LayerctlSettings.from_cli(crate_root=root)))


@pytest.fixture(autouse=True)
def _no_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LAYERCTL_LAYERFILE", raising=False)


class TestGraphService:
    def test_sample_crate(self, workspace: CrateWorkspace) -> None:
        result = GraphService(workspace).graph()
        assert result.ok
        assert result.op == "graph"
        assert result.data["count"] == 3
        assert [entry["name"] for entry in result.data["layers"]] == ["api", "storage", "domain"]
        api = result.data["layers"][0]
        assert api["depends_on"] == ["storage"]
        assert api["strict_deps"] == ["domain", "storage"]
        assert api["visible"] == ["domain", "storage"]
        assert result.data["untracked"] == []
        assert result.warnings == []

    def test_top_down_order_differs_from_config_order(self, tmp_path: Path) -> None:
        root = write_crate(
            tmp_path / "crate",
            layerfile=(
                '[layer.domain]\n\n[layer.storage]\ndepends-on = ["domain"]\n\n'
                '[layer.api]\ndepends-on = ["storage"]\n'
            ),
        )
        result = _service(root).graph()
        assert [entry["name"] for entry in result.data["layers"]] == ["api", "storage", "domain"]

    def test_untracked_module_is_a_warning(self, tmp_path: Path) -> None:
        root = write_crate(
            tmp_path / "crate",
            layerfile='[layer.api]\ndepends-on = ["storage"]\n\n[layer.storage]\n',
        )
        result = _service(root).graph()
        assert result.ok
        assert result.data["untracked"] == ["domain"]
        assert any("domain" in warning for warning in result.warnings)

    def test_cycle_is_config_error(self, tmp_path: Path) -> None:
        root = write_crate(
            tmp_path / "crate",
            layerfile=(
                '[layer.api]\ndepends-on = ["storage"]\n\n'
                '[layer.storage]\ndepends-on = ["api"]\n\n[layer.domain]\n'
            ),
        )
        result = _service(root).graph()
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "CONFIG_ERROR"
        assert "circular dependency" in result.error.message

    def test_missing_module_is_config_error(self, tmp_path: Path) -> None:
        root = write_crate(tmp_path / "crate", layerfile=LAYERFILE + "\n[layer.ghost]\n")
        result = _service(root).graph()
        assert not result.ok
        assert result.error is not None
        assert "ghost" in result.error.message

    def test_missing_layerfile(self, tmp_path: Path) -> None:
        root = write_crate(tmp_path / "crate", layerfile=None)
        result = _service(root).graph()
        assert not result.ok
        assert result.error is not None
        assert "no Layerfile.toml" in result.error.message
