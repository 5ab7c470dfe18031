"""End-to-end integration tests for verbose telemetry.

Validates the full pipeline:
  CLI flag (-v) -> AppContext -> enable_telemetry() -> @traced service methods
  -> span tree in ServiceResult.meta -> renderer outputs hierarchical span tree.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from layerctl.cli import cli
from layerctl.infrastructure.workspace import CrateWorkspace
from layerctl.services.telemetry import _verbose_enabled
from tests.conftest import FakeToolchain, fake_toolchain_factory


@pytest.mark.usefixtures("_isolated_crate")
class TestVerboseTelemetry:
    """Test --verbose produces telemetry span tree in output."""

    def setup_method(self) -> None:
        self.runner = CliRunner()

    def test_verbose_graph_shows_telemetry(self) -> None:
        result = self.runner.invoke(cli, ["-v", "graph"])
        assert result.exit_code == 0
        assert "meta:" in result.stdout
        assert "GraphService.graph" in result.stdout
        assert "ms" in result.stdout

    def test_verbose_check_shows_layer_spans(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(CrateWorkspace, "toolchain", fake_toolchain_factory(FakeToolchain()))
        result = self.runner.invoke(cli, ["-v", "check"])
        assert result.exit_code == 0
        assert "VerifyService.check" in result.stdout
        assert "baseline" in result.stdout
        for layer in ("api", "storage", "domain"):
            assert f"layer:{layer}" in result.stdout
        assert "status=pass" in result.stdout

    def test_verbose_unit_shows_placement(self) -> None:
        result = self.runner.invoke(cli, ["-v", "unit", "storage"])
        assert result.exit_code == 0
        assert "UnitService.unit" in result.stdout

    def test_non_verbose_no_telemetry(self) -> None:
        result = self.runner.invoke(cli, ["graph"])
        assert result.exit_code == 0
        assert "meta:" not in result.stdout

    def test_json_verbose_includes_meta(self) -> None:
        result = self.runner.invoke(cli, ["--json", "-v", "graph"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["meta"]["telemetry"]["name"] == "GraphService.graph"

    def test_telemetry_reset_between_tests(self) -> None:
        assert not _verbose_enabled.get()
