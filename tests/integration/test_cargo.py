"""End-to-end checks against a real ``cargo`` (skipped when it is not installed)."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from click.testing import CliRunner

from layerctl.cli import cli
from tests.conftest import CRATE_FILES, write_crate

pytestmark = pytest.mark.skipif(shutil.which("cargo") is None, reason="cargo is not installed")


TWO_LAYERS = """\
[layer.top]
depends-on = ["bottom"]

[layer.bottom]
"""


def _check(
    runner: CliRunner, root: Path, monkeypatch: pytest.MonkeyPatch, *options: str
) -> dict:
    monkeypatch.delenv("LAYERCTL_LAYERFILE", raising=False)
    monkeypatch.chdir(root)
    result = runner.invoke(
        cli, ["--json", "check", "--jobs", "2", *options, "--", "--offline"]
    )
    output = result.stdout if result.exit_code == 0 else result.stderr
    return json.loads(output)


class TestCargoEndToEnd:
    def test_sample_crate_passes(
        self, cli_runner: CliRunner, crate_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        payload = _check(cli_runner, crate_root, monkeypatch)
        assert payload["ok"] is True
        assert payload["data"]["summary"]["pass"] == 3

    def test_upward_reference_is_a_violation(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        files = dict(CRATE_FILES)
        files["src/domain.rs"] = (
            "use crate::storage::Store;\n\n"
            "pub struct Record {\n    pub id: u64,\n}\n\n"
            "pub fn empty() -> Store {\n    Store::default()\n}\n"
        )
        root = write_crate(tmp_path / "upward", files)
        payload = _check(cli_runner, root, monkeypatch)
        assert payload["ok"] is False
        verdicts = {v["layer"]: v for v in payload["data"]["verdicts"]}
        assert verdicts["api"]["status"] == "pass"
        assert verdicts["storage"]["status"] == "pass"
        domain = verdicts["domain"]
        assert domain["status"] == "fail"
        kinds = {issue["kind"] for issue in domain["issues"]}
        assert "layering_violation" in kinds
        violation = next(i for i in domain["issues"] if i["kind"] == "layering_violation")
        assert violation["target_layer"] == "storage"
        assert violation["file"].endswith("domain.rs")
        assert violation["line"] == 1

    def test_unused_dependency_is_a_warning(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        files = dict(CRATE_FILES)
        files["src/api.rs"] = "use crate::storage::Store;\n\npub fn handler() {}\n"
        root = write_crate(tmp_path / "unused", files)
        payload = _check(cli_runner, root, monkeypatch)
        assert payload["ok"] is True
        api = payload["data"]["verdicts"][0]
        assert api["status"] == "pass"
        assert api["issues"]
        assert {i["kind"] for i in api["issues"]} == {"unused_dependency"}
        assert {i["target_layer"] for i in api["issues"]} == {"storage"}
        assert not any(i["fatal"] for i in api["issues"])

    def test_crate_private_item_across_layers_fails(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        files = {
            "src/lib.rs": "mod top;\nmod bottom;\n",
            "src/top.rs": "pub fn run() {\n    crate::bottom::helper();\n}\n",
            "src/bottom.rs": "pub(crate) fn helper() {}\n",
        }
        root = write_crate(tmp_path / "private", files, layerfile=TWO_LAYERS)
        payload = _check(cli_runner, root, monkeypatch)
        assert payload["ok"] is False
        verdicts = {v["layer"]: v for v in payload["data"]["verdicts"]}
        assert verdicts["bottom"]["status"] == "pass"
        top = verdicts["top"]
        assert top["status"] == "fail"
        violation = next(i for i in top["issues"] if i["kind"] == "layering_violation")
        assert violation["target_layer"] == "bottom"
        assert violation["code"] == "E0603"
        assert violation["file"].endswith("top.rs")
        assert violation["line"] == 2

    def test_never_referenced_dependency_fails_when_escalated(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        files = {
            "src/lib.rs": "mod top;\nmod bottom;\n",
            "src/top.rs": "pub fn run() {}\n",
            "src/bottom.rs": "pub fn helper() {}\n",
        }
        root = write_crate(tmp_path / "unreferenced", files, layerfile=TWO_LAYERS)
        payload = _check(cli_runner, root, monkeypatch, "--deny-unused")
        assert payload["ok"] is False
        verdicts = {v["layer"]: v for v in payload["data"]["verdicts"]}
        assert verdicts["bottom"]["status"] == "pass"
        top = verdicts["top"]
        assert top["status"] == "fail"
        (issue,) = top["issues"]
        assert issue["kind"] == "unused_dependency"
        assert issue["target_layer"] == "bottom"
        assert issue["fatal"] is True

    def test_never_referenced_dependency_is_a_warning(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        files = {
            "src/lib.rs": "mod top;\nmod bottom;\n",
            "src/top.rs": "pub fn run() {}\n",
            "src/bottom.rs": "pub fn helper() {}\n",
        }
        root = write_crate(tmp_path / "unreferenced", files, layerfile=TWO_LAYERS)
        payload = _check(cli_runner, root, monkeypatch)
        assert payload["ok"] is True
        top = next(v for v in payload["data"]["verdicts"] if v["layer"] == "top")
        assert top["status"] == "pass"
        (issue,) = top["issues"]
        assert issue["kind"] == "unused_dependency"
        assert issue["target_layer"] == "bottom"
        assert issue["fatal"] is False
