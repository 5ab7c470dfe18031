"""Shared pytest fixtures and test helpers for layerctl tests."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from layerctl.config.settings import LayerctlSettings
from layerctl.domain.diagnostics import Diagnostic, Severity
from layerctl.infrastructure.workspace import CrateWorkspace
from layerctl.services.telemetry import disable_telemetry

# ---------------------------------------------------------------------------
# Sample crate
# ---------------------------------------------------------------------------

CARGO_TOML = """\
[package]
name = "demo"
version = "0.1.0"
edition = "2021"

[dependencies]
"""

LIB_RS = """\
//! Demo crate.

mod api;
mod storage;
mod domain;
"""

CRATE_FILES: dict[str, str] = {
    "src/lib.rs": LIB_RS,
    "src/api.rs": """\
use crate::storage::Store;

pub fn handler() -> Store {
    Store::default()
}
""",
    "src/storage.rs": """\
mod backend;

use crate::domain::Record;

#[derive(Default)]
pub struct Store {
    records: Vec<Record>,
}
""",
    "src/storage/backend.rs": """\
pub(crate) fn flush() {}
""",
    "src/domain.rs": """\
pub struct Record {
    pub id: u64,
}
""",
}

LAYERFILE = """\
[layer.api]
depends-on = ["storage"]

[layer.storage]
depends-on = ["domain"]

[layer.domain]
"""


def write_crate(
    root: Path,
    files: Mapping[str, str] | None = None,
    *,
    layerfile: str | None = LAYERFILE,
    manifest: str = CARGO_TOML,
) -> Path:
    """Write a crate (manifest, sources, optional Layerfile) under *root*."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(manifest)
    for rel, text in (files if files is not None else CRATE_FILES).items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    if layerfile is not None:
        (root / "Layerfile.toml").write_text(layerfile)
    return root


@pytest.fixture(autouse=True)
def _reset_cli_state() -> Generator[None]:
    """Undo the logging and telemetry setup each CLI invocation performs."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    layerctl_level = logging.getLogger("layerctl").level
    yield
    disable_telemetry()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("layerctl").setLevel(layerctl_level)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def crate_root(tmp_path: Path) -> Path:
    """Three-layer sample crate: ``api -> storage -> domain``."""
    return write_crate(tmp_path / "demo")


@pytest.fixture
def workspace(crate_root: Path, monkeypatch: pytest.MonkeyPatch) -> CrateWorkspace:
    """CrateWorkspace over the sample crate."""
    monkeypatch.delenv("LAYERCTL_LAYERFILE", raising=False)
    return CrateWorkspace(LayerctlSettings.from_cli(crate_root=crate_root))


@pytest.fixture
def _isolated_crate(crate_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to the sample crate so the CLI discovers its Layerfile.

    Use via ``@pytest.mark.usefixtures("_isolated_crate")`` on command test
    classes.
    """
    monkeypatch.delenv("LAYERCTL_LAYERFILE", raising=False)
    monkeypatch.chdir(crate_root)


# ---------------------------------------------------------------------------
# Diagnostics and a fake toolchain
# ---------------------------------------------------------------------------


def diag(
    message: str,
    *,
    file: str | None = "src/api.rs",
    line: int | None = 1,
    code: str | None = None,
    severity: Severity = Severity.ERROR,
    snippet: str = "",
) -> Diagnostic:
    """Build a Diagnostic with unit-relative location defaults."""
    return Diagnostic(
        severity=severity,
        message=message,
        code=code,
        file=file,
        line_start=line,
        line_end=line,
        column=1 if line is not None else None,
        snippet=snippet,
    )


Response = Sequence[Diagnostic] | BaseException | Callable[[Path], list[Diagnostic]]


def layer_of(unit_path: Path) -> str | None:
    """Layer name encoded in a scratch directory name, or None."""
    name = unit_path.name
    if not name.startswith("layerctl-"):
        return None
    return name[len("layerctl-") :].rsplit("-", 1)[0]


class FakeToolchain:
    """In-process stand-in for cargo.

    Answers per layer from *responses*; the baseline (any path that is not a
    scratch unit) gets *baseline*. Records every call and a snapshot of each
    unit's ``lib.rs``.
    """

    def __init__(
        self,
        responses: Mapping[str, Response] | None = None,
        *,
        baseline: Sequence[Diagnostic] = (),
    ) -> None:
        self.responses = dict(responses or {})
        self.baseline = list(baseline)
        self.calls: list[tuple[Path, tuple[str, ...]]] = []
        self.units: dict[str, str] = {}
        self.paths: dict[str, Path] = {}
        self.cancelled = False
        self._lock = threading.Lock()

    def check(self, unit_path: Path, extra_args: Sequence[str] = ()) -> list[Diagnostic]:
        with self._lock:
            self.calls.append((unit_path, tuple(extra_args)))
        layer = layer_of(unit_path)
        if layer is None:
            return list(self.baseline)
        with self._lock:
            self.units[layer] = (unit_path / "src" / "lib.rs").read_text()
            self.paths[layer] = unit_path
        response = self.responses.get(layer, [])
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(unit_path)
        return list(response)

    def cancel(self) -> None:
        self.cancelled = True


def fake_toolchain_factory(fake: FakeToolchain) -> Callable[..., Any]:
    """Replacement for ``CrateWorkspace.toolchain`` returning *fake*."""

    def factory(self: CrateWorkspace, check: Any = None) -> FakeToolchain:
        return fake

    return factory
