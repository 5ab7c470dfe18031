"""Cargo manifest reading and unit manifest rendering.

The crate's ``Cargo.toml`` is read once. Everything a projected unit needs
to build standalone is resolved up front: relative ``path`` dependencies
become absolute, ``workspace = true`` dependencies are inlined from the
enclosing workspace, and the lockfile is located so dependency versions
stay pinned.
"""

from __future__ import annotations

import copy
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from layerctl.domain.errors import ManifestError
from layerctl.domain.units import DEPS_CRATE, DEPS_DIR

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "Cargo.toml"
LOCKFILE_FILENAME = "Cargo.lock"
DEFAULT_EDITION = "2021"
DEFAULT_LIB_PATH = "src/lib.rs"
_DEPENDENCY_TABLES = ("dependencies", "build-dependencies")


@dataclass
class CrateManifest:
    """Resolved view of one package's ``Cargo.toml``.

    Attributes:
        path: Absolute path of the manifest.
        package_name: ``package.name``.
        edition: ``package.edition`` (workspace-inherited values resolved).
        lib_path: Absolute path of the library entry file.
        dependencies: ``[dependencies]`` with paths made absolute.
        build_dependencies: ``[build-dependencies]`` with paths made absolute.
        target: ``[target.*]`` tables with paths made absolute.
        features: ``[features]`` copied verbatim.
        lockfile: ``Cargo.lock`` of the package or its workspace, if any.
        workspace_root: Directory of the enclosing workspace manifest, if any.
    """

    path: Path
    package_name: str
    edition: str = DEFAULT_EDITION
    lib_path: Path = field(default_factory=Path)
    dependencies: dict[str, Any] = field(default_factory=dict)
    build_dependencies: dict[str, Any] = field(default_factory=dict)
    target: dict[str, Any] = field(default_factory=dict)
    features: dict[str, Any] = field(default_factory=dict)
    lockfile: Path | None = None
    workspace_root: Path | None = None

    @property
    def root(self) -> Path:
        return self.path.parent


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"failed to read {path}: {exc}"
        raise ManifestError(msg, path=str(path)) from exc
    except tomllib.TOMLDecodeError as exc:
        msg = f"invalid TOML in {path}: {exc}"
        raise ManifestError(msg, path=str(path)) from exc


def find_workspace(crate_dir: Path) -> tuple[Path, dict[str, Any]] | None:
    """Walk up from *crate_dir* to the first manifest with a ``[workspace]`` table.

    The crate's own manifest counts. Unreadable manifests on the way up
    are skipped with a warning rather than failing the run.
    """
    current = crate_dir.resolve()
    while True:
        candidate = current / MANIFEST_FILENAME
        if candidate.is_file():
            try:
                data = tomllib.loads(candidate.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError) as exc:
                logger.warning("skipping unreadable manifest %s: %s", candidate, exc)
            else:
                workspace = data.get("workspace")
                if isinstance(workspace, dict):
                    return current, workspace
        if current.parent == current:
            return None
        current = current.parent


def _absolute(path_value: str, base: Path) -> str:
    return (base / path_value).resolve().as_posix()


def _resolve_table(
    table: dict[str, Any],
    base: Path,
    workspace_deps: dict[str, Any],
) -> dict[str, Any]:
    """Make ``path`` entries absolute and inline ``workspace = true`` entries."""
    resolved: dict[str, Any] = {}
    for name, dep in table.items():
        if not isinstance(dep, dict):
            resolved[name] = dep
            continue
        dep = dict(dep)
        if dep.pop("workspace", False) is True:
            inherited = workspace_deps.get(name)
            if inherited is None:
                logger.warning(
                    "dependency %s inherits from a workspace that does not define it", name
                )
                resolved[name] = dep
                continue
            merged = {"version": inherited} if isinstance(inherited, str) else dict(inherited)
            features = [*merged.get("features", []), *dep.pop("features", [])]
            merged.update(dep)
            if features:
                merged["features"] = list(dict.fromkeys(features))
            dep = merged
        elif isinstance(dep.get("path"), str):
            dep["path"] = _absolute(dep["path"], base)
        resolved[name] = dep
    return resolved


def read_manifest(manifest_path: Path) -> CrateManifest:
    """Read and resolve a package manifest.

    Raises:
        ManifestError: the manifest is missing, malformed, has no
            ``package.name``, or is a virtual workspace manifest.
    """
    path = manifest_path.resolve()
    if not path.is_file():
        msg = f"could not find {MANIFEST_FILENAME} at {path}"
        raise ManifestError(msg, path=str(path))
    logger.debug("reading manifest %s", path)
    data = _load_toml(path)
    base = path.parent

    package = data.get("package")
    if not isinstance(package, dict):
        msg = f"{path} has no [package] table (virtual workspace manifests are not supported)"
        raise ManifestError(msg, path=str(path))
    name = package.get("name")
    if not isinstance(name, str):
        msg = f"{path} is missing package.name"
        raise ManifestError(msg, path=str(path))

    workspace = find_workspace(base)
    workspace_root, workspace_table = workspace if workspace else (None, {})
    workspace_deps: dict[str, Any] = {}
    if workspace_root is not None:
        raw = workspace_table.get("dependencies", {})
        workspace_deps = _resolve_table(raw, workspace_root, {}) if isinstance(raw, dict) else {}

    edition = package.get("edition", DEFAULT_EDITION)
    if isinstance(edition, dict) and edition.get("workspace") is True:
        edition = workspace_table.get("package", {}).get("edition", DEFAULT_EDITION)

    lib = data.get("lib", {})
    lib_rel = lib.get("path", DEFAULT_LIB_PATH) if isinstance(lib, dict) else DEFAULT_LIB_PATH
    lib_path = (base / lib_rel).resolve()
    if not lib_path.is_file():
        msg = f"library entry file {lib_path} does not exist (only library targets are checked)"
        raise ManifestError(msg, path=str(path), lib=str(lib_path))

    tables = {
        key: _resolve_table(data.get(key, {}), base, workspace_deps) for key in _DEPENDENCY_TABLES
    }
    target: dict[str, Any] = {}
    for cfg, section in data.get("target", {}).items():
        if not isinstance(section, dict):
            continue
        target[cfg] = {
            key: _resolve_table(section[key], base, workspace_deps)
            for key in _DEPENDENCY_TABLES
            if isinstance(section.get(key), dict)
        }

    lockfile = base / LOCKFILE_FILENAME
    if not lockfile.is_file() and workspace_root is not None:
        lockfile = workspace_root / LOCKFILE_FILENAME

    return CrateManifest(
        path=path,
        package_name=name,
        edition=str(edition),
        lib_path=lib_path,
        dependencies=tables["dependencies"],
        build_dependencies=tables["build-dependencies"],
        target=target,
        features=copy.deepcopy(data.get("features", {})),
        lockfile=lockfile if lockfile.is_file() else None,
        workspace_root=workspace_root,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def unit_package_name(package_name: str, layer: str) -> str:
    return f"{package_name}-layer-{layer}".replace("_", "-")


def deps_package_name(package_name: str, layer: str) -> str:
    return f"{unit_package_name(package_name, layer)}-deps"


def _package_doc(manifest: CrateManifest, name: str) -> dict[str, Any]:
    """Package, lib and dependency tables shared by both unit crates."""
    doc: dict[str, Any] = {
        "package": {
            "name": name,
            "version": "0.0.0",
            "edition": manifest.edition,
            "publish": False,
        },
        "lib": {"path": DEFAULT_LIB_PATH},
    }
    if manifest.dependencies:
        doc["dependencies"] = copy.deepcopy(manifest.dependencies)
    if manifest.build_dependencies:
        doc["build-dependencies"] = copy.deepcopy(manifest.build_dependencies)
    if manifest.target:
        doc["target"] = copy.deepcopy(manifest.target)
    if manifest.features:
        doc["features"] = copy.deepcopy(manifest.features)
    return doc


def render_unit_manifest(manifest: CrateManifest, layer: str, *, with_deps: bool = False) -> str:
    """Render the ``Cargo.toml`` of *layer*'s projected unit.

    With *with_deps* the unit depends on the crate under ``deps/`` (renamed
    to ``__layerctl_deps``), makes it a workspace member, and forwards every
    feature to it so ``--features`` and ``--no-default-features`` apply to
    both crates. Otherwise the empty ``[workspace]`` table only keeps cargo
    from attaching the unit to whatever workspace encloses the scratch
    directory.
    """
    doc = _package_doc(manifest, unit_package_name(manifest.package_name, layer))
    if with_deps:
        doc.setdefault("dependencies", {})[DEPS_CRATE] = {
            "path": DEPS_DIR,
            "package": deps_package_name(manifest.package_name, layer),
            "default-features": False,
        }
        for name, enables in doc.get("features", {}).items():
            if isinstance(enables, list):
                enables.append(f"{DEPS_CRATE}/{name}")
        doc["workspace"] = {"members": [DEPS_DIR]}
    else:
        doc["workspace"] = {}
    return tomli_w.dumps(doc)


def render_deps_manifest(manifest: CrateManifest, layer: str) -> str:
    """Render ``deps/Cargo.toml``: the crate's own dependencies and features."""
    return tomli_w.dumps(_package_doc(manifest, deps_package_name(manifest.package_name, layer)))
