"""Scratch directories for projected units.

Each unit gets a private directory created with :func:`tempfile.mkdtemp`,
so concurrent checks never share a working tree. The caller owns cleanup
through :func:`remove_scratch_dir` (or keeps the directory for debugging).
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from layerctl.domain.errors import SynthesisError
from layerctl.domain.units import DEPS_DIR, DEPS_LIB_RS, LIB_RS, ProjectedUnit
from layerctl.infrastructure.manifest import LOCKFILE_FILENAME, MANIFEST_FILENAME

logger = logging.getLogger(__name__)


def create_scratch_dir(layer: str, root: Path | None = None) -> Path:
    """Create an empty private directory for *layer*'s unit.

    Raises:
        SynthesisError: *root* or the directory inside it could not be created.
    """
    try:
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"layerctl-{layer}-", dir=root))
    except OSError as exc:
        msg = f"cannot create a scratch directory for layer `{layer}` in {root}: {exc}"
        raise SynthesisError(msg, layer=layer, directory=str(root)) from exc


def remove_scratch_dir(path: Path) -> None:
    """Delete a scratch directory; failures are logged, not raised."""
    shutil.rmtree(path, ignore_errors=True)
    if path.exists():
        logger.warning("could not remove scratch directory %s", path)


def materialize(unit: ProjectedUnit, directory: Path) -> Path:
    """Write *unit* into *directory* and return the directory.

    Layout: ``Cargo.toml``, ``Cargo.lock`` (when the crate has one),
    ``src/lib.rs``, the dependency crate under ``deps/`` (when the layer
    has imported dependencies) and every copied module file or directory
    at its unit-relative destination.

    Raises:
        SynthesisError: a file could not be written or copied.
    """
    try:
        lib_rs = directory / LIB_RS
        lib_rs.parent.mkdir(parents=True, exist_ok=True)
        lib_rs.write_text(unit.lib_rs, encoding="utf-8")
        (directory / MANIFEST_FILENAME).write_text(unit.manifest, encoding="utf-8")
        if unit.lockfile is not None:
            shutil.copy2(unit.lockfile, directory / LOCKFILE_FILENAME)
        if unit.deps_lib_rs:
            deps_lib_rs = directory / DEPS_LIB_RS
            deps_lib_rs.parent.mkdir(parents=True, exist_ok=True)
            deps_lib_rs.write_text(unit.deps_lib_rs, encoding="utf-8")
            (directory / DEPS_DIR / MANIFEST_FILENAME).write_text(
                unit.deps_manifest, encoding="utf-8"
            )
        for source, destination in unit.copies:
            target = directory / destination
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target)
        for destination, text in unit.rewrites.items():
            target = directory / destination
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
    except OSError as exc:
        msg = f"failed to materialize unit for layer `{unit.layer}` in {directory}: {exc}"
        raise SynthesisError(msg, layer=unit.layer, directory=str(directory)) from exc
    logger.debug("materialized unit for %s in %s", unit.layer, directory)
    return directory
