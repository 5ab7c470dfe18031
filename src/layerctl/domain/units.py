"""Projected units — the per-layer synthetic crate handed to the toolchain.

A unit is ephemeral: created right before one toolchain invocation and
discarded right after its diagnostics are read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

LIB_RS = "src/lib.rs"
DEPS_DIR = "deps"
DEPS_LIB_RS = f"{DEPS_DIR}/{LIB_RS}"
DEPS_CRATE = "__layerctl_deps"


@dataclass(frozen=True)
class LineRange:
    """Lines of a synthetic ``lib.rs`` that belong to one module.

    Either the module's declaration (with *origin* set) or a root ``use``
    item that imports a dependency on the module's behalf.
    """

    start: int
    end: int
    module: str
    origin: Path | None = None
    origin_line: int = 1
    file: str = LIB_RS

    def __contains__(self, line: int) -> bool:
        return self.start <= line <= self.end


@dataclass
class SpanIndex:
    """Maps diagnostic locations in a unit back to owning top-level modules.

    This is the boundary marker between the layer under test and its
    dependencies: a span is attributed to exactly one included module, or
    to none (crate-root prelude, toolchain-internal files).
    """

    ranges: list[LineRange] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    origins: dict[str, Path] = field(default_factory=dict)
    absolute: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def _lookup(mapping: dict[str, Any], rel: str) -> tuple[str, Any] | None:
        """Exact match first, then the longest directory key (ending in ``/``)."""
        if rel in mapping:
            return rel, mapping[rel]
        best: str | None = None
        for key in mapping:
            if not key.endswith("/") or not rel.startswith(key):
                continue
            if best is None or len(key) > len(best):
                best = key
        return (best, mapping[best]) if best is not None else None

    def _relative(self, file: str, unit_root: Path | None) -> str | None:
        path = Path(file)
        if not path.is_absolute():
            return PurePosixPath(*path.parts).as_posix()
        if unit_root is not None:
            try:
                return PurePosixPath(*path.relative_to(unit_root).parts).as_posix()
            except ValueError:
                pass
            try:
                rel = path.resolve().relative_to(unit_root.resolve())
            except (OSError, ValueError):
                return None
            return PurePosixPath(*rel.parts).as_posix()
        return None

    def _synthetic(self, rel: str) -> bool:
        """True for the generated ``lib.rs`` files, which have line ranges."""
        return rel == LIB_RS or any(rng.file == rel for rng in self.ranges)

    def owner_of(
        self,
        file: str | None,
        line: int | None = None,
        unit_root: Path | None = None,
    ) -> str | None:
        """Return the top-level module owning ``file:line``, or None."""
        if file is None:
            return None
        if Path(file).is_absolute():
            owner = self.absolute.get(str(Path(file).resolve()))
            if owner is not None:
                return owner
        rel = self._relative(file, unit_root)
        if rel is None:
            return None
        if self._synthetic(rel):
            if line is None:
                return None
            for rng in self.ranges:
                if rng.file == rel and line in rng:
                    return rng.module
            return None
        found = self._lookup(self.files, rel)
        return found[1] if found is not None else None

    def original_location(
        self,
        file: str | None,
        line: int | None = None,
        unit_root: Path | None = None,
    ) -> tuple[str | None, int | None]:
        """Translate a unit location into the original crate's file and line."""
        if file is None:
            return None, line
        rel = self._relative(file, unit_root)
        if rel is None:
            return file, line
        if self._synthetic(rel) and line is not None:
            for rng in self.ranges:
                if rng.file != rel or line not in rng:
                    continue
                if rng.origin is None:
                    # Generated import with no counterpart in the crate.
                    return None, None
                return str(rng.origin), rng.origin_line + (line - rng.start)
            return file, line
        found = self._lookup(self.origins, rel)
        if found is not None:
            key, origin = found
            if key.endswith("/"):
                return str(origin / rel[len(key) :]), line
            return str(origin), line
        return file, line


@dataclass
class ProjectedUnit:
    """A synthetic crate containing ``{layer} ∪ visible(layer)``.

    The layer under test and its ``impl`` targets form the unit crate. The
    remaining visible layers (``imports``) form a second crate under
    ``deps/``, with their top-level modules widened to ``pub``. Each one is
    imported at the unit's root by its own ``use`` item, so crate-private
    items stay private across the boundary and an unused ``depends-on``
    shows up as an unused import.

    Attributes:
        layer: The layer under test.
        modules: Included top-level modules, layer under test first.
        lib_rs: Text of the synthetic ``src/lib.rs``.
        manifest: Text of the unit's ``Cargo.toml``.
        copies: ``(original file or directory, unit-relative destination)`` pairs.
        rewrites: Unit-relative files whose text differs from the original
            (written after ``copies``, replacing the copied version).
        lockfile: Original ``Cargo.lock`` to copy next to the manifest.
        spans: Location index for diagnostic attribution.
        imports: Modules compiled in the dependency crate.
        deps_lib_rs: Text of ``deps/src/lib.rs``; empty without imports.
        deps_manifest: Text of ``deps/Cargo.toml``.
    """

    layer: str
    modules: list[str]
    lib_rs: str
    manifest: str = ""
    copies: list[tuple[Path, str]] = field(default_factory=list)
    rewrites: dict[str, str] = field(default_factory=dict)
    lockfile: Path | None = None
    spans: SpanIndex = field(default_factory=SpanIndex)
    imports: list[str] = field(default_factory=list)
    deps_lib_rs: str = ""
    deps_manifest: str = ""

    @property
    def dependencies(self) -> list[str]:
        return self.modules[1:]
