"""Unit synthesis — project one layer and its visible set into standalone crates.

A unit is two crates in one cargo workspace. The unit crate's
``src/lib.rs`` holds the layer under test together with its ``impl``
targets. The rest of ``visible(layer)`` is compiled as a separate crate
under ``deps/`` and reaches the unit crate through one root ``use`` item
per module::

    pub mod api;
    extern crate __layerctl_deps;
    use ::__layerctl_deps::storage;

Both crates repeat the crate-level prelude (inner attributes, ``extern
crate`` items, root ``macro_rules!``). Everything else at the crate root is
dropped, so any reference to an excluded module fails to resolve, and a
``pub(crate)`` item of a dependency is private to the layer under test.
The ``use`` item of a direct ``depends-on`` target carries no ``allow``, so
an unused dependency is reported as an unused import on that line.

Module bodies are never re-printed from a syntax tree: declarations are
sliced from the original bytes and patched in place, which keeps line
numbers aligned with the original files.

* Inline modules are copied verbatim; only the visibility is widened to
  ``pub`` and ``#[path]`` literals of nested declarations are made absolute.
* Convention-resolved files (``foo.rs`` / ``foo/mod.rs``) and their module
  directories are copied into the owning crate at the same place under
  ``src/``.
* ``#[path]`` modules point at the original files through an absolute path.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from layerctl.domain.errors import ConfigError, LayerctlError, SynthesisError
from layerctl.domain.units import (
    DEPS_CRATE,
    DEPS_LIB_RS,
    LIB_RS,
    LineRange,
    ProjectedUnit,
    SpanIndex,
)
from layerctl.infrastructure.manifest import render_deps_manifest, render_unit_manifest
from layerctl.services.base import BaseService
from layerctl.services.result import ServiceResult
from layerctl.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from layerctl.domain.layers import LayerGraph
    from layerctl.domain.modules import Module, ModuleTree
    from layerctl.infrastructure.manifest import CrateManifest

logger = logging.getLogger(__name__)

LAYER_MARKER = "// layer under test"
IMPL_MARKER = "// impl targets"
DEPENDENCY_MARKER = "// visible dependencies"
ALLOW_UNUSED = "#[allow(unused_imports)]"
_DOC_ATTRIBUTE = re.compile(r"^#!\[\s*doc\b")


def _rust_string(value: str) -> str:
    """Quote *value* as a Rust string literal."""
    return json.dumps(value, ensure_ascii=False)


def _patch(source: bytes, edits: list[tuple[int, int, bytes]]) -> bytes:
    """Apply non-overlapping ``(start, end, replacement)`` byte edits."""
    out = source
    for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
        out = out[:start] + replacement + out[end:]
    return out


def _path_edits(
    modules: list[Module], file: Path, offset: int = 0
) -> list[tuple[int, int, bytes]]:
    """Absolute ``#[path]`` literals for non-inline *modules* declared in *file*."""
    edits: list[tuple[int, int, bytes]] = []
    for module in modules:
        if module.inline or module.source_file != file or module.path_attr_span is None:
            continue
        assert module.file is not None
        start, end = module.path_attr_span
        literal = _rust_string(module.file.as_posix()).encode("utf-8")
        edits.append((start - offset, end - offset, literal))
    return edits


class _UnitBuilder:
    """Accumulates both ``lib.rs`` texts, the copies and the span index of one unit."""

    def __init__(self, entry_dir: Path) -> None:
        self.entry_dir = entry_dir
        self.texts: dict[str, list[str]] = {LIB_RS: []}
        self.spans = SpanIndex()
        self.copies: list[tuple[Path, str]] = []
        self.rewrites: dict[str, str] = {}
        self._dirs: set[str] = set()

    def append(self, block: str, lib: str = LIB_RS) -> tuple[int, int]:
        lines = self.texts.setdefault(lib, [])
        start = len(lines) + 1
        lines.extend(block.splitlines() or [""])
        return start, len(lines)

    def destination(self, path: Path, owner: str, lib: str = LIB_RS) -> str:
        try:
            rel = path.relative_to(self.entry_dir)
        except ValueError:
            msg = (
                f"module file {path} of layer `{owner}` lies outside {self.entry_dir}; "
                "give its declaration an explicit #[path] attribute"
            )
            raise SynthesisError(msg, layer=owner, file=str(path)) from None
        dest = (PurePosixPath(lib).parent / PurePosixPath(*rel.parts)).as_posix()
        if dest == lib:
            msg = f"module file {path} of layer `{owner}` would replace the unit's {lib}"
            raise SynthesisError(msg, layer=owner, file=str(path))
        return dest

    def _covered(self, dest: str) -> bool:
        return any(dest.startswith(prefix) for prefix in self._dirs)

    def copy_file(self, path: Path, owner: str, lib: str = LIB_RS) -> str:
        dest = self.destination(path, owner, lib)
        if not self._covered(dest):
            self.copies.append((path, dest))
        self.spans.files[dest] = owner
        self.spans.origins[dest] = path
        return dest

    def copy_dir(self, path: Path, owner: str, lib: str = LIB_RS) -> None:
        dest = f"{self.destination(path, owner, lib)}/"
        if self._covered(dest):
            return
        self._dirs.add(dest)
        self.copies.append((path, dest.rstrip("/")))
        self.spans.files[dest] = owner
        self.spans.origins[dest] = path

    def text(self, lib: str = LIB_RS) -> str:
        lines = self.texts.get(lib)
        if not lines:
            return ""
        return "\n".join(lines) + "\n"


class UnitSynthesizer:
    """Projects layers of one crate into standalone units.

    Args:
        tree: The crate's parsed module tree.
        manifest: The crate's resolved manifest; without it the unit has no
            ``Cargo.toml`` text (enough to inspect ``lib.rs``).
    """

    def __init__(self, tree: ModuleTree, manifest: CrateManifest | None = None) -> None:
        self.tree = tree
        self.manifest = manifest

    def _module(self, name: str) -> Module:
        module = self.tree.get(name)
        if module is None:
            msg = f"layer `{name}` has no top-level module in {self.tree.entry_file}"
            raise SynthesisError(msg, layer=name)
        return module

    def project(self, layer: str, graph: LayerGraph) -> ProjectedUnit:
        """Build the unit for *layer*: its own module plus ``visible(layer)``.

        Raises:
            ConfigError: *layer* is not a declared layer.
            SynthesisError: a module cannot be placed in the unit.
        """
        if layer not in graph:
            msg = f"unknown layer `{layer}`"
            raise ConfigError(msg, layer=layer)
        members = [self._module(name) for name in graph.unit_members(layer)]
        imports = [self._module(name) for name in graph.unit_imports(layer)]

        builder = _UnitBuilder(self.tree.entry_file.parent)
        builder.append(f"// Synthesized by layerctl for layer `{layer}`.")
        self._prelude(builder, LIB_RS)

        builder.append("")
        builder.append(LAYER_MARKER)
        self._emit(builder, members[0])
        if len(members) > 1:
            builder.append("")
            builder.append(IMPL_MARKER)
            for module in members[1:]:
                self._emit(builder, module)

        if imports:
            self._import(builder, layer, imports, graph.direct_deps(layer))

        names = graph.unit_layers(layer)
        logger.debug(
            "unit for %s includes %s (imported: %s)", layer, names, [m.name for m in imports]
        )
        manifest = self.manifest
        return ProjectedUnit(
            layer=layer,
            modules=names,
            lib_rs=builder.text(),
            manifest=(
                render_unit_manifest(manifest, layer, with_deps=bool(imports)) if manifest else ""
            ),
            copies=builder.copies,
            rewrites=builder.rewrites,
            lockfile=manifest.lockfile if manifest else None,
            spans=builder.spans,
            imports=[module.name for module in imports],
            deps_lib_rs=builder.text(DEPS_LIB_RS),
            deps_manifest=render_deps_manifest(manifest, layer) if manifest and imports else "",
        )

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _prelude(self, builder: _UnitBuilder, lib: str, extra: tuple[str, ...] = ()) -> None:
        """Crate attributes minus docs, *extra* attributes, extern crates, root macros."""
        for attribute in self.tree.crate_attributes:
            if _DOC_ATTRIBUTE.match(attribute):
                continue
            builder.append(attribute, lib)
        for attribute in extra:
            builder.append(attribute, lib)
        for item in (*self.tree.extern_crates, *self.tree.root_macros):
            builder.append(item, lib)

    def _import(
        self,
        builder: _UnitBuilder,
        layer: str,
        imports: list[Module],
        direct: frozenset[str],
    ) -> None:
        """Emit the dependency crate and one root ``use`` per imported module.

        Only the ``use`` of a direct ``depends-on`` target may be reported as
        unused; the rest are allowed, since reaching a layer through a
        transitive edge is optional.
        """
        builder.append("")
        builder.append(DEPENDENCY_MARKER)
        builder.append(f"extern crate {DEPS_CRATE};")
        for module in imports:
            item = f"use ::{DEPS_CRATE}::{module.name};"
            if module.name not in direct:
                item = f"{ALLOW_UNUSED}\n{item}"
            start, end = builder.append(item)
            builder.spans.ranges.append(LineRange(start=start, end=end, module=layer))
        # Exported macros live at the dependency crate's root.
        builder.append(f"{ALLOW_UNUSED}\nuse ::{DEPS_CRATE}::*;")

        header = f"// Dependencies of layer `{layer}`, synthesized by layerctl."
        builder.append(header, DEPS_LIB_RS)
        self._prelude(builder, DEPS_LIB_RS, extra=("#![allow(unused_imports)]",))
        builder.append("", DEPS_LIB_RS)
        for module in imports:
            self._emit(builder, module, DEPS_LIB_RS)

    def _emit(self, builder: _UnitBuilder, module: Module, lib: str = LIB_RS) -> None:
        """Declare top-level *module* in *lib* and place its files."""
        assert module.source_file is not None
        subtree = list(module.walk())
        raw = module.declaration.encode("utf-8")
        edits = _path_edits(subtree, module.source_file, offset=module.decl_start)
        vis_at = module.mod_start - module.decl_start
        if module.visibility != "pub":
            old = len(module.visibility.encode("utf-8"))
            replacement = b"pub" if old else b"pub "
            edits.append((vis_at, vis_at + old, replacement))
        text = _patch(raw, edits).decode("utf-8")

        start, end = builder.append(text, lib)
        builder.spans.ranges.append(
            LineRange(
                start=start,
                end=end,
                module=module.name,
                origin=module.source_file,
                origin_line=module.line,
                file=lib,
            )
        )
        with trace_span(f"place:{module.name}"):
            self._place(builder, module, owner=module.name, lib=lib)

    def _place(self, builder: _UnitBuilder, module: Module, *, owner: str, lib: str) -> None:
        """Copy convention-resolved files of *module*'s subtree; index ``#[path]`` files.

        A ``#[path]`` module is read from its original location, so its own
        subtree resolves there too and nothing below it is copied.
        """
        if not module.inline:
            assert module.file is not None
            if module.path_attr is not None:
                for path in module.files():
                    builder.spans.absolute[str(path)] = owner
                return
            dest = builder.copy_file(module.file, owner, lib)
            self._rewrite(builder, module, dest)
            if module.directory is not None and module.directory.is_dir():
                builder.copy_dir(module.directory, owner, lib)
        for child in module.children:
            self._place(builder, child, owner=owner, lib=lib)

    def _rewrite(self, builder: _UnitBuilder, module: Module, dest: str) -> None:
        """Patch ``#[path]`` literals inside a copied file, if it has any."""
        assert module.file is not None
        edits = _path_edits(list(module.walk())[1:], module.file)
        if not edits:
            return
        source = module.file.read_bytes()
        builder.rewrites[dest] = _patch(source, edits).decode("utf-8")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class UnitService(BaseService):
    """Shows what a layer's projected unit looks like, without building it."""

    @traced
    def unit(self, layer: str) -> ServiceResult:
        op = "unit"
        try:
            workspace = self._workspace
            synthesizer = UnitSynthesizer(workspace.tree, workspace.manifest)
            unit = synthesizer.project(layer, workspace.graph)
        except LayerctlError as exc:
            return ServiceResult.failure(op, exc)

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "layer": unit.layer,
                "modules": unit.modules,
                "dependencies": unit.dependencies,
                "imports": unit.imports,
                "lib_rs": unit.lib_rs,
                "deps_lib_rs": unit.deps_lib_rs,
                "manifest": unit.manifest,
                "files": sorted({dest for _, dest in unit.copies} | set(unit.rewrites)),
            },
            warnings=self._warnings(),
        )
