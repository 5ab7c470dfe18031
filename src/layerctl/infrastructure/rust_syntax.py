"""Module-tree extraction from Rust sources via tree-sitter.

The entry file and every file-backed module are parsed as plain syntax.
No macro expansion happens: module declarations that only exist after
expansion are rejected with :class:`UnsupportedModuleError` instead of
being silently skipped.

External modules follow rustc's lookup rules:

* ``mod foo;`` looks for ``<dir>/foo.rs`` then ``<dir>/foo/mod.rs``.
* Children of ``foo.rs`` resolve in ``<dir>/foo/``; children of ``mod.rs``
  (and of the crate root) resolve next to the file.
* ``#[path = "..."]`` files are treated as ``mod.rs`` files.
* Inline modules push their own name onto the directory.
"""

from __future__ import annotations

import logging
import re
from functools import cache
from pathlib import Path

import tree_sitter_rust
from tree_sitter import Language, Node, Parser

from layerctl.domain.errors import ModuleResolutionError, ParseError, UnsupportedModuleError
from layerctl.domain.modules import ROOT_NAME, Item, Module, ModuleTree

logger = logging.getLogger(__name__)

_ATTRIBUTE_NODES = frozenset({"attribute_item", "line_comment", "block_comment"})
_NAME_FIELDS = ("name", "type", "argument")
_MOD_IN_TOKENS = re.compile(r"\bmod\s+[A-Za-z_][A-Za-z0-9_]*\s*[;{]")
_INNER_DOC = re.compile(r"^(//!|/\*!)")


@cache
def _parser() -> Parser:
    return Parser(Language(tree_sitter_rust.language()))


def _text(node: Node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8")


def _first_error(node: Node) -> Node | None:
    """Depth-first search for the first ERROR or missing node."""
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing or child.type == "ERROR":
            found = _first_error(child)
            if found is not None:
                return found
    return None


def parse_source(path: Path, source: bytes) -> Node:
    """Parse *source* and return the root node, raising on syntax errors."""
    tree = _parser().parse(source)
    root = tree.root_node
    if root.has_error:
        bad = _first_error(root) or root
        line, column = bad.start_point
        snippet = _text(bad, source).splitlines()[0][:60] if bad.end_byte > bad.start_byte else ""
        msg = f"{path}:{line + 1}:{column + 1}: syntax error"
        if snippet:
            msg = f"{msg} near `{snippet}`"
        raise ParseError(msg, file=str(path), line=line + 1, column=column + 1)
    return root


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        msg = f"failed to read {path}: {exc}"
        raise ModuleResolutionError(msg, file=str(path)) from exc


def _item_name(node: Node, source: bytes) -> str | None:
    for field_name in _NAME_FIELDS:
        child = node.child_by_field_name(field_name)
        if child is not None:
            return _text(child, source)
    return None


def _string_value(node: Node, source: bytes) -> str | None:
    """Value of a (raw) string literal node, or None for anything else."""
    raw = _text(node, source)
    if node.type == "string_literal":
        return raw[1:-1].replace("\\\"", "\"").replace("\\\\", "\\")
    if node.type == "raw_string_literal":
        match = re.fullmatch(r'r(#*)"(.*)"\1', raw, flags=re.DOTALL)
        return match.group(2) if match else None
    return None


def _path_attribute(
    attrs: list[Node], source: bytes, qualified: str
) -> tuple[str, tuple[int, int]] | None:
    """Return the ``#[path = "..."]`` value among *attrs* and its literal's byte span."""
    for attr_item in attrs:
        if attr_item.type != "attribute_item":
            continue
        attribute = next((c for c in attr_item.named_children if c.type == "attribute"), None)
        if attribute is None or not attribute.named_children:
            continue
        name = _text(attribute.named_children[0], source)
        if name == "cfg_attr" and re.search(r"\bpath\s*=", _text(attribute, source)):
            msg = f"module `{qualified}` uses a conditional #[cfg_attr(..., path = ...)]"
            raise UnsupportedModuleError(msg, module=qualified)
        if name != "path":
            continue
        value = attribute.child_by_field_name("value")
        resolved = _string_value(value, source) if value is not None else None
        if resolved is None:
            msg = (
                f"module `{qualified}` has a #[path] attribute that is not a plain string "
                "literal; macro-computed module paths are not supported"
            )
            raise UnsupportedModuleError(msg, module=qualified)
        return resolved, (value.start_byte, value.end_byte)
    return None


def _check_macro(node: Node, source: bytes, module: Module, file: Path) -> None:
    """Reject item-level macros that could produce module declarations."""
    invocation = node
    if node.type == "expression_statement" and node.named_children:
        invocation = node.named_children[0]
    if invocation.type != "macro_invocation":
        return
    macro = invocation.child_by_field_name("macro")
    name = _text(macro, source) if macro is not None else ""
    body = _text(invocation, source)
    if name == "include" or _MOD_IN_TOKENS.search(body):
        line = invocation.start_point[0] + 1
        msg = (
            f"{file}:{line}: macro `{name}!` in `{module.qualified_name}` may declare modules; "
            "modules produced by macros are not supported"
        )
        raise UnsupportedModuleError(msg, file=str(file), line=line, macro=name)


class ModuleTreeExtractor:
    """Walks a crate's entry file and builds its :class:`ModuleTree`."""

    def __init__(self, entry_file: Path) -> None:
        self.entry_file = entry_file.resolve()

    def extract(self) -> ModuleTree:
        logger.debug("parsing entry file %s", self.entry_file)
        source = _read(self.entry_file)
        node = parse_source(self.entry_file, source)
        root = Module(
            name=ROOT_NAME,
            source_file=self.entry_file,
            file=self.entry_file,
            directory=self.entry_file.parent,
        )
        tree = ModuleTree(root=root, entry_file=self.entry_file)
        self._collect(
            node,
            source,
            root,
            file=self.entry_file,
            directory=self.entry_file.parent,
            in_inline=False,
            tree=tree,
        )
        logger.debug("found top-level modules: %s", tree.module_names())
        return tree

    def _collect(
        self,
        container: Node,
        source: bytes,
        module: Module,
        *,
        file: Path,
        directory: Path,
        in_inline: bool,
        tree: ModuleTree,
    ) -> None:
        at_root = module.is_root
        pending: list[Node] = []
        for node in container.named_children:
            if node.type in _ATTRIBUTE_NODES:
                if not _INNER_DOC.match(_text(node, source)):
                    pending.append(node)
                continue
            if node.type == "inner_attribute_item":
                if at_root:
                    tree.crate_attributes.append(_text(node, source))
                continue

            start = pending[0].start_byte if pending else node.start_byte
            attrs = pending
            pending = []

            if node.type in ("macro_invocation", "expression_statement"):
                _check_macro(node, source, module, file)

            module.items.append(
                Item(
                    kind=node.type,
                    name=_item_name(node, source),
                    start_byte=node.start_byte,
                    end_byte=node.end_byte,
                    line=node.start_point[0] + 1,
                    text=_text(node, source),
                )
            )

            if at_root and node.type == "extern_crate_declaration":
                tree.extern_crates.append(source[start : node.end_byte].decode("utf-8"))
            elif at_root and node.type == "macro_definition":
                tree.root_macros.append(source[start : node.end_byte].decode("utf-8"))
            elif node.type == "mod_item":
                child = self._module(
                    node,
                    source,
                    attrs,
                    parent=module,
                    start=start,
                    file=file,
                    directory=directory,
                    in_inline=in_inline,
                    tree=tree,
                )
                module.children.append(child)

    def _module(
        self,
        node: Node,
        source: bytes,
        attrs: list[Node],
        *,
        parent: Module,
        start: int,
        file: Path,
        directory: Path,
        in_inline: bool,
        tree: ModuleTree,
    ) -> Module:
        name_node = node.child_by_field_name("name")
        assert name_node is not None
        name = _text(name_node, source)
        path = (*parent.path, name)
        qualified = "::".join((ROOT_NAME, *path))
        visibility = next(
            (_text(c, source) for c in node.children if c.type == "visibility_modifier"), ""
        )
        found = _path_attribute(attrs, source, qualified)
        path_attr, path_attr_span = found if found is not None else (None, None)
        body = node.child_by_field_name("body")

        module = Module(
            name=name,
            path=path,
            inline=body is not None,
            source_file=file,
            declaration=source[start : node.end_byte].decode("utf-8"),
            decl_start=start,
            mod_start=node.start_byte,
            line=(attrs[0] if attrs else node).start_point[0] + 1,
            visibility=visibility,
            path_attr=path_attr,
            path_attr_span=path_attr_span,
        )

        if body is not None:
            child_dir = directory / path_attr if path_attr else directory / name
            module.directory = child_dir
            logger.debug("module %s is inline", qualified)
            self._collect(
                body,
                source,
                module,
                file=file,
                directory=child_dir,
                in_inline=True,
                tree=tree,
            )
            return module

        backing, mod_rs = self._resolve(name, qualified, path_attr, file, directory, in_inline)
        logger.debug("module %s resolved to %s", qualified, backing)
        module.file = backing
        module.directory = backing.parent if mod_rs else backing.parent / backing.stem
        file_source = _read(backing)
        root = parse_source(backing, file_source)
        self._collect(
            root,
            file_source,
            module,
            file=backing,
            directory=module.directory,
            in_inline=False,
            tree=tree,
        )
        return module

    @staticmethod
    def _resolve(
        name: str,
        qualified: str,
        path_attr: str | None,
        file: Path,
        directory: Path,
        in_inline: bool,
    ) -> tuple[Path, bool]:
        """Locate a non-inline module's file. Returns ``(path, is_mod_rs)``."""
        if path_attr is not None:
            base = directory if in_inline else file.parent
            candidate = (base / path_attr).resolve()
            if not candidate.is_file():
                msg = f"cannot find file for module `{qualified}` at #[path] {candidate}"
                raise ModuleResolutionError(msg, module=qualified, tried=[str(candidate)])
            return candidate, True

        flat = directory / f"{name}.rs"
        nested = directory / name / "mod.rs"
        if flat.is_file():
            return flat.resolve(), False
        if nested.is_file():
            return nested.resolve(), True
        msg = f"cannot find file for module `{qualified}`: tried {flat} and {nested}"
        raise ModuleResolutionError(msg, module=qualified, tried=[str(flat), str(nested)])


def extract_module_tree(entry_file: Path) -> ModuleTree:
    """Parse *entry_file* and every file-backed module below it."""
    return ModuleTreeExtractor(entry_file).extract()
