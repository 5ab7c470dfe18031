"""Module tree types produced by the extractor.

A crate's entry file is the root :class:`Module`. Its direct children are the
top-level modules that layers bind to; nested modules are owned by their
top-level module and move with it during projection.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

ROOT_NAME = "crate"


@dataclass(frozen=True)
class Item:
    """One syntactic item inside a module, kept verbatim."""

    kind: str
    name: str | None
    start_byte: int
    end_byte: int
    line: int
    text: str


@dataclass
class Module:
    """A named node of the module tree.

    Attributes:
        name: Identifier of the module (``crate`` for the root).
        path: Names from the root down to this module (empty for the root).
        items: Syntactic items of the module body, in source order.
        inline: True when the body lives in the declaring file (``mod x { ... }``).
        source_file: File that contains the declaration (or the body, for the root).
        file: Backing file of a non-inline module, or the entry file for the root.
        directory: Directory that nested non-inline declarations resolve against.
        declaration: Verbatim text of the declaration, outer attributes included.
        decl_start: Byte offset of ``declaration`` inside ``source_file``.
        mod_start: Byte offset of the ``mod`` item (visibility included) inside ``source_file``.
        line: 1-based line where ``declaration`` starts.
        visibility: Original visibility qualifier (``""`` when private).
        path_attr: Value of an explicit ``#[path = "..."]`` attribute, if any.
        path_attr_span: Byte range of that attribute's string literal in ``source_file``.
        children: Nested modules in declaration order.
    """

    name: str
    path: tuple[str, ...] = ()
    items: list[Item] = field(default_factory=list)
    inline: bool = False
    source_file: Path | None = None
    file: Path | None = None
    directory: Path | None = None
    declaration: str = ""
    decl_start: int = 0
    mod_start: int = 0
    line: int = 1
    visibility: str = ""
    path_attr: str | None = None
    path_attr_span: tuple[int, int] | None = None
    children: list[Module] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return "::".join((ROOT_NAME, *self.path))

    @property
    def is_root(self) -> bool:
        return not self.path

    def child(self, name: str) -> Module | None:
        for child in self.children:
            if child.name == name:
                return child
        return None

    def walk(self) -> Iterator[Module]:
        """Yield this module and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def files(self) -> list[Path]:
        """Backing files of this module and every non-inline descendant."""
        return [m.file for m in self.walk() if m.file is not None and not m.inline]


@dataclass
class ModuleTree:
    """The parsed module tree of one crate's library target.

    Besides the root module, keeps the crate-level pieces every projected
    unit must repeat: inner attributes, ``extern crate`` items, and root
    ``macro_rules!`` definitions (textually scoped into every module).
    """

    root: Module
    entry_file: Path
    crate_attributes: list[str] = field(default_factory=list)
    extern_crates: list[str] = field(default_factory=list)
    root_macros: list[str] = field(default_factory=list)

    def module_names(self) -> list[str]:
        """Names of the top-level modules, in declaration order."""
        return [m.name for m in self.root.children]

    def get(self, name: str) -> Module | None:
        return self.root.child(name)
