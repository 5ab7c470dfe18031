"""Tests for SpanIndex — mapping unit locations back to modules and files."""

from __future__ import annotations

from pathlib import Path

import pytest

from layerctl.domain.units import DEPS_LIB_RS, LIB_RS, LineRange, ProjectedUnit, SpanIndex


@pytest.fixture
def spans(tmp_path: Path) -> SpanIndex:
    crate = tmp_path / "crate"
    return SpanIndex(
        ranges=[
            LineRange(start=4, end=6, module="top", origin=crate / "src/lib.rs", origin_line=10),
            LineRange(start=9, end=9, module="bottom", origin=crate / "src/lib.rs", origin_line=2),
        ],
        files={
            "src/top.rs": "top",
            "src/bottom.rs": "bottom",
            "src/bottom/": "bottom",
        },
        origins={
            "src/top.rs": crate / "src/top.rs",
            "src/bottom.rs": crate / "src/bottom.rs",
            "src/bottom/": crate / "src/bottom",
        },
        absolute={str((tmp_path / "shared" / "gen.rs").resolve()): "top"},
    )


class TestOwnerOf:
    def test_lib_rs_lines(self, spans: SpanIndex) -> None:
        assert spans.owner_of(LIB_RS, 4) == "top"
        assert spans.owner_of(LIB_RS, 6) == "top"
        assert spans.owner_of(LIB_RS, 9) == "bottom"

    def test_lib_rs_prelude_has_no_owner(self, spans: SpanIndex) -> None:
        assert spans.owner_of(LIB_RS, 1) is None
        assert spans.owner_of(LIB_RS, None) is None

    def test_copied_file(self, spans: SpanIndex) -> None:
        assert spans.owner_of("src/top.rs", 3) == "top"

    def test_file_under_copied_directory(self, spans: SpanIndex) -> None:
        assert spans.owner_of("src/bottom/deep/mod.rs", 1) == "bottom"

    def test_absolute_path_module(self, spans: SpanIndex, tmp_path: Path) -> None:
        assert spans.owner_of(str(tmp_path / "shared" / "gen.rs"), 1) == "top"

    def test_absolute_path_inside_unit(self, spans: SpanIndex, tmp_path: Path) -> None:
        unit = tmp_path / "unit"
        assert spans.owner_of(str(unit / "src" / "top.rs"), 1, unit) == "top"

    def test_unknown_file(self, spans: SpanIndex) -> None:
        assert spans.owner_of("src/other.rs", 1) is None
        assert spans.owner_of(None) is None

    def test_registry_file_outside_unit(self, spans: SpanIndex, tmp_path: Path) -> None:
        registry = "/home/user/.cargo/registry/src/serde/lib.rs"
        assert spans.owner_of(registry, 1, tmp_path / "unit") is None


class TestOriginalLocation:
    def test_lib_rs_maps_to_declaration(self, spans: SpanIndex, tmp_path: Path) -> None:
        file, line = spans.original_location(LIB_RS, 5)
        assert file == str(tmp_path / "crate" / "src/lib.rs")
        assert line == 11

    def test_copied_file_keeps_line(self, spans: SpanIndex, tmp_path: Path) -> None:
        file, line = spans.original_location("src/top.rs", 7)
        assert file == str(tmp_path / "crate" / "src/top.rs")
        assert line == 7

    def test_directory_prefix(self, spans: SpanIndex, tmp_path: Path) -> None:
        file, line = spans.original_location("src/bottom/deep/mod.rs", 3)
        assert file == str(tmp_path / "crate" / "src/bottom" / "deep/mod.rs")
        assert line == 3

    def test_exact_file_beats_directory(self, spans: SpanIndex, tmp_path: Path) -> None:
        file, _ = spans.original_location("src/bottom.rs", 1)
        assert file == str(tmp_path / "crate" / "src/bottom.rs")

    def test_unmapped_passthrough(self, spans: SpanIndex) -> None:
        assert spans.original_location("src/other.rs", 2) == ("src/other.rs", 2)
        assert spans.original_location(None, 2) == (None, 2)


def test_line_range_contains() -> None:
    rng = LineRange(start=3, end=5, module="m")
    assert 3 in rng
    assert 5 in rng
    assert 6 not in rng


def test_projected_unit_dependencies() -> None:
    unit = ProjectedUnit(layer="a", modules=["a", "b", "c"], lib_rs="")
    assert unit.dependencies == ["b", "c"]


class TestDependencyCrate:
    @pytest.fixture
    def split(self, tmp_path: Path) -> SpanIndex:
        crate = tmp_path / "crate"
        return SpanIndex(
            ranges=[
                LineRange(start=4, end=4, module="top", origin=crate / "src/lib.rs", origin_line=3),
                LineRange(start=8, end=9, module="top"),
                LineRange(
                    start=4,
                    end=4,
                    module="bottom",
                    origin=crate / "src/lib.rs",
                    origin_line=5,
                    file=DEPS_LIB_RS,
                ),
            ],
            files={"deps/src/bottom.rs": "bottom"},
            origins={"deps/src/bottom.rs": crate / "src/bottom.rs"},
        )

    def test_each_lib_rs_has_its_own_lines(self, split: SpanIndex) -> None:
        assert split.owner_of(LIB_RS, 4) == "top"
        assert split.owner_of(DEPS_LIB_RS, 4) == "bottom"
        assert split.owner_of(DEPS_LIB_RS, 8) is None

    def test_generated_import_has_no_original(self, split: SpanIndex) -> None:
        assert split.owner_of(LIB_RS, 9) == "top"
        assert split.original_location(LIB_RS, 9) == (None, None)

    def test_dependency_declaration_maps_to_crate_root(
        self, split: SpanIndex, tmp_path: Path
    ) -> None:
        root = tmp_path / "crate" / "src" / "lib.rs"
        assert split.original_location(DEPS_LIB_RS, 4) == (str(root), 5)
        assert split.original_location("deps/src/bottom.rs", 7) == (
            str(tmp_path / "crate" / "src" / "bottom.rs"),
            7,
        )

    def test_absolute_path_inside_dependency_crate(
        self, split: SpanIndex, tmp_path: Path
    ) -> None:
        unit_root = tmp_path / "unit"
        file = str(unit_root / "deps" / "src" / "bottom.rs")
        assert split.owner_of(file, 1, unit_root) == "bottom"
