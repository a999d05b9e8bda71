# tests/test_conditions.py
# Tests for the cell-to-condition mapping and its grouping file
# RELEVANT FILES: python/lightbasis/conditions.py

from pathlib import Path

import pytest

from lightbasis import ConditionMapping


def test_identity_mapping():
    mapping = ConditionMapping.identity(3)
    assert mapping.groups == [[0], [1], [2]]
    assert [mapping.condition_of(c) for c in range(3)] == [0, 1, 2]
    assert mapping.is_complete(3)


def test_multi_cell_condition():
    mapping = ConditionMapping([[0], [1, 2], [3]])
    assert mapping.num_conditions == 3
    assert mapping.num_cells == 4
    assert mapping.condition_of(2) == 1
    assert mapping.cells_of(1) == [1, 2]
    assert mapping.cell_to_condition(5) == [0, 1, 1, 2, -1]


def test_unmapped_cell_and_incomplete():
    mapping = ConditionMapping([[0], [2]])
    assert mapping.condition_of(1) == -1
    assert not mapping.is_complete(3)


def test_append_invalidates_lookup():
    mapping = ConditionMapping([[0]])
    assert mapping.condition_of(1) == -1
    mapping.append_condition([1])
    assert mapping.condition_of(1) == 1


def test_negative_cell_rejected():
    with pytest.raises(ValueError, match="non-negative"):
        ConditionMapping([[-1]])


def test_save_format_and_load(tmp_path: Path):
    path = tmp_path / "voronoi.txt"
    mapping = ConditionMapping([[0], [1, 2], []])
    mapping.save(path)
    assert path.read_text(encoding="utf-8") == "1 0\n2 1 2\n0"
    assert ConditionMapping.load(path) == mapping


def test_load_missing_returns_none(tmp_path: Path):
    assert ConditionMapping.load(tmp_path / "missing.txt") is None


def test_load_truncated_group(tmp_path: Path):
    path = tmp_path / "voronoi.txt"
    path.write_text("3 0 1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="truncated"):
        ConditionMapping.load(path)
