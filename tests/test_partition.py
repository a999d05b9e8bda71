# tests/test_partition.py
# Tests for the nearest-light partition: coverage, correctness, rebuilds, polygons
# RELEVANT FILES: python/lightbasis/partition.py, python/lightbasis/basis.py

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from lightbasis import ConditionMapping, LightingBasis, SpatialPartition, cell_weights, condition_weights


def _distances(points, x, y):
    return np.hypot(points[:, 0] - x, points[:, 1] - y)


class TestCoverage:
    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_counts_sum_to_domain(self, seed):
        rng = np.random.default_rng(seed)
        partition = SpatialPartition(width=96, height=48)
        pts = np.column_stack([rng.integers(0, 96, 12), rng.integers(0, 48, 12)])
        partition.set_lights(pts)
        assert partition.pixel_counts.sum() == 96 * 48
        assert partition.labels.shape == (48, 96)
        assert partition.labels.min() >= 0

    def test_single_light_owns_everything(self):
        partition = SpatialPartition(width=40, height=20)
        partition.add_point_light((5, 5))
        assert partition.pixel_counts.tolist() == [800]
        assert partition.nearest_light(39, 19) == 0

    def test_empty_partition(self):
        partition = SpatialPartition(width=40, height=20)
        assert partition.nearest_light(1, 1) == -1
        assert partition.pixel_counts.size == 0
        assert (partition.labels == -1).all()
        assert partition.cell_polygons() == []


@pytest.mark.slow
def test_two_lights_split_at_bisector():
    partition = SpatialPartition(width=1024, height=512)
    partition.set_lights([(100, 100), (900, 100)])
    labels = partition.labels
    xs = np.arange(1024)
    assert (labels[:, xs < 500] == 0).all()
    assert (labels[:, xs > 500] == 1).all()
    assert partition.pixel_counts.sum() == 1024 * 512
    assert partition.nearest_light(499, 300) == 0
    assert partition.nearest_light(501, 0) == 1


def test_nearest_light_matches_brute_force(rng):
    partition = SpatialPartition(width=64, height=32)
    pts = np.array([[3, 4], [60, 2], [30, 30], [31, 10], [12, 20]])
    partition.set_lights(pts)
    labels = partition.labels
    for _ in range(200):
        x, y = int(rng.integers(0, 64)), int(rng.integers(0, 32))
        d = _distances(pts, x, y)
        owner = partition.nearest_light(x, y)
        assert d[owner] == pytest.approx(d.min())
        assert labels[y, x] == owner


def test_queries_are_stable():
    partition = SpatialPartition(width=64, height=32)
    partition.set_lights([(10, 10), (20, 10)])
    # (15, y) is equidistant; repeated queries must agree
    first = [partition.nearest_light(15, y) for y in range(32)]
    for _ in range(3):
        assert [partition.nearest_light(15, y) for y in range(32)] == first
    assert [int(v) for v in partition.labels[:, 15]] == first


def test_duplicate_positions_go_to_first():
    partition = SpatialPartition(width=32, height=16)
    partition.set_lights([(5, 5), (20, 8), (5, 5)])
    assert partition.nearest_light(4, 4) == 0
    counts = partition.pixel_counts
    assert counts[2] == 0
    assert counts.sum() == 32 * 16


class TestRebuild:
    def test_rebuild_on_add_and_clear(self):
        partition = SpatialPartition(width=32, height=16)
        partition.add_point_light((2, 2))
        assert partition.pixel_counts.tolist() == [512]
        partition.add_point_light((30, 2))
        assert partition.pixel_counts.sum() == 512
        assert len(partition.pixel_counts) == 2
        partition.clear()
        assert partition.num_cells == 0
        assert partition.pixel_counts.size == 0

    def test_rebuild_on_resize(self):
        partition = SpatialPartition(width=32, height=16)
        partition.add_point_light((2, 2))
        partition.set_domain_size(64, 8)
        assert partition.labels.shape == (8, 64)
        assert partition.pixel_counts.sum() == 512

    def test_shrinking_domain_warns_about_outside_lights(self, caplog):
        partition = SpatialPartition(width=64, height=32)
        partition.set_lights([(60, 30), (4, 4)])
        partition.set_domain_size(32, 16)
        assert "1 of 2 point lights lie outside the 32x16 map" in caplog.text
        assert partition.num_cells == 2
        assert partition.pixel_counts.sum() == 32 * 16

    def test_shared_basis_mutation_is_seen(self):
        basis = LightingBasis(32, 16)
        partition = SpatialPartition(basis)
        basis.add_point_light((1, 1))
        assert partition.num_cells == 1
        assert partition.pixel_counts.tolist() == [512]

    def test_out_of_bounds_add_does_not_rebuild(self):
        partition = SpatialPartition(width=32, height=16)
        partition.add_point_light((1, 1))
        partition.labels
        assert not partition.stale
        assert partition.add_point_light((99, 1)) is False
        assert not partition.stale


class TestMapping:
    def test_default_mapping_is_identity(self):
        partition = SpatialPartition(width=32, height=16)
        partition.set_lights([(1, 1), (20, 5)])
        assert partition.mapping.groups == [[0], [1]]

    def test_set_mapping(self):
        partition = SpatialPartition(width=32, height=16)
        partition.set_lights([(1, 1), (20, 5), (30, 15)], ConditionMapping([[0, 2], [1]]))
        assert partition.mapping.condition_of(2) == 0

    def test_incomplete_mapping_warns(self, caplog):
        partition = SpatialPartition(width=32, height=16)
        partition.set_lights([(1, 1), (20, 5)])
        partition.mapping = ConditionMapping([[0]])
        assert "covers 1 cells" in caplog.text

    def test_lights_added_after_mapping_get_own_conditions(self, uniform_map):
        partition = SpatialPartition(width=64, height=32)
        partition.set_lights([(5, 5)], ConditionMapping([[0]]))
        partition.set_lights([(50, 20)])
        partition.add_point_light((30, 2))
        assert partition.mapping.groups == [[0], [1], [2]]
        conditions = condition_weights(uniform_map, partition)
        np.testing.assert_allclose(conditions.sum(axis=0), cell_weights(uniform_map, partition).sum(axis=0))

    def test_installed_mapping_is_copied(self):
        partition = SpatialPartition(width=32, height=16)
        mapping = ConditionMapping([[0]])
        partition.set_lights([(1, 1)], mapping)
        partition.add_point_light((20, 5))
        assert mapping.groups == [[0]]
        assert partition.mapping.groups == [[0], [1]]


class TestPolygons:
    def test_polygons_tile_the_domain(self):
        partition = SpatialPartition(width=64, height=32)
        partition.set_lights([(10, 10), (50, 8), (30, 25), (5, 28)])
        polygons = partition.cell_polygons()
        assert len(polygons) == 4
        area = 0.0
        for poly in polygons:
            assert len(poly) >= 3
            assert poly[:, 0].min() >= -0.5 and poly[:, 0].max() <= 63.5
            assert poly[:, 1].min() >= -0.5 and poly[:, 1].max() <= 31.5
            # shoelace on the convex cell, vertices ordered around the site
            c = poly.mean(axis=0)
            order = np.argsort(np.arctan2(poly[:, 1] - c[1], poly[:, 0] - c[0]))
            p = poly[order]
            area += 0.5 * abs(np.dot(p[:, 0], np.roll(p[:, 1], 1)) - np.dot(p[:, 1], np.roll(p[:, 0], 1)))
        assert area == pytest.approx(64 * 32, rel=1e-6)

    def test_single_light_polygon_is_the_map(self):
        partition = SpatialPartition(width=64, height=32)
        partition.add_point_light((3, 3))
        (poly,) = partition.cell_polygons()
        assert poly.shape == (4, 2)

    def test_centers_follow_light_order(self):
        partition = SpatialPartition(width=64, height=32)
        partition.set_lights([(10, 10), (50, 8)])
        np.testing.assert_allclose(partition.centers(), [[10, 10], [50, 8]])


def test_save_and_load_roundtrip(tmp_path: Path):
    partition = SpatialPartition(width=64, height=32)
    partition.set_lights([(10, 10), (50, 8), (30, 25)], ConditionMapping([[0, 1], [2]]))
    basis_path, mapping_path = tmp_path / "basis.txt", tmp_path / "voronoi.txt"
    partition.save(basis_path, mapping_path)

    restored = SpatialPartition(width=64, height=32)
    assert restored.load(basis_path, mapping_path)
    np.testing.assert_array_equal(restored.basis.point_lights, partition.basis.point_lights)
    assert restored.mapping == partition.mapping
    np.testing.assert_array_equal(restored.labels, partition.labels)


def test_load_with_missing_mapping(tmp_path: Path):
    partition = SpatialPartition(width=64, height=32)
    partition.set_lights([(10, 10)])
    partition.basis.save(tmp_path / "basis.txt")
    restored = SpatialPartition(width=64, height=32)
    assert restored.load(tmp_path / "basis.txt", tmp_path / "missing.txt") is False
    assert restored.num_cells == 1
