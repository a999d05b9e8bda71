# tests/test_identify.py
# Tests for automatic light identification strategies
# RELEVANT FILES: python/lightbasis/identify.py, python/lightbasis/config.py

from __future__ import annotations

import numpy as np
import pytest

from lightbasis import (
    ConditionMapping,
    IdentificationParams,
    IdentificationResult,
    SpatialPartition,
    apply_identification,
    distribution_2d,
    identify_lights,
    inverse_cdf_samples,
    median_energy_point,
)
from lightbasis.identify import cluster_samples


def _blob(h, w, cx, cy, radius=2, value=50.0):
    img = np.zeros((h, w, 3), dtype=np.float64)
    img[max(cy - radius, 0):cy + radius + 1, max(cx - radius, 0):cx + radius + 1] = value
    return img


class TestMedianEnergy:
    def test_single_pixel(self):
        img = np.zeros((16, 32, 3))
        img[5, 7] = 1.0
        assert median_energy_point(img) == (7, 5)

    def test_row_major_first_pixel_past_half(self):
        img = np.zeros((4, 4, 3))
        img[0, 1] = 1.0
        img[2, 3] = 1.0
        img[3, 0] = 1.0
        # cumulative: 1 at (1, 0), 2 at (3, 2) which first exceeds 1.5
        assert median_energy_point(img) == (3, 2)

    def test_dark_image(self):
        assert median_energy_point(np.zeros((4, 4, 3))) is None

    def test_nan_is_ignored(self):
        img = np.full((4, 4, 3), np.nan)
        img[1, 2] = 3.0
        assert median_energy_point(img) == (2, 1)


class TestInverseCdf:
    def test_distribution_normalized(self, gradient_map):
        pdf, cdf = distribution_2d(gradient_map)
        assert pdf.sum() == pytest.approx(1.0)
        assert cdf[-1] == pytest.approx(1.0)
        assert (np.diff(cdf) >= -1e-15).all()
        assert (pdf[0] == 0.0).all()  # sin(0) row

    def test_dark_distribution(self):
        pdf, cdf = distribution_2d(np.zeros((8, 8, 3)))
        assert not pdf.any() and not cdf.any()
        assert inverse_cdf_samples(cdf, 8, 10).shape == (0, 2)

    def test_samples_follow_energy(self):
        img = _blob(32, 64, cx=40, cy=16, radius=3)
        _, cdf = distribution_2d(img)
        samples = inverse_cdf_samples(cdf, 64, 200, tolerance=0.01)
        assert len(samples) > 0
        assert (np.abs(samples[:, 0] - 40) <= 4).all()
        assert (np.abs(samples[:, 1] - 16) <= 4).all()

    def test_uniform_map_keeps_every_sample(self, uniform_map):
        _, cdf = distribution_2d(uniform_map)
        samples = inverse_cdf_samples(cdf, 64, 100, tolerance=0.01)
        assert samples.shape == (100, 2)

    def test_large_jump_drops_samples(self):
        img = np.zeros((8, 8, 3))
        img[4, 4] = 1.0
        _, cdf = distribution_2d(img)
        samples = inverse_cdf_samples(cdf, 8, 100, tolerance=0.01)
        assert 0 < len(samples) < 100


def test_cluster_samples_two_groups():
    params = IdentificationParams(seed=3)
    a = np.array([[10, 10], [11, 10], [10, 11], [11, 11]])
    b = a + 40
    centres = cluster_samples(np.vstack([a, b]), 2, params)
    assert sorted(map(tuple, centres.tolist())) == [(10, 10), (50, 50)]


def test_cluster_count_capped_by_distinct_samples():
    params = IdentificationParams()
    centres = cluster_samples(np.array([[3, 4], [3, 4]]), 2, params)
    assert centres.tolist() == [[3, 4]]
    assert cluster_samples(np.zeros((0, 2)), 2, params).shape == (0, 2)


class TestIdentifyLights:
    def test_median_energy_one_light_per_condition(self):
        conds = [_blob(32, 64, 10, 8), _blob(32, 64, 50, 20)]
        result = identify_lights("median-energy", conditions=conds, width=64, height=32)
        assert result.mapping.groups == [[0], [1]]
        assert len(result.positions) == 2
        assert not result.uses_masks

    def test_missing_condition_keeps_its_slot(self, caplog):
        conds = [_blob(32, 64, 10, 8), None, _blob(32, 64, 50, 20)]
        result = identify_lights("median-energy", conditions=conds, width=64, height=32)
        assert result.mapping.groups == [[0], [], [1]]
        assert "missing" in caplog.text

    def test_inverse_cdf_with_two_clusters(self):
        img = _blob(32, 64, 12, 16, radius=2) + _blob(32, 64, 50, 16, radius=2)
        params = IdentificationParams(strategy="inverse-cdf", num_samples=300, clusters_per_condition={1: 2})
        result = identify_lights(
            "inverse-cdf", conditions=[_blob(32, 64, 30, 10), img], params=params, width=64, height=32
        )
        assert [len(g) for g in result.mapping.groups] == [1, 2]
        xs = sorted(result.positions[result.mapping.cells_of(1), 0].tolist())
        assert abs(xs[0] - 12) <= 2 and abs(xs[1] - 50) <= 2

    def test_masks_strategy(self, box_mask):
        masks = [box_mask(32, 64, 0, 4, 0, 4), box_mask(32, 64, 4, 8, 4, 8)]
        result = identify_lights("masks", masks=masks, width=64, height=32)
        assert result.uses_masks
        assert len(result.positions) == 0
        assert result.mapping.num_conditions == 2

    def test_directions_strategy(self):
        result = identify_lights("directions", directions=[[0.0, 0.0, -1.0]], width=64, height=32)
        np.testing.assert_array_equal(result.positions, [[0, 16]])
        assert result.mapping.groups == [[0]]

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown identification strategy"):
            identify_lights("manual", conditions=[])

    def test_missing_inputs_raise(self):
        with pytest.raises(ValueError, match="requires condition images"):
            identify_lights("inverse-cdf")


def test_apply_identification_renumbers_rejected_points():
    result = IdentificationResult(
        positions=np.array([[5, 5], [500, 5], [20, 10]]),
        mapping=ConditionMapping([[0, 1], [2]]),
    )
    partition = SpatialPartition(width=64, height=32)
    partition.add_point_light((1, 1))
    inserted = apply_identification(partition, result)
    assert inserted == 2
    assert partition.num_cells == 2
    assert partition.mapping.groups == [[0], [1]]


def test_apply_identification_without_clear_extends_mapping():
    partition = SpatialPartition(width=64, height=32)
    partition.add_point_light((1, 1))
    result = IdentificationResult(positions=np.array([[30, 20]]), mapping=ConditionMapping([[0]]))
    apply_identification(partition, result, clear=False)
    assert partition.mapping.groups == [[0], [1]]
