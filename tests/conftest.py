# tests/conftest.py
# Shared fixtures: small synthetic lat-long maps and masks
# Exists to keep test inputs deterministic and built in memory
# RELEVANT FILES: python/lightbasis/integrator.py, python/lightbasis/partition.py
import numpy as np
import pytest


@pytest.fixture
def uniform_map():
    """Constant (1, 1, 1) map, 64 x 32."""
    return np.ones((32, 64, 3), dtype=np.float32)


@pytest.fixture
def gradient_map():
    """Map whose value grows with column and row so rotations are detectable."""
    h, w = 32, 64
    ys, xs = np.mgrid[0:h, 0:w]
    rgb = np.stack([xs + 1.0, ys + 1.0, (xs * ys) % 7 + 0.5], axis=2)
    return rgb.astype(np.float64)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def box_mask():
    """Factory for uint8 RGB masks, black (selected) inside a box and white elsewhere."""

    def make(h, w, y0, y1, x0, x1):
        mask = np.full((h, w, 3), 255, dtype=np.uint8)
        mask[y0:y1, x0:x1] = 0
        return mask

    return make
