"""
Solid-angle integration of an equirectangular map over partition cells,
lighting conditions or binary masks.

Row ``i`` of an ``H``-row lat-long map covers a band of polar angle around
``pi * i / H``; its pixels are weighted by ``sin(pi * i / H)``. Summed over a constant unit
map and multiplied by the row step ``pi / H`` this gives ``2 * W``, the
integral of ``sin(theta)`` over ``[0, pi]`` once per column.

A longitude offset rotates the map without rebuilding the partition: the
pixel owned by the cell at column ``j`` is read from column
``(j + column_offset(offset, W)) % W`` of the map.

Pixels whose three channels are all NaN contribute nothing. A NaN in only
one or two channels counts as zero for those channels.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ._validate import is_missing, rgb_image
from .conditions import ConditionMapping
from .partition import SpatialPartition

logger = logging.getLogger(__name__)

DEFAULT_MASK_THRESHOLD = 127.0 / 255.0


def solid_angle_weights(height: int) -> np.ndarray:
    """``sin(pi * i / height)`` for every row ``i``."""
    return np.sin(np.pi * np.arange(int(height), dtype=np.float64) / float(height))


def column_offset(offset: float, width: int) -> int:
    """Column shift equivalent to rotating the map by ``offset`` radians of longitude."""
    return int(np.floor(float(offset) * width / (2.0 * np.pi))) % int(width)


def rotate_latlong_map(env_map: np.ndarray, offset: float) -> np.ndarray:
    """Return a copy of ``env_map`` with ``out[:, j] = env_map[:, (j + shift) % W]``."""
    arr = np.asarray(env_map)
    shift = column_offset(offset, arr.shape[1])
    return np.roll(arr, -shift, axis=1)


def weighted_radiance(env_map: np.ndarray, offset: float = 0.0) -> np.ndarray:
    """
    Per-pixel solid-angle weighted RGB radiance after the longitude shift.

    Returns:
        (H, W, 3) float64 array with NaN replaced by zero
    """
    rgb = rotate_latlong_map(rgb_image(env_map, "env_map"), offset)
    values = np.nan_to_num(rgb, nan=0.0, posinf=0.0, neginf=0.0)
    return values * solid_angle_weights(rgb.shape[0])[:, None, None]


def selected_pixels(mask, threshold: float = DEFAULT_MASK_THRESHOLD) -> np.ndarray:
    """
    Boolean (H, W) selection of a condition mask.

    A pixel is selected when every channel is below ``threshold``. Integer
    masks are read on a 0..255 scale, float masks on 0..1. Boolean masks
    are already selections.
    """
    arr = np.asarray(mask)
    if arr.dtype == bool:
        return arr if arr.ndim == 2 else np.all(arr, axis=2)
    scale = 255.0 if arr.dtype.kind in "ui" else 1.0
    m = rgb_image(arr, "mask") / scale
    return np.all(m < threshold, axis=2)


def _gaussian_falloff(partition: SpatialPartition, variance_x, variance_y) -> np.ndarray:
    labels = partition.labels
    h, w = labels.shape
    if partition.num_cells == 0:
        return np.ones((h, w), dtype=np.float64)
    centers = partition.centers()
    ys, xs = np.mgrid[0:h, 0:w]
    cx = centers[labels, 0]
    cy = centers[labels, 1]
    return np.exp(-((xs - cx) ** 2) / (2.0 * variance_x) - ((ys - cy) ** 2) / (2.0 * variance_y))


def _accumulate(index: np.ndarray, contrib: np.ndarray, size: int) -> np.ndarray:
    out = np.zeros((size, 3), dtype=np.float64)
    keep = index >= 0
    if size == 0 or not keep.any():
        return out
    idx = index[keep]
    for c in range(3):
        out[:, c] = np.bincount(idx, weights=contrib[..., c][keep], minlength=size)[:size]
    return out


def cell_weights(
    env_map: np.ndarray,
    partition: SpatialPartition,
    offset: float = 0.0,
    light_type: str = "point",
    variance: Tuple[float, float] = (300.0, 300.0),
) -> np.ndarray:
    """
    Integrate ``env_map`` over every partition cell.

    Returns:
        (N, 3) RGB sums, one row per point light
    """
    radiance = weighted_radiance(env_map, offset)
    _check_domain(radiance, partition)
    if light_type == "gaussian":
        radiance = radiance * _gaussian_falloff(partition, variance[0], variance[1])[..., None]
    weights = _accumulate(partition.labels, radiance, partition.num_cells)
    logger.debug(f"Cell weights: {partition.num_cells} cells, total {weights.sum(axis=0).tolist()}")
    return weights


def condition_weights(
    env_map: np.ndarray,
    partition: SpatialPartition,
    mapping: Optional[ConditionMapping] = None,
    offset: float = 0.0,
    light_type: str = "point",
    variance: Tuple[float, float] = (300.0, 300.0),
    variance_per_condition: Optional[Dict[int, Tuple[float, float]]] = None,
) -> np.ndarray:
    """
    Integrate ``env_map`` per lighting condition.

    Every pixel is credited to the condition owning its cell, so a condition
    made of several cells receives the sum of all of them. Pixels of cells
    that no condition lists are dropped. With ``light_type="gaussian"`` each
    pixel is further modulated by an anisotropic Gaussian around its cell's
    light, using the condition's own variance when one is configured.

    Returns:
        (K, 3) RGB sums, one row per condition of ``mapping``
    """
    mapping = mapping if mapping is not None else partition.mapping
    radiance = weighted_radiance(env_map, offset)
    _check_domain(radiance, partition)
    labels = partition.labels
    lookup = np.asarray(mapping.cell_to_condition(partition.num_cells) + [-1], dtype=np.int64)
    # labels of -1 (empty basis) index the trailing -1 sentinel
    cond = lookup[labels]

    if light_type == "gaussian":
        per = variance_per_condition or {}
        vx = np.full(mapping.num_conditions + 1, float(variance[0]))
        vy = np.full(mapping.num_conditions + 1, float(variance[1]))
        for k, (x, y) in per.items():
            if 0 <= int(k) < mapping.num_conditions:
                vx[int(k)], vy[int(k)] = float(x), float(y)
        radiance = radiance * _gaussian_falloff(partition, vx[cond], vy[cond])[..., None]

    unmapped = int(np.count_nonzero(cond < 0))
    if unmapped:
        logger.debug(f"{unmapped} pixels fall in cells without a lighting condition")
    return _accumulate(cond, radiance, mapping.num_conditions)


def mask_weights(
    env_map: np.ndarray,
    masks: Sequence[Optional[np.ndarray]],
    offset: float = 0.0,
    threshold: float = DEFAULT_MASK_THRESHOLD,
) -> np.ndarray:
    """
    Integrate ``env_map`` over each condition's mask, without any partition.

    Missing masks (``None`` or empty) contribute a zero row and a warning.

    Returns:
        (K, 3) RGB sums, one row per mask
    """
    radiance = weighted_radiance(env_map, offset)
    weights = np.zeros((len(masks), 3), dtype=np.float64)
    for k, mask in enumerate(masks):
        if is_missing(mask):
            logger.warning(f"Mask for lighting condition {k} is missing; its weight stays zero")
            continue
        sel = selected_pixels(mask, threshold)
        if sel.shape != radiance.shape[:2]:
            raise ValueError(f"mask {k} is {sel.shape[0]}x{sel.shape[1]}, map is {radiance.shape[0]}x{radiance.shape[1]}")
        weights[k] = radiance[sel].sum(axis=0)
    return weights


def cell_intensity(env_map: np.ndarray, partition: SpatialPartition, offset: float = 0.0) -> np.ndarray:
    """Solid-angle weighted sum of the mean RGB value over every cell, shape (N,)."""
    radiance = weighted_radiance(env_map, offset)
    _check_domain(radiance, partition)
    mean = radiance.mean(axis=2)
    labels = partition.labels
    keep = labels >= 0
    return np.bincount(labels[keep], weights=mean[keep], minlength=partition.num_cells)[: partition.num_cells]


def normalize_weights_rgb(weights: np.ndarray) -> np.ndarray:
    """Scale all triples so the largest per-channel sum equals 1; all-zero input is returned as is."""
    w = np.asarray(weights, dtype=np.float64)
    if w.size == 0:
        return w.reshape(0, 3)
    peak = float(w.sum(axis=0).max())
    if peak == 0.0:
        return w.copy()
    return w / peak


def _check_domain(radiance: np.ndarray, partition: SpatialPartition) -> None:
    h, w = radiance.shape[:2]
    if (w, h) != (partition.width, partition.height):
        raise ValueError(
            f"map is {w}x{h} but the partition covers {partition.width}x{partition.height}"
        )


__all__: List[str] = [
    "DEFAULT_MASK_THRESHOLD",
    "solid_angle_weights",
    "column_offset",
    "rotate_latlong_map",
    "weighted_radiance",
    "selected_pixels",
    "cell_weights",
    "condition_weights",
    "mask_weights",
    "cell_intensity",
    "normalize_weights_rgb",
]
