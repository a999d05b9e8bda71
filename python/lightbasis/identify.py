# python/lightbasis/identify.py
# Automatic light-source identification from per-condition lat-long images
# Exists to propose basis positions and their condition mapping without manual picking
# RELEVANT FILES: python/lightbasis/partition.py, python/lightbasis/config.py, tests/test_identify.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import KMeans

from ._validate import is_missing, rgb_image, size_wh
from .basis import directions_to_pixels
from .conditions import ConditionMapping
from .config import IdentificationParams
from .integrator import solid_angle_weights
from .partition import SpatialPartition

logger = logging.getLogger(__name__)

STRATEGIES = ("median-energy", "inverse-cdf", "masks", "directions")


@dataclass
class IdentificationResult:
    """Proposed positions, their attribution to conditions, and masks for mask mode."""

    positions: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), dtype=np.int64))
    mapping: ConditionMapping = field(default_factory=ConditionMapping)
    masks: Optional[List[Optional[np.ndarray]]] = None

    @property
    def uses_masks(self) -> bool:
        return self.masks is not None


def _mean_intensity(image) -> np.ndarray:
    rgb = rgb_image(image, "condition image")
    return np.nan_to_num(rgb, nan=0.0, posinf=0.0, neginf=0.0).mean(axis=2)


def median_energy_point(image) -> Optional[Tuple[int, int]]:
    """
    First pixel, in row-major order, where the running intensity sum passes half the total.

    Returns:
        (x, y) position, or ``None`` for an image without positive energy
    """
    intensity = _mean_intensity(image)
    total = float(intensity.sum())
    if total <= 0.0:
        return None
    running = np.cumsum(intensity.ravel())
    flat = int(np.argmax(running > total / 2.0))
    y, x = divmod(flat, intensity.shape[1])
    return x, y


def distribution_2d(image) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solid-angle weighted intensity distribution of a lat-long image.

    Returns:
        (pdf, cdf): ``pdf`` is (H, W) and sums to 1, ``cdf`` is its row-major
        cumulative sum of length H * W. Both are all zeros for a dark image.
    """
    intensity = _mean_intensity(image) * solid_angle_weights(np.shape(image)[0])[:, None]
    total = float(intensity.sum())
    if total <= 0.0:
        zeros = np.zeros_like(intensity)
        return zeros, zeros.ravel()
    pdf = intensity / total
    return pdf, np.cumsum(pdf.ravel())


def inverse_cdf_samples(cdf: np.ndarray, width: int, num_samples: int, tolerance: float = 0.01) -> np.ndarray:
    """
    Invert ``num_samples`` uniformly spaced quantiles ``(k + 0.5) / num_samples``.

    Each quantile goes to the pixel whose CDF value is nearest to it. Quantiles
    whose nearest CDF value is further than ``tolerance`` away are dropped,
    which happens inside large jumps of the CDF.

    Returns:
        (M, 2) int64 array of (x, y) positions, M <= num_samples
    """
    cdf = np.asarray(cdf, dtype=np.float64).ravel()
    if cdf.size == 0 or cdf[-1] <= 0.0:
        return np.zeros((0, 2), dtype=np.int64)
    u = (np.arange(num_samples, dtype=np.float64) + 0.5) / num_samples
    right = np.clip(np.searchsorted(cdf, u, side="left"), 0, cdf.size - 1)
    left = np.clip(right - 1, 0, cdf.size - 1)
    pick = np.where(np.abs(cdf[left] - u) <= np.abs(cdf[right] - u), left, right)
    keep = np.abs(cdf[pick] - u) <= tolerance
    dropped = int(num_samples - np.count_nonzero(keep))
    if dropped:
        logger.debug(f"Dropped {dropped}/{num_samples} quantiles with no CDF value within {tolerance}")
    y, x = np.divmod(pick[keep], int(width))
    return np.column_stack([x, y]).astype(np.int64)


def cluster_samples(samples: np.ndarray, clusters: int, params: IdentificationParams) -> np.ndarray:
    """k-means++ centres of ``samples``, floored to integer pixels."""
    samples = np.asarray(samples, dtype=np.float64)
    distinct = len(np.unique(samples, axis=0)) if len(samples) else 0
    k = min(int(clusters), distinct)
    if k == 0:
        return np.zeros((0, 2), dtype=np.int64)
    km = KMeans(
        n_clusters=k,
        init="k-means++",
        n_init=params.attempts,
        max_iter=params.max_iterations,
        tol=params.epsilon,
        random_state=params.seed,
    ).fit(samples)
    return np.floor(km.cluster_centers_).astype(np.int64)


def _identify_median_energy(conditions, width: int, height: int) -> IdentificationResult:
    positions: List[Tuple[int, int]] = []
    mapping = ConditionMapping()
    for k, image in enumerate(conditions):
        if is_missing(image):
            logger.warning(f"Lighting condition {k} image is missing; no light identified")
            mapping.append_condition([])
            continue
        point = median_energy_point(image)
        if point is None:
            logger.warning(f"Lighting condition {k} carries no energy; no light identified")
            mapping.append_condition([])
            continue
        mapping.append_condition([len(positions)])
        positions.append(point)
    return IdentificationResult(np.asarray(positions, dtype=np.int64).reshape(-1, 2), mapping)


def _identify_inverse_cdf(conditions, width: int, height: int, params: IdentificationParams) -> IdentificationResult:
    positions: List[Tuple[int, int]] = []
    mapping = ConditionMapping()
    for k, image in enumerate(conditions):
        if is_missing(image):
            logger.warning(f"Lighting condition {k} image is missing; no light identified")
            mapping.append_condition([])
            continue
        _, cdf = distribution_2d(image)
        samples = inverse_cdf_samples(cdf, np.shape(image)[1], params.num_samples, params.tolerance)
        centres = cluster_samples(samples, params.cluster_count(k), params)
        inside = (centres[:, 0] >= 0) & (centres[:, 0] < width) & (centres[:, 1] >= 0) & (centres[:, 1] < height)
        cells = []
        for x, y in centres[inside]:
            cells.append(len(positions))
            positions.append((int(x), int(y)))
        logger.debug(f"Condition {k}: {len(samples)} samples, {len(cells)} light(s) kept")
        mapping.append_condition(cells)
    return IdentificationResult(np.asarray(positions, dtype=np.int64).reshape(-1, 2), mapping)


def _identify_directions(directions, width: int, height: int) -> IdentificationResult:
    pixels = directions_to_pixels(directions, width, height)
    return IdentificationResult(pixels, ConditionMapping.identity(len(pixels)))


def identify_lights(
    strategy: str,
    conditions: Optional[Sequence[Optional[np.ndarray]]] = None,
    masks: Optional[Sequence[Optional[np.ndarray]]] = None,
    directions=None,
    params: Optional[IdentificationParams] = None,
    width: int = 1024,
    height: int = 512,
) -> IdentificationResult:
    """
    Propose light positions with one of the identification strategies.

    Args:
        strategy: "median-energy", "inverse-cdf", "masks" or "directions"
        conditions: Per-condition lat-long images for the image-based strategies
        masks: Per-condition masks for "masks"
        directions: (N, 3) light directions for "directions"
        params: Sampling and clustering settings
        width: Map width used for bounds
        height: Map height used for bounds

    Returns:
        IdentificationResult whose mapping has one group per condition
    """
    params = params if params is not None else IdentificationParams()
    w, h = size_wh(width, height)
    if strategy == "median-energy":
        if conditions is None:
            raise ValueError("median-energy identification requires condition images")
        result = _identify_median_energy(conditions, w, h)
    elif strategy == "inverse-cdf":
        if conditions is None:
            raise ValueError("inverse-cdf identification requires condition images")
        result = _identify_inverse_cdf(conditions, w, h, params)
    elif strategy == "masks":
        if masks is None:
            raise ValueError("mask identification requires one mask per condition")
        result = IdentificationResult(mapping=ConditionMapping([[] for _ in masks]), masks=list(masks))
    elif strategy == "directions":
        if directions is None:
            raise ValueError("direction identification requires light directions")
        result = _identify_directions(directions, w, h)
    else:
        raise ValueError(f"Unknown identification strategy: {strategy!r} (expected one of {', '.join(STRATEGIES)})")
    logger.info(f"Identified {len(result.positions)} lights for {result.mapping.num_conditions} conditions ({strategy})")
    return result


def apply_identification(partition: SpatialPartition, result: IdentificationResult, clear: bool = True) -> int:
    """
    Insert identified positions into ``partition`` and install the mapping.

    Cell indices in ``result.mapping`` refer to ``result.positions``; they are
    renumbered to the indices the basis actually assigns, and positions the
    basis rejects are removed from their condition's group.

    Returns:
        Number of lights inserted
    """
    if clear:
        partition.clear()
    base = partition.num_cells
    groups = partition.mapping.groups if base else []
    renumber = {}
    for i, (x, y) in enumerate(result.positions):
        if partition.add_point_light((int(x), int(y))):
            renumber[i] = base + len(renumber)
    for cells in result.mapping.groups:
        groups.append([renumber[c] for c in cells if c in renumber])
    partition.mapping = ConditionMapping(groups)
    return len(renumber)
