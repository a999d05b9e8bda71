"""
Diagnostic rasters of a lighting basis: partition boundaries, light
positions, area-light rectangles and cells filled by weight.

All painters take an (H, W, 3) uint8 image and return a new one.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image, ImageDraw

from ._validate import rgb_image
from .basis import LightingBasis, reorient_rectangle
from .conditions import ConditionMapping
from .integrator import normalize_weights_rgb
from .partition import SpatialPartition

logger = logging.getLogger(__name__)

BOUNDARY_COLOR = (0, 0, 255)
POINT_COLOR = (255, 0, 0)
AREA_COLOR = (0, 0, 255)


def tonemap_for_display(env_map: np.ndarray, gamma: float = 2.2) -> np.ndarray:
    """Reinhard tone map plus gamma, as an 8-bit RGB image; NaN pixels become black."""
    hdr = np.nan_to_num(rgb_image(env_map, "env_map"), nan=0.0, posinf=0.0, neginf=0.0)
    hdr = np.clip(hdr, 0.0, None)
    tone_mapped = hdr / (hdr + 1.0)
    gamma_corrected = tone_mapped ** (1.0 / gamma)
    return np.clip(gamma_corrected * 255, 0, 255).astype(np.uint8)


def _canvas(image) -> Image.Image:
    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)
    return Image.fromarray(np.ascontiguousarray(arr[:, :, :3]))


def _dot(draw: ImageDraw.ImageDraw, center, radius: int, fill=None, outline=None) -> None:
    x, y = float(center[0]), float(center[1])
    draw.ellipse([x - radius, y - radius, x + radius, y + radius], fill=fill, outline=outline)


def paint_points(image, points, radius: int = 4, color: Tuple[int, int, int] = POINT_COLOR) -> np.ndarray:
    img = _canvas(image)
    draw = ImageDraw.Draw(img)
    for p in np.asarray(points).reshape(-1, 2):
        _dot(draw, p, radius, fill=color)
    return np.asarray(img)


def paint_area_lights(image, basis: LightingBasis, width: int = 3, color: Tuple[int, int, int] = AREA_COLOR) -> np.ndarray:
    img = _canvas(image)
    draw = ImageDraw.Draw(img)
    for p0, p1 in basis.rectangles:
        upper_left, bottom_right = reorient_rectangle(p0, p1)
        draw.rectangle([upper_left, bottom_right], outline=color, width=width)
    return np.asarray(img)


def paint_partition(image, partition: SpatialPartition, line_width: int = 2) -> np.ndarray:
    """Cell boundaries and light positions."""
    img = _canvas(image)
    draw = ImageDraw.Draw(img)
    for polygon in partition.cell_polygons():
        if len(polygon) >= 3:
            draw.polygon([tuple(v) for v in polygon], outline=BOUNDARY_COLOR, width=line_width)
    for center in partition.centers():
        _dot(draw, center, 4, fill=POINT_COLOR)
    return np.asarray(img)


def paint_cell_weights(
    image,
    partition: SpatialPartition,
    weights: np.ndarray,
    mapping: Optional[ConditionMapping] = None,
) -> np.ndarray:
    """
    Fill every cell with the colour of its condition's weight.

    Weights are normalised first and multiplied by the number of conditions,
    so an even split of the energy shows as full brightness. Cells without a
    condition stay black.
    """
    mapping = mapping if mapping is not None else partition.mapping
    w = np.asarray(weights, dtype=np.float64).reshape(-1, 3)
    norm = normalize_weights_rgb(w) * len(w)
    img = _canvas(image)
    draw = ImageDraw.Draw(img)
    centers = partition.centers()
    for cell, polygon in enumerate(partition.cell_polygons()):
        if len(polygon) < 3:
            continue
        k = mapping.condition_of(cell)
        color = (0, 0, 0)
        if 0 <= k < len(norm):
            color = tuple(int(v) for v in np.clip(np.floor(255 * norm[k]), 0, 255))
        draw.polygon([tuple(v) for v in polygon], fill=color)
        _dot(draw, centers[cell], 4, outline=(0, 0, 0))
    return np.asarray(img)


def save_png(image, path: Union[str, Path]) -> None:
    path = Path(path)
    _canvas(image).save(path)
    logger.info(f"Saved diagnostic raster: {path}")
