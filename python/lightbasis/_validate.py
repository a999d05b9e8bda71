# python/lightbasis/_validate.py
# Argument validation helpers shared by the basis, partition and integrator
# Exists to keep shape/dtype checks and their error messages in one place
# RELEVANT FILES: python/lightbasis/integrator.py, python/lightbasis/partition.py
from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

_MAX_DIM = 16384  # guardrail for lat-long maps held in memory


def _as_int(name: str, v) -> int:
    try:
        i = int(v)
    except Exception as e:
        raise ValueError(f"{name} must be an integer, got {type(v).__name__}") from e
    return i


def size_wh(width, height) -> Tuple[int, int]:
    w = _as_int("width", width)
    h = _as_int("height", height)
    if w <= 0 or h <= 0:
        raise ValueError("width and height must be > 0")
    if w > _MAX_DIM or h > _MAX_DIM:
        raise ValueError(f"width/height must be <= {_MAX_DIM}")
    return w, h


def positive_int(name: str, v) -> int:
    i = _as_int(name, v)
    if i <= 0:
        raise ValueError(f"{name} must be > 0, got {i}")
    return i


def rgb_image(image, name: str = "image", shape: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """Return ``image`` as a float64 (H, W, 3) array, raising on bad rank or size.

    Grayscale (H, W) inputs are broadcast to three identical channels. The
    input is never modified; a new array is returned when a conversion is
    needed.
    """
    if image is None:
        raise ValueError(f"{name} is required")
    arr = np.asarray(image)
    if arr.dtype.kind not in "fiu":
        raise TypeError(f"{name} must be numeric, got dtype {arr.dtype}")
    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"{name} must have shape (H, W, 3), got {arr.shape}")
    arr = arr[:, :, :3].astype(np.float64, copy=False)
    if shape is not None and arr.shape[:2] != tuple(shape):
        raise ValueError(f"{name} must be {shape[0]}x{shape[1]} (HxW), got {arr.shape[0]}x{arr.shape[1]}")
    return arr


def is_missing(image) -> bool:
    """True when a buffer is absent, empty, or holds no finite value at all."""
    if image is None:
        return True
    arr = np.asarray(image)
    if arr.size == 0:
        return True
    if arr.dtype.kind == "f" and not np.isfinite(arr).any():
        return True
    return False


def point2(value, name: str = "point") -> Tuple[int, int]:
    try:
        x, y = value
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be an (x, y) pair, got {value!r}") from e
    return _as_int(f"{name}.x", x), _as_int(f"{name}.y", y)


def points_array(points, name: str = "points") -> np.ndarray:
    arr = np.asarray(points)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {arr.shape}")
    return np.floor(arr).astype(np.int64)
