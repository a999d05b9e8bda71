"""
Reflectance field storage and linear recombination under per-condition weights.

A reflectance field holds one linear RGB image of the object per lighting
condition. Relighting under a new illumination is the per-channel weighted
sum of those images with the weights computed from the map.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ._validate import is_missing, rgb_image

logger = logging.getLogger(__name__)


class ReflectanceField:
    """
    Per-condition images of one object, indexed by condition.

    All images share one (H, W) size, fixed by the first image stored.
    Slots may be empty (``None``) when an image could not be obtained; they
    are skipped by :func:`linear_combination`.
    """

    def __init__(self, images: Optional[Iterable[Optional[np.ndarray]]] = None, object_mask: Optional[np.ndarray] = None):
        self._images: List[Optional[np.ndarray]] = []
        self.shape: Optional[Tuple[int, int]] = None
        self.object_mask: Optional[np.ndarray] = None
        for image in images or []:
            self.append(image)
        if object_mask is not None:
            self.set_object_mask(object_mask)

    def __len__(self) -> int:
        return len(self._images)

    def __getitem__(self, index: int) -> Optional[np.ndarray]:
        return self._images[self._check_index(index)]

    def __setitem__(self, index: int, image: Optional[np.ndarray]) -> None:
        self._images[self._check_index(index)] = self._coerce(image, f"images[{index}]")

    def _check_index(self, index: int) -> int:
        i = int(index)
        if not 0 <= i < len(self._images):
            raise IndexError(f"condition {i} out of range for a field of {len(self._images)} images")
        return i

    def _coerce(self, image: Optional[np.ndarray], name: str) -> Optional[np.ndarray]:
        if is_missing(image):
            return None
        arr = rgb_image(image, name, self.shape).copy()
        if self.shape is None:
            self.shape = arr.shape[:2]
        return arr

    def append(self, image: Optional[np.ndarray]) -> int:
        self._images.append(self._coerce(image, f"images[{len(self._images)}]"))
        return len(self._images) - 1

    def resize(self, count: int) -> None:
        """Grow with empty slots or drop trailing conditions."""
        count = int(count)
        if count < 0:
            raise ValueError("count must be >= 0")
        if count < len(self._images):
            del self._images[count:]
        else:
            self._images.extend([None] * (count - len(self._images)))

    def set_object_mask(self, mask: np.ndarray) -> None:
        self.object_mask = rgb_image(mask, "object_mask", self.shape).copy()

    @property
    def missing(self) -> List[int]:
        return [k for k, img in enumerate(self._images) if img is None]

    def remove_gamma(self, gamma: float = 2.2) -> None:
        """Linearise every stored image in place."""
        for k, img in enumerate(self._images):
            if img is not None:
                self._images[k] = remove_gamma(img, gamma)

    def scale(self, index: int, factors: Sequence[float]) -> None:
        img = self[index]
        if img is not None:
            self._images[index] = img * np.asarray(factors, dtype=np.float64).reshape(1, 1, -1)

    def subtract_indirect(self, index: int) -> None:
        """Remove the indirect-light image from every other condition, clamping at zero."""
        indirect = self[index]
        if indirect is None:
            logger.warning(f"Indirect-light image {index} is missing; nothing subtracted")
            return
        for k, img in enumerate(self._images):
            if k != index and img is not None:
                self._images[k] = np.maximum(img - indirect, 0.0)

    def subtract_overlaps(self, pairs: Iterable[Tuple[int, int]]) -> None:
        """For every ``(a, b)`` remove image ``b`` from image ``a``; used where condition ``a`` contains ``b``."""
        for a, b in pairs:
            img_a, img_b = self[a], self[b]
            if img_a is None or img_b is None:
                logger.warning(f"Cannot remove overlap of conditions {a} and {b}: image missing")
                continue
            self._images[a] = np.maximum(img_a - img_b, 0.0)


def linear_combination(field: ReflectanceField, weights: np.ndarray) -> Optional[np.ndarray]:
    """
    Relit image ``sum_k weights[k] * field[k]`` per channel.

    Returns:
        (H, W, 3) float64 image, or ``None`` when the field holds no image
    """
    w = np.asarray(weights, dtype=np.float64)
    if w.ndim != 2 or w.shape[1] != 3:
        raise ValueError(f"weights must have shape (K, 3), got {w.shape}")
    if field.shape is None:
        logger.warning("Reflectance field is empty; nothing to relight")
        return None
    if len(w) != len(field):
        logger.warning(f"{len(w)} weights for {len(field)} reflectance images; extra entries ignored")
    result = np.zeros((*field.shape, 3), dtype=np.float64)
    for k in range(min(len(w), len(field))):
        img = field[k]
        if img is None:
            logger.warning(f"Reflectance image {k} is missing; skipped in the relit result")
            continue
        result += img * w[k][None, None, :]
    return result


def change_exposure(image: np.ndarray, stops: float) -> np.ndarray:
    return np.asarray(image, dtype=np.float64) * (2.0 ** float(stops))


def gamma_correct(image: np.ndarray, gamma: float = 2.2) -> np.ndarray:
    return np.power(np.clip(np.asarray(image, dtype=np.float64), 0.0, None), 1.0 / float(gamma))


def remove_gamma(image: np.ndarray, gamma: float = 2.2) -> np.ndarray:
    return np.power(np.clip(np.asarray(image, dtype=np.float64), 0.0, None), float(gamma))


def ray_trace_background(
    image: np.ndarray,
    object_mask: np.ndarray,
    env_map: np.ndarray,
    offset: float = 0.0,
    gamma: Optional[float] = None,
) -> np.ndarray:
    """
    Fill the background of a relit image with the map seen through a pinhole camera.

    Background pixels are those where all three mask channels exceed 0.5.
    Pixel ``(i, j)`` looks along ``((j - W/2) / (W/2), -(i - H/2) / (H/2), -1)``;
    the direction's longitude is rotated by ``offset``.

    Returns:
        New (H, W, 3) image; object pixels are copied unchanged
    """
    out = rgb_image(image, "image").copy()
    h, w = out.shape[:2]
    mask = rgb_image(object_mask, "object_mask", (h, w))
    env = rgb_image(env_map, "env_map")
    eh, ew = env.shape[:2]
    background = np.all(mask > 0.5, axis=2)
    if not background.any():
        return out

    ii, jj = np.nonzero(background)
    x = (jj - w // 2) / float(w // 2)
    y = -(ii - h // 2) / float(h // 2)
    z = -np.ones_like(x)
    r = np.sqrt(x * x + y * y + z * z)
    theta = np.arccos(np.clip(y / r, -1.0, 1.0))
    phi = np.mod(np.mod(np.arctan2(x, z), 2.0 * np.pi) + offset, 2.0 * np.pi)
    rows = np.minimum(np.floor(eh * theta / np.pi).astype(np.int64), eh - 1)
    cols = np.minimum(np.floor(ew * phi / (2.0 * np.pi)).astype(np.int64), ew - 1)
    values = env[rows, cols]
    if gamma is not None:
        values = gamma_correct(values, gamma)
    out[ii, jj] = values
    return out
