"""
Lighting basis: the ordered set of point and area light sources that
approximates an equirectangular illumination map.

Point lights are integer pixel coordinates ``(x, y)`` with ``0 <= x < width``
and ``0 <= y < height``. A light's index is its insertion position and never
changes until :meth:`LightingBasis.clear`. Area lights are rectangles given by
two opposite corners; every area light also registers its centre as a point
light.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np

from ._validate import point2, points_array, positive_int, size_wh

logger = logging.getLogger(__name__)

Point = Tuple[int, int]
Rectangle = Tuple[Point, Point]


def reorient_rectangle(p0: Sequence[int], p1: Sequence[int]) -> Rectangle:
    """Return ``(upper_left, bottom_right)`` for a rectangle given by any two opposite corners."""
    x0, y0 = point2(p0, "p0")
    x1, y1 = point2(p1, "p1")
    return (min(x0, x1), min(y0, y1)), (max(x0, x1), max(y0, y1))


def rectangle_center(p0: Sequence[int], p1: Sequence[int]) -> Point:
    x0, y0 = point2(p0, "p0")
    x1, y1 = point2(p1, "p1")
    return (x0 + x1) // 2, (y0 + y1) // 2


def directions_to_pixels(directions, width: int, height: int, flip: bool = True) -> np.ndarray:
    """
    Convert cartesian light directions to equirectangular pixel coordinates.

    Args:
        directions: (N, 3) array of (x, y, z) directions, y pointing up
        width: Map width in pixels
        height: Map height in pixels
        flip: Negate the directions first. Light-stage calibration files store
            the vector from the light towards the object, the map wants the
            opposite one.

    Returns:
        (N, 2) int64 array of (x, y) pixel positions
    """
    w, h = size_wh(width, height)
    d = np.asarray(directions, dtype=np.float64)
    if d.ndim != 2 or d.shape[1] != 3:
        raise ValueError(f"directions must have shape (N, 3), got {d.shape}")
    if flip:
        # 0.0 - d rather than -d: atan2 sends signed zeros to -pi
        d = 0.0 - d
    r = np.linalg.norm(d, axis=1)
    if np.any(r == 0.0):
        raise ValueError("directions must be non-zero vectors")
    theta = np.arccos(np.clip(d[:, 1] / r, -1.0, 1.0))
    phi = np.mod(np.arctan2(d[:, 0], d[:, 2]), 2.0 * np.pi)
    px = np.floor(w * phi / (2.0 * np.pi)).astype(np.int64)
    py = np.floor(h * theta / np.pi).astype(np.int64)
    # phi == 2pi after rounding and theta == pi land one past the last pixel
    return np.stack([np.minimum(px, w - 1), np.minimum(py, h - 1)], axis=1)


class LightingBasis:
    """Ordered point lights and area-light rectangles on a ``width`` x ``height`` map."""

    def __init__(self, width: int = 1024, height: int = 512):
        self.width, self.height = size_wh(width, height)
        self._points: List[Point] = []
        self._rectangles: List[Rectangle] = []
        self.area_lights_sampled = False
        self.num_point_lights = 0
        self.num_area_lights = 0
        # bumped by every mutator so dependants can tell their snapshot is stale
        self.revision = 0

    def __len__(self) -> int:
        return self.num_point_lights

    def __repr__(self) -> str:
        return (
            f"LightingBasis({self.width}x{self.height}, "
            f"points={self.num_point_lights}, areas={self.num_area_lights})"
        )

    @property
    def point_lights(self) -> np.ndarray:
        """(N, 2) int64 copy of the point-light positions in insertion order."""
        if not self._points:
            return np.zeros((0, 2), dtype=np.int64)
        return np.asarray(self._points, dtype=np.int64)

    @property
    def rectangles(self) -> List[Rectangle]:
        return list(self._rectangles)

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def set_extent(self, width: int, height: int) -> None:
        """Resize the map; lights already placed keep their index even when they now fall outside."""
        self.width, self.height = size_wh(width, height)
        outside = sum(1 for x, y in self._points if not self.contains(x, y))
        if outside:
            logger.warning(
                f"{outside} of {len(self._points)} point lights lie outside the {self.width}x{self.height} map"
            )
        self.revision += 1

    def add_point_light(self, position: Sequence[int]) -> bool:
        """Append a point light. Positions outside the map are dropped and ``False`` is returned."""
        x, y = point2(position, "position")
        if not self.contains(x, y):
            logger.debug(f"Rejected point light ({x}, {y}) outside {self.width}x{self.height} map")
            return False
        self._points.append((x, y))
        self.num_point_lights += 1
        self.revision += 1
        return True

    def add_point_lights(self, positions: Iterable[Sequence[int]]) -> int:
        """Append several point lights; returns how many were inside the map."""
        added = 0
        for x, y in points_array(list(positions) if not isinstance(positions, np.ndarray) else positions):
            added += int(self.add_point_light((x, y)))
        return added

    def add_area_light(self, p0: Sequence[int], p1: Sequence[int]) -> bool:
        """Register a rectangle and its centre; returns whether the centre was inserted."""
        a = point2(p0, "p0")
        b = point2(p1, "p1")
        self._rectangles.append((a, b))
        self.num_area_lights += 1
        self.revision += 1
        return self.add_point_light(rectangle_center(a, b))

    def add_area_lights(self, rectangles: Iterable[Sequence[Sequence[int]]]) -> int:
        added = 0
        for rect in rectangles:
            p0, p1 = rect
            added += int(self.add_area_light(p0, p1))
        return added

    def expand_area_lights(self, spacing: int = 25) -> int:
        """
        Add a regular grid of point lights inside every area light.

        A rectangle of extent (w, h) larger than ``spacing`` on both axes gets
        ``(w // spacing) * (h // spacing)`` samples, the first one half a step
        inside the upper-left corner. Smaller rectangles collapse to their
        centre. Samples falling outside the map are skipped.

        Returns:
            Number of point lights added
        """
        spacing = positive_int("spacing", spacing)
        added = 0
        for index, (p0, p1) in enumerate(self._rectangles):
            (ux, uy), (bx, by) = reorient_rectangle(p0, p1)
            w = bx - ux
            h = by - uy
            if w > spacing and h > spacing:
                nx = w // spacing
                ny = h // spacing
                step_x = w // nx
                step_y = h // ny
                logger.debug(f"Sampling area light {index} ({w}x{h}) into {nx}x{ny} point lights")
                for k in range(ny):
                    y = uy + step_y // 2 + k * step_y
                    for l in range(nx):
                        added += int(self.add_point_light((ux + step_x // 2 + l * step_x, y)))
            else:
                added += int(self.add_point_light(((ux + bx) // 2, (uy + by) // 2)))
        self.area_lights_sampled = True
        return added

    def clear(self) -> None:
        self._points = []
        self._rectangles = []
        self.num_point_lights = 0
        self.num_area_lights = 0
        self.area_lights_sampled = False
        self.revision += 1

    def save(self, path: Union[str, Path]) -> None:
        """Write one ``"<index>: <x> <y>"`` line per point light."""
        path = Path(path)
        lines = [f"{i}: {x} {y}" for i, (x, y) in enumerate(self._points)]
        path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
        logger.info(f"Saved {len(lines)} point lights to {path}")

    def load(self, path: Union[str, Path]) -> int:
        """
        Append the point lights stored in ``path`` to this basis.

        Existing lights are kept, call :meth:`clear` first for a fresh load.
        A missing file leaves the basis untouched.

        Returns:
            Number of point lights read from the file
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Basis file not found: {path}")
            return 0
        points: List[Point] = []
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) != 3:
                raise ValueError(f"{path}:{lineno}: expected '<index>: <x> <y>', got {line!r}")
            points.append((int(parts[1]), int(parts[2])))
        self.add_point_lights(points)
        logger.info(f"Loaded {len(points)} point lights from {path}")
        return len(points)
