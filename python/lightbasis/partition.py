# python/lightbasis/partition.py
# Nearest-light (Voronoi) partition of the equirectangular map domain
# Exists to assign every map pixel to exactly one light of the basis
# RELEVANT FILES: python/lightbasis/basis.py, python/lightbasis/integrator.py, tests/test_partition.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
from scipy.spatial import Voronoi, cKDTree

from .basis import LightingBasis
from .conditions import ConditionMapping

logger = logging.getLogger(__name__)


class SpatialPartition:
    """
    Partition of a ``width`` x ``height`` pixel grid into one cell per point light.

    The partition reads positions from its :class:`LightingBasis` and never
    edits them itself; mutators on the partition forward to the basis. Any
    change of the basis (tracked through ``basis.revision``) triggers a
    rebuild on the next query.

    Pixel ``(x, y)`` belongs to the light whose position is nearest in
    Euclidean distance. Several lights at the same position share one site;
    the first inserted owns the cell, the others get empty cells.
    """

    def __init__(self, basis: Optional[LightingBasis] = None, width: int = 1024, height: int = 512):
        self.basis = basis if basis is not None else LightingBasis(width, height)
        self._mapping: Optional[ConditionMapping] = None
        self._built_revision: Optional[int] = None
        self._tree: Optional[cKDTree] = None
        self._site_owner = np.zeros(0, dtype=np.int64)
        self._sites = np.zeros((0, 2), dtype=np.int64)
        self._labels: Optional[np.ndarray] = None
        self._counts = np.zeros(0, dtype=np.int64)

    @property
    def width(self) -> int:
        return self.basis.width

    @property
    def height(self) -> int:
        return self.basis.height

    @property
    def num_cells(self) -> int:
        return self.basis.num_point_lights

    def set_domain_size(self, width: int, height: int) -> None:
        self.basis.set_extent(width, height)

    def _extend_mapping(self, first: int) -> None:
        # lights from index ``first`` on each become a condition of their own
        if self._mapping is None:
            return
        for cell in range(first, self.num_cells):
            self._mapping.append_condition([cell])

    def add_point_light(self, position: Sequence[int]) -> bool:
        first = self.num_cells
        added = self.basis.add_point_light(position)
        self._extend_mapping(first)
        return added

    def add_area_light(self, p0: Sequence[int], p1: Sequence[int]) -> bool:
        first = self.num_cells
        added = self.basis.add_area_light(p0, p1)
        self._extend_mapping(first)
        return added

    def set_lights(self, points, mapping: Optional[ConditionMapping] = None) -> int:
        """
        Append ``points`` to the basis.

        With ``mapping`` the given grouping is installed. Without it every
        appended light gets a single-cell condition of its own, also when a
        mapping was installed earlier.
        """
        first = self.num_cells
        added = self.basis.add_point_lights(points)
        if mapping is not None:
            self.mapping = mapping
        else:
            self._extend_mapping(first)
        return added

    def clear(self) -> None:
        self.basis.clear()
        self._mapping = None

    # -- condition mapping ---------------------------------------------------

    @property
    def mapping(self) -> ConditionMapping:
        """Installed cell-to-condition mapping; one condition per cell when none was set."""
        if self._mapping is None:
            return ConditionMapping.identity(self.num_cells)
        return self._mapping

    @mapping.setter
    def mapping(self, value: Optional[ConditionMapping]) -> None:
        if value is not None:
            # owned copy; lights added later extend it
            value = ConditionMapping(value.groups if isinstance(value, ConditionMapping) else value)
        if value is not None and not value.is_complete(self.num_cells):
            logger.warning(
                f"Condition mapping covers {value.num_cells} cells but the partition has {self.num_cells}"
            )
        self._mapping = value

    # -- construction --------------------------------------------------------

    @property
    def stale(self) -> bool:
        return self._built_revision != self.basis.revision

    def _ensure_built(self) -> None:
        if self.stale:
            self.rebuild()

    def rebuild(self) -> None:
        """Rebuild the nearest-neighbour index and the per-cell pixel counts."""
        points = self.basis.point_lights
        self._built_revision = self.basis.revision
        n = len(points)
        if n == 0:
            self._tree = None
            self._sites = np.zeros((0, 2), dtype=np.int64)
            self._site_owner = np.zeros(0, dtype=np.int64)
            self._labels = None
            self._counts = np.zeros(0, dtype=np.int64)
            logger.debug("Partition rebuilt with no lights")
            return

        # np.unique(return_index) gives the first occurrence of every position
        sites, first = np.unique(points, axis=0, return_index=True)
        self._sites = sites
        self._site_owner = first.astype(np.int64)
        self._tree = cKDTree(sites.astype(np.float64))

        w, h = self.width, self.height
        ys, xs = np.mgrid[0:h, 0:w]
        query = np.column_stack([xs.ravel(), ys.ravel()]).astype(np.float64)
        _, site_idx = self._tree.query(query)
        self._labels = self._site_owner[site_idx].reshape(h, w)
        self._counts = np.bincount(self._labels.ravel(), minlength=n).astype(np.int64)
        logger.debug(f"Partition rebuilt: {n} lights, {len(sites)} distinct sites on {w}x{h}")

    # -- queries -------------------------------------------------------------

    def nearest_light(self, x: float, y: float) -> int:
        """Index of the light nearest to ``(x, y)``, or -1 for an empty basis."""
        self._ensure_built()
        if self._tree is None:
            return -1
        _, site = self._tree.query([float(x), float(y)])
        return int(self._site_owner[int(site)])

    @property
    def labels(self) -> np.ndarray:
        """(H, W) int64 raster of cell indices; -1 everywhere for an empty basis."""
        self._ensure_built()
        if self._labels is None:
            return np.full((self.height, self.width), -1, dtype=np.int64)
        return self._labels

    @property
    def pixel_counts(self) -> np.ndarray:
        self._ensure_built()
        return self._counts.copy()

    def centers(self) -> np.ndarray:
        """(N, 2) float positions of the cell sites, in light order."""
        return self.basis.point_lights.astype(np.float64)

    def cell_polygons(self) -> List[np.ndarray]:
        """
        Voronoi polygon of every cell clipped to the map rectangle.

        Sites are mirrored across the four edges of the pixel domain
        ``[-0.5, W - 0.5] x [-0.5, H - 0.5]`` so every original region is
        bounded and its boundary follows the map border. Lights that share a
        position with an earlier light get an empty (0, 2) polygon.
        """
        self._ensure_built()
        n = self.num_cells
        polygons = [np.zeros((0, 2), dtype=np.float64) for _ in range(n)]
        if n == 0:
            return polygons

        lo_x, hi_x = -0.5, self.width - 0.5
        lo_y, hi_y = -0.5, self.height - 0.5
        if len(self._sites) == 1:
            box = np.array([[lo_x, lo_y], [hi_x, lo_y], [hi_x, hi_y], [lo_x, hi_y]])
            polygons[int(self._site_owner[0])] = box
            return polygons

        s = self._sites.astype(np.float64)
        mirrored = [
            s,
            np.column_stack([2 * lo_x - s[:, 0], s[:, 1]]),
            np.column_stack([2 * hi_x - s[:, 0], s[:, 1]]),
            np.column_stack([s[:, 0], 2 * lo_y - s[:, 1]]),
            np.column_stack([s[:, 0], 2 * hi_y - s[:, 1]]),
        ]
        vor = Voronoi(np.vstack(mirrored))
        for k, owner in enumerate(self._site_owner):
            region = vor.regions[vor.point_region[k]]
            if not region or -1 in region:
                continue
            verts = vor.vertices[region]
            verts[:, 0] = np.clip(verts[:, 0], lo_x, hi_x)
            verts[:, 1] = np.clip(verts[:, 1], lo_y, hi_y)
            polygons[int(owner)] = verts
        return polygons

    # -- persistence ---------------------------------------------------------

    def save(self, basis_path: Union[str, Path], mapping_path: Union[str, Path]) -> None:
        self.basis.save(basis_path)
        self.mapping.save(mapping_path)

    def load(self, basis_path: Union[str, Path], mapping_path: Union[str, Path]) -> bool:
        """Append the stored lights and install the stored mapping; ``False`` when a file is missing."""
        read = self.basis.load(basis_path)
        mapping = ConditionMapping.load(mapping_path)
        if mapping is not None:
            self.mapping = mapping
        return read > 0 and mapping is not None
