"""Mapping from partition cells to the lighting conditions they came from."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class ConditionMapping:
    """
    Groups of cell indices, one group per lighting condition.

    Condition ``k`` owns ``groups[k]``. A condition may own several cells
    (an illumination source that was split into two clusters) or none at
    all (a condition whose light fell outside the map).
    """

    def __init__(self, groups: Optional[Iterable[Sequence[int]]] = None):
        self._groups: List[List[int]] = []
        self._lookup: Optional[Dict[int, int]] = None
        for cells in groups or []:
            self.append_condition(cells)

    @classmethod
    def identity(cls, num_cells: int) -> "ConditionMapping":
        """One condition per cell, condition ``i`` owning cell ``i``."""
        return cls([[i] for i in range(int(num_cells))])

    def __len__(self) -> int:
        return len(self._groups)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ConditionMapping):
            return NotImplemented
        return self._groups == other._groups

    def __repr__(self) -> str:
        return f"ConditionMapping({self._groups!r})"

    @property
    def groups(self) -> List[List[int]]:
        return [list(g) for g in self._groups]

    @property
    def num_conditions(self) -> int:
        return len(self._groups)

    @property
    def num_cells(self) -> int:
        return sum(len(g) for g in self._groups)

    def append_condition(self, cells: Sequence[int]) -> int:
        group = [int(c) for c in cells]
        if any(c < 0 for c in group):
            raise ValueError(f"cell indices must be non-negative, got {group}")
        self._groups.append(group)
        self._lookup = None
        return len(self._groups) - 1

    def condition_of(self, cell: int) -> int:
        """Condition owning ``cell``, or -1 when no condition lists it."""
        if self._lookup is None:
            lookup: Dict[int, int] = {}
            for k, group in enumerate(self._groups):
                for c in group:
                    lookup[c] = k
            self._lookup = lookup
        return self._lookup.get(int(cell), -1)

    def cells_of(self, condition: int) -> List[int]:
        return list(self._groups[int(condition)])

    def cell_to_condition(self, num_cells: int) -> List[int]:
        """Dense lookup table of length ``num_cells``; unmapped cells hold -1."""
        return [self.condition_of(c) for c in range(int(num_cells))]

    def is_complete(self, num_cells: int) -> bool:
        """True when every cell in ``range(num_cells)`` appears in exactly one group."""
        seen: List[int] = [c for g in self._groups for c in g]
        return sorted(seen) == list(range(int(num_cells)))

    def save(self, path: Union[str, Path]) -> None:
        """Write one line per condition: the cell count followed by the cell indices."""
        path = Path(path)
        lines = [" ".join(str(v) for v in [len(g), *g]) for g in self._groups]
        path.write_text("\n".join(lines), encoding="utf-8")
        logger.info(f"Saved {len(lines)} condition groups to {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> Optional["ConditionMapping"]:
        """Read a grouping file; returns ``None`` when it does not exist."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Condition mapping file not found: {path}")
            return None
        tokens = [int(t) for t in path.read_text(encoding="utf-8").split()]
        mapping = cls()
        pos = 0
        while pos < len(tokens):
            size = tokens[pos]
            cells = tokens[pos + 1:pos + 1 + size]
            if size < 0 or len(cells) != size:
                raise ValueError(f"{path}: truncated condition group at token {pos}")
            mapping.append_condition(cells)
            pos += 1 + size
        logger.info(f"Loaded {len(mapping)} condition groups from {path}")
        return mapping
