"""
Spatial Grid
============

Uniform grid for candidate-pair generation in the repulsion pass.

Instead of checking all n*(n-1)/2 node pairs, nodes are binned into
square cells and only pairs in the same or adjacent cells are returned.
With cell_size equal to the repulsion cutoff, every pair that can repel
is guaranteed to be returned.

Binning and pair expansion are vectorised: nodes are sorted by cell
code once, and each of the nine neighbour offsets is resolved with
searchsorted over that order.

Pairs come back in the same (i, j) lexicographic order as
numpy.triu_indices, so accumulation order matches the all-pairs path.
"""

from __future__ import annotations
from typing import Tuple

import numpy as np


# Cell indices are clipped to this magnitude so cell codes fit in int64.
# Clipping is monotone, so pairs in adjacent cells stay adjacent.
_MAX_CELL_INDEX = 2 ** 30

_OFFSETS = tuple((dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1))


class SpatialGrid:
    """Bins node indices into square cells of side cell_size."""

    def __init__(self, cell_size: float):
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.cell_size = cell_size
        self._codes = np.zeros(0, dtype=np.int64)
        self._order = np.zeros(0, dtype=np.intp)
        self._sorted_codes = np.zeros(0, dtype=np.int64)
        self._width = 1
        self._span = (0, 0)

    def build(self, positions: np.ndarray) -> SpatialGrid:
        """(Re)build the grid from an (n, 2) position array."""
        positions = np.asarray(positions, dtype=float).reshape(-1, 2)
        if len(positions) == 0:
            self._codes = np.zeros(0, dtype=np.int64)
            self._order = np.zeros(0, dtype=np.intp)
            self._sorted_codes = self._codes
            self._width = 1
            self._span = (0, 0)
            return self

        cells = np.clip(
            np.floor(positions / self.cell_size), -_MAX_CELL_INDEX, _MAX_CELL_INDEX
        ).astype(np.int64)
        # One empty cell of padding on each side keeps neighbour codes unique
        cells -= cells.min(axis=0) - 1
        self._width = int(cells[:, 1].max()) + 2
        self._span = (int(cells[:, 0].max()), int(cells[:, 1].max()))

        self._codes = cells[:, 0] * self._width + cells[:, 1]
        self._order = np.argsort(self._codes, kind="stable")
        self._sorted_codes = self._codes[self._order]
        return self

    @property
    def cell_count(self) -> int:
        """Number of occupied cells."""
        return int(np.unique(self._codes).size)

    @property
    def spans_single_block(self) -> bool:
        """
        True when every occupied cell neighbours every other one.

        The grid then returns every pair, so all_pairs is cheaper.
        """
        return self._span[0] <= 2 and self._span[1] <= 2

    def candidate_pairs(self) -> Tuple[np.ndarray, np.ndarray]:
        """All unordered candidate pairs (i < j), sorted by (i, j)."""
        n = len(self._codes)
        i_parts = []
        j_parts = []
        rows = np.arange(n, dtype=np.intp)
        for dx, dy in _OFFSETS:
            target = self._codes + dx * self._width + dy
            start = np.searchsorted(self._sorted_codes, target, side="left")
            stop = np.searchsorted(self._sorted_codes, target, side="right")
            counts = stop - start
            total = int(counts.sum())
            if total == 0:
                continue
            i_idx = np.repeat(rows, counts)
            run_offset = np.arange(total) - np.repeat(np.cumsum(counts) - counts, counts)
            j_idx = self._order[np.repeat(start, counts) + run_offset]
            keep = i_idx < j_idx
            i_parts.append(i_idx[keep])
            j_parts.append(j_idx[keep])

        if not i_parts:
            empty = np.zeros(0, dtype=np.intp)
            return empty, empty.copy()
        i_idx = np.concatenate(i_parts).astype(np.intp)
        j_idx = np.concatenate(j_parts).astype(np.intp)
        order = np.lexsort((j_idx, i_idx))
        return i_idx[order], j_idx[order]


def all_pairs(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """Every unordered pair (i < j) in lexicographic order."""
    i_idx, j_idx = np.triu_indices(n, k=1)
    return i_idx.astype(np.intp), j_idx.astype(np.intp)
