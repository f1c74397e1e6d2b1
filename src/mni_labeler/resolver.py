"""Coordinate -> region index resolution for a single atlas.

Resolution tries the exact voxel first. When that voxel is background and
nearest-neighbour mode is on, every labeled voxel of the atlas is searched
for the smallest Euclidean distance (mm). Among equidistant voxels the one
that comes first in row-major order of the label volume wins, for both
search strategies.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

from .atlas.store import Atlas, AtlasStore
from .config import SEARCH_STRATEGIES

logger = logging.getLogger(__name__)

# Radius slack when collecting tie candidates from the k-d tree
_TIE_SLACK_MM = 1e-6


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of resolving one coordinate against one atlas.

    ``distance`` is 0.0 for an exact match, the nearest-voxel distance in
    mm for a fallback match, and None when nothing was found. ``index`` is
    the region index, or None when nothing was found.
    """

    distance: float | None
    index: int | None

    @property
    def found(self) -> bool:
        return self.index is not None

    @property
    def exact(self) -> bool:
        return self.found and self.distance == 0.0


def _check_coordinate(coordinate: Sequence[float]) -> np.ndarray:
    coord = np.asarray(coordinate, dtype=float)
    if coord.shape != (3,):
        raise ValueError(f"Coordinate must be (x, y, z), got shape {coord.shape}")
    if not np.all(np.isfinite(coord)):
        raise ValueError(f"Coordinate must be finite, got {coord.tolist()}")
    # the label grid is integer-indexed; np.round rounds halves to even
    return np.round(coord)


def nearest_linear(coords: np.ndarray, query: np.ndarray) -> tuple[int, float]:
    """Exhaustive scan. Returns (row of nearest voxel, distance in mm)."""
    d2 = np.sum((coords - query) ** 2, axis=1)
    pos = int(np.argmin(d2))
    return pos, float(np.sqrt(d2[pos]))


def nearest_kdtree(tree: cKDTree, coords: np.ndarray, query: np.ndarray) -> tuple[int, float]:
    """k-d tree search with the same answer as :func:`nearest_linear`.

    The tree gives the minimum distance; all voxels inside that radius
    are then re-scored exactly and the lowest row wins.
    """
    dist, _ = tree.query(query)
    candidates = np.sort(np.asarray(tree.query_ball_point(query, dist + _TIE_SLACK_MM), dtype=int))
    d2 = np.sum((coords[candidates] - query) ** 2, axis=1)
    best = int(np.argmin(d2))
    return int(candidates[best]), float(np.sqrt(d2[best]))


class Resolver:
    """Resolve coordinates to region indices against atlases in a store.

    Parameters
    ----------
    store : AtlasStore
        Source of atlases.
    search : str
        ``"kdtree"`` (default) builds one scipy k-d tree per atlas on first
        use; ``"linear"`` scans every labeled voxel per query.
    """

    def __init__(self, store: AtlasStore, search: str = "kdtree"):
        if search not in SEARCH_STRATEGIES:
            raise ValueError(
                f"Unknown search strategy '{search}'. Available: {', '.join(SEARCH_STRATEGIES)}"
            )
        self.store = store
        self.search = search
        self._trees: dict[Atlas, cKDTree] = {}
        self._lock = threading.Lock()

    def _tree(self, atlas: Atlas) -> cKDTree:
        tree = self._trees.get(atlas)
        if tree is not None:
            return tree
        with self._lock:
            if atlas not in self._trees:
                coords, _ = atlas.all_labeled_coordinates()
                logger.debug("Building k-d tree for '%s' (%d voxels)", atlas.name, len(coords))
                self._trees[atlas] = cKDTree(coords)
            return self._trees[atlas]

    def resolve(
        self,
        atlas: str | Atlas,
        coordinate: Sequence[float],
        search_nearest: bool = True,
    ) -> ResolutionResult:
        """Resolve an MNI coordinate against one atlas.

        Parameters
        ----------
        atlas : str or Atlas
            Atlas name (looked up in the store) or an atlas instance.
        coordinate : sequence of 3 numbers
            MNI coordinate in mm. Fractional values are rounded half to
            even before lookup, so both the exact match and the nearest
            distance use the integer grid point.
        search_nearest : bool
            Fall back to the nearest labeled voxel when the exact voxel is
            background. When False, a miss returns immediately.

        Returns
        -------
        ResolutionResult

        Raises
        ------
        UnknownAtlasError
            If ``atlas`` is a name the store does not hold.
        """
        if not isinstance(atlas, Atlas):
            atlas = self.store.load(atlas)
        coord = _check_coordinate(coordinate)

        index = atlas.region_index_at(coord)
        if index != atlas.background:
            return ResolutionResult(distance=0.0, index=index)

        if not search_nearest:
            return ResolutionResult(distance=None, index=None)

        coords, indices = atlas.all_labeled_coordinates()
        if len(indices) == 0:
            logger.warning("Atlas '%s' has no labeled voxels", atlas.name)
            return ResolutionResult(distance=None, index=None)

        if self.search == "kdtree":
            pos, dist = nearest_kdtree(self._tree(atlas), coords, coord)
        else:
            pos, dist = nearest_linear(coords, coord)

        logger.debug(
            "'%s': no exact match at %s, nearest index %d at %.3f mm",
            atlas.name, coord.tolist(), int(indices[pos]), dist,
        )
        return ResolutionResult(distance=dist, index=int(indices[pos]))
