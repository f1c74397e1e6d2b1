"""Atlas Store: immutable label volumes and region tables keyed by atlas name.

An :class:`Atlas` pairs a 3-D integer label volume with its voxel -> MNI
affine and the region table that names each index. Atlases are built once
and never mutated; the only state added after construction is the cached
list of labeled voxels, which is published once under a lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from ..exceptions import UnknownAtlasError

if TYPE_CHECKING:
    from ..config import LabelerConfig

logger = logging.getLogger(__name__)

BACKGROUND_INDEX = 0
_VOXEL_TOLERANCE = 1e-6


class NoMatch(Enum):
    """Marker for "no region name available", distinct from any real name."""

    NO_MATCH = "NULL"

    def __str__(self) -> str:
        return self.value

    def __bool__(self) -> bool:
        return False


NO_MATCH = NoMatch.NO_MATCH


@dataclass(eq=False)
class Atlas:
    """A loaded atlas.

    Attributes
    ----------
    name : str
        Atlas identifier (e.g. ``"aal"``, ``"ba"``).
    volume : ndarray, shape (nx, ny, nz)
        Integer region index per voxel. Made read-only on construction.
    regions : dict[int, str]
        Region table: region index -> region name.
    affine : ndarray, shape (4, 4)
        Voxel index -> MNI (mm) transform. Identity when omitted.
    background : int
        Index meaning "unlabeled"; never named, never a match.
    description : str
        Free-text description shown by the CLI.
    """

    name: str
    volume: np.ndarray
    regions: dict[int, str]
    affine: np.ndarray | None = None
    background: int = BACKGROUND_INDEX
    description: str = ""
    _inverse_affine: np.ndarray = field(init=False, repr=False)
    _labeled: tuple[np.ndarray, np.ndarray] | None = field(init=False, default=None, repr=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        volume = np.asarray(self.volume)
        if volume.ndim != 3:
            raise ValueError(f"Atlas '{self.name}': label volume must be 3-D, got shape {volume.shape}")
        if not np.issubdtype(volume.dtype, np.integer):
            volume = np.rint(volume).astype(np.int32)
        volume = volume.copy()
        volume.setflags(write=False)
        self.volume = volume

        affine = np.eye(4) if self.affine is None else np.asarray(self.affine, dtype=float)
        if affine.shape != (4, 4):
            raise ValueError(f"Atlas '{self.name}': affine must be 4x4, got shape {affine.shape}")
        affine = affine.copy()
        affine.setflags(write=False)
        self.affine = affine
        self._inverse_affine = np.linalg.inv(affine)

        self.background = int(self.background)
        self.regions = {
            int(k): str(v) for k, v in self.regions.items() if int(k) != self.background
        }

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.volume.shape

    @property
    def n_regions(self) -> int:
        return len(self.regions)

    @property
    def n_labeled_voxels(self) -> int:
        return len(self.all_labeled_coordinates()[1])

    def voxel_at(self, coordinate: Sequence[float]) -> tuple[int, int, int] | None:
        """Return the voxel index sitting exactly at an MNI coordinate.

        Returns None when the coordinate does not fall on a voxel centre
        or lies outside the grid.
        """
        coord = np.asarray(coordinate, dtype=float)
        voxel = (self._inverse_affine @ np.append(coord, 1.0))[:3]
        rounded = np.round(voxel)
        if not np.allclose(voxel, rounded, atol=_VOXEL_TOLERANCE):
            return None
        idx = rounded.astype(int)
        if np.any(idx < 0) or np.any(idx >= np.array(self.volume.shape)):
            return None
        return tuple(int(v) for v in idx)

    def region_index_at(self, coordinate: Sequence[float]) -> int:
        """Region index at an exact integer coordinate.

        Out-of-grid and unlabeled coordinates both return the background
        index; neither is an error.
        """
        voxel = self.voxel_at(coordinate)
        if voxel is None:
            return self.background
        return int(self.volume[voxel])

    def name_for_index(self, index: int | None) -> str | NoMatch:
        """Region name for an index, or NO_MATCH for background/unknown indices."""
        if index is None or index == self.background:
            return NO_MATCH
        return self.regions.get(int(index), NO_MATCH)

    def all_labeled_coordinates(self) -> tuple[np.ndarray, np.ndarray]:
        """All non-background voxels as ``(coords_mm, indices)``.

        Rows follow row-major (C-order) traversal of the volume. The arrays
        are computed on first use and shared, read-only, afterwards.

        Returns
        -------
        coords_mm : ndarray, shape (n_labeled, 3)
            MNI coordinates of labeled voxel centres.
        indices : ndarray, shape (n_labeled,)
            Region index of each voxel.
        """
        labeled = self._labeled
        if labeled is not None:
            return labeled

        with self._lock:
            if self._labeled is None:
                mask = self.volume != self.background
                voxels = np.argwhere(mask)
                ones = np.ones((voxels.shape[0], 1))
                coords = (np.hstack([voxels, ones]) @ self.affine.T)[:, :3]
                indices = self.volume[mask]
                coords.setflags(write=False)
                indices.setflags(write=False)
                logger.debug("Atlas '%s': cached %d labeled voxels", self.name, len(indices))
                self._labeled = (coords, indices)
        return self._labeled

    def region_coordinates(self, region_name: str) -> np.ndarray:
        """MNI coordinates of every voxel carrying ``region_name``.

        Unknown names give an empty ``(0, 3)`` array.
        """
        ids = [idx for idx, name in self.regions.items() if name == region_name]
        coords, indices = self.all_labeled_coordinates()
        if not ids:
            return np.empty((0, 3))
        return coords[np.isin(indices, ids)]


class AtlasStore:
    """Read-only collection of atlases keyed by name.

    Parameters
    ----------
    atlases : iterable of Atlas or mapping of name -> Atlas
        Atlases to serve. Order is kept and defines the default request
        order for multi-atlas labeling.
    """

    def __init__(self, atlases: Iterable[Atlas] | Mapping[str, Atlas]):
        if isinstance(atlases, Mapping):
            items = list(atlases.values())
        else:
            items = list(atlases)

        self._atlases: dict[str, Atlas] = {}
        for atlas in items:
            if atlas.name in self._atlases:
                raise ValueError(f"Duplicate atlas name '{atlas.name}'")
            self._atlases[atlas.name] = atlas

    @classmethod
    def from_config(cls, config: LabelerConfig, names: Iterable[str] | None = None) -> AtlasStore:
        """Read every configured atlas (or only ``names``) from disk."""
        from .io import read_atlas

        specs = config.atlases
        if names is not None:
            wanted = list(dict.fromkeys(names))
            missing = [n for n in wanted if n not in specs]
            if missing:
                raise UnknownAtlasError(missing, specs.keys())
            specs = {n: specs[n] for n in wanted}

        atlases = [read_atlas(spec) for spec in specs.values()]
        logger.info("Loaded %d atlases: %s", len(atlases), ", ".join(a.name for a in atlases))
        return cls(atlases)

    @property
    def names(self) -> list[str]:
        return list(self._atlases)

    def __contains__(self, name: object) -> bool:
        return name in self._atlases

    def __iter__(self) -> Iterator[Atlas]:
        return iter(self._atlases.values())

    def __len__(self) -> int:
        return len(self._atlases)

    def load(self, atlas_name: str) -> Atlas:
        """Return the named atlas, raising UnknownAtlasError if unsupported."""
        try:
            return self._atlases[atlas_name]
        except KeyError:
            raise UnknownAtlasError([atlas_name], self.names) from None

    def validate_names(self, atlas_names: Iterable[str]) -> list[str]:
        """Check every name at once; return them de-duplicated in request order."""
        requested = list(dict.fromkeys(atlas_names))
        invalid = [n for n in requested if n not in self._atlases]
        if invalid:
            raise UnknownAtlasError(invalid, self.names)
        return requested
