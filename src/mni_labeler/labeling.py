"""Label MNI coordinates with region names from one or more atlases.

The input coordinate is rounded to the integer grid (round half to even),
atlas names are validated up front, and the resolver runs once per atlas.
Each per-atlas outcome is a :class:`Matched` or :class:`NotFound` record;
:class:`LabelResult` keeps them in request order and can flatten them into
the ``"<atlas>.distance"`` / ``"<atlas>.label"`` layout.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Union

import numpy as np
import pandas as pd

from .atlas.store import NO_MATCH, AtlasStore, NoMatch
from .resolver import Resolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Matched:
    """A named region was found, exactly (distance 0) or as the nearest voxel."""

    atlas: str
    label: str
    distance: float
    index: int

    @property
    def exact(self) -> bool:
        return self.distance == 0.0


@dataclass(frozen=True)
class NotFound:
    """No region name available.

    ``distance`` is None when no search ran; it is set when the nearest
    voxel's index has no entry in the region table.
    """

    atlas: str
    distance: float | None = None
    index: int | None = None

    @property
    def label(self) -> NoMatch:
        return NO_MATCH


AtlasLabel = Union[Matched, NotFound]


class LabelResult(Mapping):
    """Read-only mapping of atlas name -> :class:`Matched` | :class:`NotFound`.

    Iteration follows the order the atlases were requested in.
    """

    def __init__(self, coordinate: tuple[int, int, int], labels: Iterable[AtlasLabel]):
        self.coordinate = coordinate
        self._labels = {lbl.atlas: lbl for lbl in labels}

    def __getitem__(self, atlas: str) -> AtlasLabel:
        return self._labels[atlas]

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return f"LabelResult(coordinate={self.coordinate}, labels={list(self._labels.values())})"

    def to_flat(self, render: bool = False) -> dict[str, object]:
        """Flatten to ``{"<atlas>.distance": ..., "<atlas>.label": ...}``.

        Parameters
        ----------
        render : bool
            If True, NO_MATCH becomes the string ``"NULL"`` and a missing
            distance becomes NaN, for tabular output.
        """
        flat: dict[str, object] = {}
        for atlas, lbl in self._labels.items():
            distance = lbl.distance
            label = lbl.label
            if render:
                distance = math.nan if distance is None else distance
                label = str(label)
            flat[f"{atlas}.distance"] = distance
            flat[f"{atlas}.label"] = label
        return flat


def round_coordinate(x: float, y: float, z: float) -> tuple[int, int, int]:
    """Round a real-valued MNI coordinate onto the integer grid.

    Halves round to the nearest even integer (``0.5 -> 0``, ``1.5 -> 2``,
    ``-2.5 -> -2``).
    """
    values = []
    for v in (x, y, z):
        v = float(v)
        if not math.isfinite(v):
            raise ValueError(f"Coordinate values must be finite, got ({x}, {y}, {z})")
        values.append(int(round(v)))
    return tuple(values)


class Labeler:
    """Label coordinates against the atlases of a store.

    Parameters
    ----------
    store : AtlasStore
        Atlases available for labeling.
    resolver : Resolver, optional
        Resolver to use. Defaults to a k-d tree resolver over ``store``;
        k-d trees are cached on the resolver, so reuse one Labeler for
        many queries.
    """

    def __init__(self, store: AtlasStore, resolver: Resolver | None = None):
        self.store = store
        self.resolver = resolver or Resolver(store)

    def _requested(self, atlases: str | Iterable[str] | None) -> list[str]:
        if atlases is None:
            return self.store.names
        if isinstance(atlases, str):
            atlases = [atlases]
        return self.store.validate_names(atlases)

    def _label_one(self, atlas_name: str, coordinate: tuple[int, int, int], search_nearest: bool) -> AtlasLabel:
        atlas = self.store.load(atlas_name)
        result = self.resolver.resolve(atlas, coordinate, search_nearest=search_nearest)
        name = atlas.name_for_index(result.index)
        if name is NO_MATCH:
            return NotFound(atlas=atlas_name, distance=result.distance, index=result.index)
        return Matched(atlas=atlas_name, label=name, distance=result.distance, index=result.index)

    def label(
        self,
        x: float,
        y: float,
        z: float,
        search_nearest: bool = True,
        atlases: str | Iterable[str] | None = None,
    ) -> LabelResult:
        """Label one MNI coordinate.

        Parameters
        ----------
        x, y, z : float
            MNI coordinate in mm; rounded before lookup.
        search_nearest : bool
            Report the closest region when there is no exact match.
            Turning it off skips the search entirely.
        atlases : str or iterable of str, optional
            Atlases to use, in output order. All store atlases by default.

        Returns
        -------
        LabelResult

        Raises
        ------
        UnknownAtlasError
            If any requested atlas is unsupported; lists all of them and
            no atlas is resolved.
        """
        names = self._requested(atlases)
        coordinate = round_coordinate(x, y, z)
        labels = [self._label_one(name, coordinate, search_nearest) for name in names]
        logger.debug("Labeled %s with %d atlases", coordinate, len(labels))
        return LabelResult(coordinate, labels)

    def label_many(
        self,
        coords: np.ndarray | Iterable[Iterable[float]],
        search_nearest: bool = True,
        atlases: str | Iterable[str] | None = None,
    ) -> pd.DataFrame:
        """Label many coordinates; one row per coordinate.

        Returns
        -------
        DataFrame
            Columns ``x, y, z`` (as given) followed by the rendered flat
            columns of :meth:`LabelResult.to_flat`.
        """
        names = self._requested(atlases)
        arr = np.asarray(coords, dtype=float)
        if arr.size == 0:
            arr = arr.reshape(0, 3)
        if arr.ndim != 2 or arr.shape[1] != 3:
            raise ValueError(f"Coordinates must have shape (n, 3), got {arr.shape}")

        rows = []
        for x, y, z in arr:
            result = self.label(x, y, z, search_nearest=search_nearest, atlases=names)
            rows.append({"x": x, "y": y, "z": z, **result.to_flat(render=True)})

        columns = ["x", "y", "z"] + [f"{n}.{field}" for n in names for field in ("distance", "label")]
        logger.info("Labeled %d coordinates with %s", len(rows), ", ".join(names))
        return pd.DataFrame(rows, columns=columns)


def label_coordinate(
    x: float,
    y: float,
    z: float,
    search_nearest: bool = True,
    atlases: str | Iterable[str] | None = None,
    *,
    store: AtlasStore,
    resolver: Resolver | None = None,
) -> LabelResult:
    """Functional form of :meth:`Labeler.label`."""
    return Labeler(store, resolver).label(x, y, z, search_nearest=search_nearest, atlases=atlases)


def label_coordinates(
    coords: np.ndarray | Iterable[Iterable[float]],
    search_nearest: bool = True,
    atlases: str | Iterable[str] | None = None,
    *,
    store: AtlasStore,
    resolver: Resolver | None = None,
) -> pd.DataFrame:
    """Functional form of :meth:`Labeler.label_many`."""
    return Labeler(store, resolver).label_many(coords, search_nearest=search_nearest, atlases=atlases)
