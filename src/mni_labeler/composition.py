"""Cluster composition: which regions a set of coordinates falls in."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np
import pandas as pd

from .atlas.store import NO_MATCH
from .labeling import Labeler

logger = logging.getLogger(__name__)


def cluster_composition(
    coords: np.ndarray | Iterable[Iterable[float]],
    atlas: str,
    labeler: Labeler,
    search_nearest: bool = False,
) -> pd.DataFrame:
    """Summarise the regions covered by a cluster of coordinates.

    Parameters
    ----------
    coords : array-like, shape (n, 3)
        Cluster coordinates in MNI mm (e.g. every voxel of a cluster).
    atlas : str
        Atlas to label against.
    labeler : Labeler
        Labeler holding the atlas store.
    search_nearest : bool
        Assign unlabeled coordinates to their nearest region instead of
        counting them under ``NULL``. Off by default.

    Returns
    -------
    DataFrame
        Columns ``label``, ``count``, ``percent``; sorted by count
        (descending) then label. Percentages sum to 100.
    """
    table = labeler.label_many(coords, search_nearest=search_nearest, atlases=[atlas])
    if table.empty:
        return pd.DataFrame({"label": [], "count": [], "percent": []})

    counts = (
        table[f"{atlas}.label"]
        .value_counts()
        .rename_axis("label")
        .reset_index(name="count")
        .sort_values(["count", "label"], ascending=[False, True], kind="mergesort")
        .reset_index(drop=True)
    )
    counts["percent"] = 100.0 * counts["count"] / counts["count"].sum()

    n_null = int(counts.loc[counts["label"] == str(NO_MATCH), "count"].sum())
    logger.info(
        "Cluster of %d coordinates spans %d regions in '%s' (%d unlabeled)",
        len(table), len(counts) - (1 if n_null else 0), atlas, n_null,
    )
    return counts
