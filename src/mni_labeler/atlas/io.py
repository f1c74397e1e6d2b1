"""Atlas reference data readers: label volume plus region table.

Volumes are NIfTI images (affine from the header) or bare ``.npy`` arrays
(affine from the config, identity by default). Region tables are either
JSON, mapping ``"<index>"`` to a name or to ``{"name": ...}``, or CSV/TSV
with ``Region_index`` and ``Region_name`` columns.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from ..config import AtlasSpec
from ..exceptions import AtlasFileNotFoundError, AtlasLoadError
from .store import Atlas

logger = logging.getLogger(__name__)

_NIFTI_SUFFIXES = (".nii", ".nii.gz")
_INDEX_COLUMN = "Region_index"
_NAME_COLUMN = "Region_name"


def _require(path: Path, what: str) -> Path:
    path = Path(path)
    if not path.exists():
        raise AtlasFileNotFoundError(f"{what} not found: {path}")
    return path


def load_volume(path: str | Path, affine: np.ndarray | None = None) -> tuple[np.ndarray, np.ndarray]:
    """Load a label volume.

    Parameters
    ----------
    path : str or Path
        NIfTI (``.nii``/``.nii.gz``) or numpy ``.npy`` file.
    affine : ndarray, shape (4, 4), optional
        Voxel -> MNI transform. Overrides the NIfTI header when given;
        required for anything but identity-spaced ``.npy`` volumes.

    Returns
    -------
    label_data : ndarray
        3D integer array of region indices.
    affine : ndarray, shape (4, 4)
    """
    path = _require(path, "Atlas volume")

    if path.name.endswith(_NIFTI_SUFFIXES):
        import nibabel as nib

        try:
            img = nib.load(str(path))
        except Exception as e:
            raise AtlasLoadError(f"Cannot read NIfTI volume {path}: {e}") from e
        label_data = np.rint(np.asarray(img.dataobj)).astype(np.int32)
        header_affine = img.affine
    elif path.suffix == ".npy":
        try:
            label_data = np.load(path)
        except (ValueError, OSError) as e:
            raise AtlasLoadError(f"Cannot read numpy volume {path}: {e}") from e
        header_affine = np.eye(4)
    else:
        raise AtlasLoadError(f"Unsupported volume format: {path.name}")

    if label_data.ndim == 4 and label_data.shape[3] == 1:
        label_data = label_data[..., 0]
    if label_data.ndim != 3:
        raise AtlasLoadError(f"Atlas volume must be 3-D, got shape {label_data.shape}: {path}")

    out_affine = header_affine if affine is None else np.asarray(affine, dtype=float)
    return label_data, np.asarray(out_affine, dtype=float)


def load_region_table(path: str | Path) -> dict[int, str]:
    """Load a region table.

    Returns
    -------
    dict[int, str]
        Region index -> region name.
    """
    path = _require(path, "Region table")

    if path.suffix == ".json":
        try:
            with open(path) as f:
                raw = json.load(f)
        except ValueError as e:
            raise AtlasLoadError(f"Cannot read region table {path}: {e}") from e
        if not isinstance(raw, dict):
            raise AtlasLoadError(f"Region table {path} must be a JSON object of index -> name")

        table = {}
        for key, value in raw.items():
            name = value.get("name") if isinstance(value, dict) else value
            if name is None:
                logger.warning("Region %s in %s has no name, skipping", key, path)
                continue
            try:
                table[int(key)] = str(name)
            except ValueError as e:
                raise AtlasLoadError(f"Region table {path}: index '{key}' is not an integer") from e
        return table

    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    try:
        df = pd.read_csv(path, sep=sep)
    except (ValueError, pd.errors.ParserError) as e:
        raise AtlasLoadError(f"Cannot read region table {path}: {e}") from e
    missing = [c for c in (_INDEX_COLUMN, _NAME_COLUMN) if c not in df.columns]
    if missing:
        raise AtlasLoadError(f"Region table {path} lacks column(s): {', '.join(missing)}")
    df = df.dropna(subset=[_INDEX_COLUMN, _NAME_COLUMN])
    try:
        return {int(i): str(n) for i, n in zip(df[_INDEX_COLUMN], df[_NAME_COLUMN])}
    except ValueError as e:
        raise AtlasLoadError(f"Region table {path}: non-integer {_INDEX_COLUMN} ({e})") from e


def read_atlas(spec: AtlasSpec) -> Atlas:
    """Build an :class:`Atlas` from its configured files."""
    label_data, affine = load_volume(spec.volume, spec.affine)
    regions = load_region_table(spec.labels)

    atlas = Atlas(
        name=spec.name,
        volume=label_data,
        regions=regions,
        affine=affine,
        background=spec.background,
        description=spec.description,
    )

    present = set(np.unique(atlas.volume).tolist()) - {atlas.background}
    unnamed = sorted(present - set(atlas.regions))
    if unnamed:
        logger.warning(
            "Atlas '%s': %d region indices in the volume have no name (e.g. %s)",
            spec.name, len(unnamed), ", ".join(str(i) for i in unnamed[:5]),
        )
    logger.info(
        "Atlas '%s': %s volume, %d named regions",
        spec.name, "x".join(str(s) for s in atlas.shape), atlas.n_regions,
    )
    return atlas
