"""Synthetic atlas fixtures for testing.

Both atlases share a 61 x 11 x 11 grid at 1 mm covering x in [-30, 30],
y and z in [-5, 5]. (26, 0, 0) is labeled in both; (0, 0, 0) is background
in both.
"""

from __future__ import annotations

import json

import numpy as np
import pytest

from mni_labeler.atlas.store import Atlas, AtlasStore
from mni_labeler.labeling import Labeler

SHAPE = (61, 11, 11)
AFFINE = np.array([
    [1.0, 0.0, 0.0, -30.0],
    [0.0, 1.0, 0.0, -5.0],
    [0.0, 0.0, 1.0, -5.0],
    [0.0, 0.0, 0.0, 1.0],
])

AAL_REGIONS = {1: "Putamen_R", 2: "Putamen_L", 3: "Caudate_R"}
BA_REGIONS = {6: "Brodmann area 6", 48: "Brodmann area 48"}


def mni_to_voxel(x: int, y: int, z: int) -> tuple[int, int, int]:
    return x + 30, y + 5, z + 5


def _make_aal_volume() -> np.ndarray:
    vol = np.zeros(SHAPE, dtype=np.int16)
    vol[50:61, :, :] = 1  # x in [20, 30]
    vol[0:11, :, :] = 2  # x in [-30, -20]
    vol[mni_to_voxel(10, 0, 5)] = 3
    return vol


def _make_ba_volume() -> np.ndarray:
    vol = np.zeros(SHAPE, dtype=np.int16)
    vol[54:59, :, 5:11] = 6  # x in [24, 28], z in [0, 5]
    vol[20:27, :, :] = 48  # x in [-10, -4]
    return vol


def brute_force_nearest(atlas: Atlas, coord) -> float:
    """Reference minimum distance over every labeled voxel."""
    voxels = np.argwhere(atlas.volume != atlas.background)
    mm = voxels @ atlas.affine[:3, :3].T + atlas.affine[:3, 3]
    return float(np.linalg.norm(mm - np.asarray(coord, dtype=float), axis=1).min())


@pytest.fixture
def aal_atlas():
    return Atlas(name="aal", volume=_make_aal_volume(), regions=AAL_REGIONS, affine=AFFINE)


@pytest.fixture
def ba_atlas():
    return Atlas(name="ba", volume=_make_ba_volume(), regions=BA_REGIONS, affine=AFFINE)


@pytest.fixture
def store(aal_atlas, ba_atlas):
    return AtlasStore([aal_atlas, ba_atlas])


@pytest.fixture
def labeler(store):
    return Labeler(store)


@pytest.fixture
def atlas_dir(tmp_path):
    """Write aal as NIfTI + CSV and ba as .npy + JSON."""
    import nibabel as nib

    data_dir = tmp_path / "atlases"
    data_dir.mkdir()

    nib.save(nib.Nifti1Image(_make_aal_volume(), AFFINE), str(data_dir / "aal.nii.gz"))
    lines = ["Region_index,Region_name"] + [f"{k},{v}" for k, v in AAL_REGIONS.items()]
    (data_dir / "aal_labels.csv").write_text("\n".join(lines) + "\n")

    np.save(data_dir / "ba.npy", _make_ba_volume())
    with open(data_dir / "ba_labels.json", "w") as f:
        json.dump({str(k): {"name": v} for k, v in BA_REGIONS.items()}, f)

    return data_dir


@pytest.fixture
def config_yaml(tmp_path, atlas_dir):
    """Config with relative paths pointing at the synthetic atlas files."""
    config_text = """
name: "Synthetic MNI atlases"
search: kdtree
search_nearest: true

atlases:
  aal:
    volume: atlases/aal.nii.gz
    labels: atlases/aal_labels.csv
    description: "Automated Anatomical Labeling (synthetic)"
  ba:
    volume: atlases/ba.npy
    labels: atlases/ba_labels.json
    affine:
      - [1, 0, 0, -30]
      - [0, 1, 0, -5]
      - [0, 0, 1, -5]
      - [0, 0, 0, 1]
"""
    config_path = tmp_path / "atlases.yaml"
    config_path.write_text(config_text)
    return config_path


@pytest.fixture
def coords_csv(tmp_path):
    path = tmp_path / "coords.csv"
    path.write_text("x,y,z\n26,0,0\n26.4,0.2,-0.1\n0,0,0\n-25,1,1\n")
    return path
