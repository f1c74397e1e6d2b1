"""Tests for the atlas store and atlas readers."""

import pickle
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from mni_labeler.atlas import NO_MATCH, Atlas, AtlasStore, load_region_table, load_volume, read_atlas
from mni_labeler.config import AtlasSpec
from mni_labeler.exceptions import AtlasFileNotFoundError, AtlasLoadError, LabelerError, UnknownAtlasError

from conftest import AFFINE, mni_to_voxel


def test_region_index_at_labeled_voxel(aal_atlas):
    assert aal_atlas.region_index_at((26, 0, 0)) == 1
    assert aal_atlas.region_index_at((-25, 3, -2)) == 2
    assert aal_atlas.region_index_at((10, 0, 5)) == 3


def test_region_index_at_background_and_out_of_grid(aal_atlas):
    assert aal_atlas.region_index_at((0, 0, 0)) == 0
    assert aal_atlas.region_index_at((31, 0, 0)) == 0
    assert aal_atlas.region_index_at((0, 0, 100)) == 0
    assert aal_atlas.region_index_at((-500, -500, -500)) == 0


def test_coordinate_between_voxel_centres_is_background():
    vol = np.ones((5, 5, 5), dtype=int)
    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    atlas = Atlas(name="coarse", volume=vol, regions={1: "Everything"}, affine=affine)
    assert atlas.region_index_at((2, 2, 2)) == 1
    assert atlas.region_index_at((3, 2, 2)) == 0
    assert atlas.voxel_at((3, 2, 2)) is None


def test_name_for_index(aal_atlas):
    assert aal_atlas.name_for_index(1) == "Putamen_R"
    assert aal_atlas.name_for_index(0) is NO_MATCH
    assert aal_atlas.name_for_index(42) is NO_MATCH
    assert aal_atlas.name_for_index(None) is NO_MATCH


def test_background_never_named():
    atlas = Atlas(name="t", volume=np.zeros((2, 2, 2), dtype=int), regions={0: "Background", 1: "A"})
    assert atlas.name_for_index(0) is NO_MATCH
    assert 0 not in atlas.regions


def test_no_match_is_distinct_from_names():
    assert str(NO_MATCH) == "NULL"
    assert not NO_MATCH
    assert NO_MATCH != "NULL"


def test_all_labeled_coordinates_row_major(aal_atlas):
    coords, indices = aal_atlas.all_labeled_coordinates()
    assert coords.shape == (len(indices), 3)
    assert len(indices) == int(np.count_nonzero(aal_atlas.volume))
    assert 0 not in indices
    # first row-major labeled voxel is the x = -30 corner of Putamen_L
    np.testing.assert_array_equal(coords[0], [-30, -5, -5])
    assert indices[0] == 2


def test_all_labeled_coordinates_cached(aal_atlas):
    first = aal_atlas.all_labeled_coordinates()
    assert aal_atlas.all_labeled_coordinates() is first


def test_all_labeled_coordinates_concurrent_first_access(ba_atlas):
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: ba_atlas.all_labeled_coordinates(), range(16)))
    assert all(r is results[0] for r in results)


def test_atlas_is_read_only(aal_atlas):
    with pytest.raises(ValueError):
        aal_atlas.volume[0, 0, 0] = 5
    coords, _ = aal_atlas.all_labeled_coordinates()
    with pytest.raises(ValueError):
        coords[0, 0] = 1.0


def test_atlas_rejects_bad_shapes():
    with pytest.raises(ValueError):
        Atlas(name="flat", volume=np.zeros((4, 4)), regions={})
    with pytest.raises(ValueError):
        Atlas(name="bad_affine", volume=np.zeros((2, 2, 2)), regions={}, affine=np.eye(3))


def test_region_coordinates(aal_atlas):
    coords = aal_atlas.region_coordinates("Caudate_R")
    np.testing.assert_array_equal(coords, [[10, 0, 5]])
    assert len(aal_atlas.region_coordinates("Putamen_R")) == 11 * 11 * 11
    assert aal_atlas.region_coordinates("Nowhere").shape == (0, 3)


def test_store_load(store, aal_atlas):
    assert store.names == ["aal", "ba"]
    assert store.load("aal") is aal_atlas
    assert "ba" in store
    assert len(store) == 2


def test_store_load_unknown(store):
    with pytest.raises(UnknownAtlasError) as excinfo:
        store.load("harvard_oxford")
    assert excinfo.value.names == ["harvard_oxford"]
    assert isinstance(excinfo.value, KeyError)
    assert isinstance(excinfo.value, LabelerError)


def test_validate_names_reports_every_invalid_name(store):
    with pytest.raises(UnknownAtlasError) as excinfo:
        store.validate_names(["aal", "foo", "ba", "bar"])
    assert excinfo.value.names == ["foo", "bar"]
    assert "foo, bar" in str(excinfo.value)
    assert "does not exist" in str(excinfo.value)


def test_validate_names_dedupes_in_order(store):
    assert store.validate_names(["ba", "aal", "ba"]) == ["ba", "aal"]


def test_store_rejects_duplicate_names(aal_atlas):
    with pytest.raises(ValueError):
        AtlasStore([aal_atlas, aal_atlas])


def test_load_region_table_csv_and_json(atlas_dir):
    aal = load_region_table(atlas_dir / "aal_labels.csv")
    assert aal == {1: "Putamen_R", 2: "Putamen_L", 3: "Caudate_R"}
    ba = load_region_table(atlas_dir / "ba_labels.json")
    assert ba == {6: "Brodmann area 6", 48: "Brodmann area 48"}


def test_load_region_table_missing_columns(tmp_path):
    path = tmp_path / "labels.csv"
    path.write_text("id,name\n1,A\n")
    with pytest.raises(AtlasLoadError):
        load_region_table(path)


def test_load_volume_nifti(atlas_dir):
    data, affine = load_volume(atlas_dir / "aal.nii.gz")
    assert data.shape == (61, 11, 11)
    assert data[mni_to_voxel(26, 0, 0)] == 1
    np.testing.assert_allclose(affine, AFFINE)


def test_load_volume_missing_file(tmp_path):
    with pytest.raises(AtlasFileNotFoundError) as excinfo:
        load_volume(tmp_path / "nope.nii.gz")
    assert isinstance(excinfo.value, FileNotFoundError)
    assert isinstance(excinfo.value, AtlasLoadError)


def test_load_region_table_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_region_table(tmp_path / "nope.json")


def test_load_volume_unsupported_format(tmp_path):
    path = tmp_path / "atlas.mgz"
    path.write_bytes(b"")
    with pytest.raises(AtlasLoadError):
        load_volume(path)


def test_read_atlas_npy_with_affine(atlas_dir):
    spec = AtlasSpec(
        name="ba",
        volume=atlas_dir / "ba.npy",
        labels=atlas_dir / "ba_labels.json",
        affine=AFFINE,
    )
    atlas = read_atlas(spec)
    assert atlas.name == "ba"
    assert atlas.region_index_at((26, 0, 0)) == 6
    assert atlas.name_for_index(48) == "Brodmann area 48"


@pytest.mark.parametrize(
    "filename, content",
    [
        ("labels.json", "{not json"),
        ("labels.json", '{"Putamen": 1}'),
        ("labels.json", '["Putamen_R", "Putamen_L"]'),
        ("labels.csv", "Region_index,Region_name\nfirst,Putamen_R\n"),
        ("labels.csv", 'Region_index,Region_name\n1,"Putamen_R\n'),
        ("labels.csv", ""),
    ],
)
def test_unreadable_region_table(tmp_path, filename, content):
    path = tmp_path / filename
    path.write_text(content)
    with pytest.raises(AtlasLoadError) as excinfo:
        load_region_table(path)
    assert isinstance(excinfo.value, LabelerError)


def test_unreadable_npy_volume(tmp_path):
    path = tmp_path / "broken.npy"
    path.write_bytes(b"not a numpy file")
    with pytest.raises(AtlasLoadError):
        load_volume(path)


def test_unknown_atlas_error_pickles(store):
    with pytest.raises(UnknownAtlasError) as excinfo:
        store.validate_names(["aal", "foo", "bar"])
    restored = pickle.loads(pickle.dumps(excinfo.value))
    assert restored.names == ["foo", "bar"]
    assert restored.available == ["aal", "ba"]
    assert str(restored) == str(excinfo.value)
