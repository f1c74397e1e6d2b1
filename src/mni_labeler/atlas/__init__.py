"""Atlas Store: label volumes and region tables for MNI labeling."""

from ..exceptions import AtlasFileNotFoundError, AtlasLoadError
from .store import BACKGROUND_INDEX, NO_MATCH, Atlas, AtlasStore, NoMatch
from .io import load_region_table, load_volume, read_atlas

__all__ = [
    "Atlas",
    "AtlasFileNotFoundError",
    "AtlasLoadError",
    "AtlasStore",
    "BACKGROUND_INDEX",
    "NO_MATCH",
    "NoMatch",
    "load_region_table",
    "load_volume",
    "read_atlas",
]
