"""YAML-driven atlas configuration loader."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import yaml

SEARCH_STRATEGIES = ("kdtree", "linear")


@dataclass
class AtlasSpec:
    """Where one atlas's reference data lives on disk."""

    name: str
    volume: Path
    labels: Path
    affine: np.ndarray | None = None
    background: int = 0
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any], base_dir: Path) -> AtlasSpec:
        affine = data.get("affine")
        return cls(
            name=name,
            volume=_resolve(data["volume"], base_dir),
            labels=_resolve(data["labels"], base_dir),
            affine=np.asarray(affine, dtype=float) if affine is not None else None,
            background=int(data.get("background", 0)),
            description=data.get("description", ""),
        )


@dataclass
class LabelerConfig:
    """Complete labeler configuration loaded from YAML.

    Attributes
    ----------
    name : str
        Human-readable name for this atlas collection.
    atlases : dict[str, AtlasSpec]
        Atlas name -> on-disk location, in file order.
    search : str
        Nearest-neighbour strategy, ``"kdtree"`` or ``"linear"``.
    search_nearest : bool
        Default distance mode for the CLI.
    raw : dict
        The raw parsed YAML for extension.
    """

    name: str
    atlases: dict[str, AtlasSpec]
    search: str = "kdtree"
    search_nearest: bool = True
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_yaml(cls, path: str | Path) -> LabelerConfig:
        """Load a labeler config from a YAML file.

        Relative atlas paths resolve against the YAML file's directory.
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        base_dir = path.parent
        atlases = {
            name: AtlasSpec.from_dict(name, spec, base_dir)
            for name, spec in (data.get("atlases") or {}).items()
        }

        return cls(
            name=data.get("name", path.stem),
            atlases=atlases,
            search=data.get("search", "kdtree"),
            search_nearest=bool(data.get("search_nearest", True)),
            raw=data,
        )

    def get_atlas_spec(self, atlas_name: str) -> AtlasSpec:
        return self.atlases[atlas_name]

    def validate(self) -> list[str]:
        """Check configuration for common errors. Returns list of warnings."""
        warnings = []
        if not self.atlases:
            warnings.append("No atlases defined")
        if self.search not in SEARCH_STRATEGIES:
            warnings.append(
                f"Unknown search strategy '{self.search}' (expected one of {', '.join(SEARCH_STRATEGIES)})"
            )
        for spec in self.atlases.values():
            if not spec.volume.exists():
                warnings.append(f"Atlas '{spec.name}': volume file does not exist: {spec.volume}")
            if not spec.labels.exists():
                warnings.append(f"Atlas '{spec.name}': labels file does not exist: {spec.labels}")
            if spec.affine is not None and spec.affine.shape != (4, 4):
                warnings.append(f"Atlas '{spec.name}': affine must be 4x4, got {spec.affine.shape}")
        return warnings


def _resolve(value: str | Path, base_dir: Path) -> Path:
    p = Path(value).expanduser()
    return p if p.is_absolute() else base_dir / p
