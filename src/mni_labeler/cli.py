"""CLI entry point for mni-labeler."""

from __future__ import annotations

import argparse
import logging
import math
import sys
from pathlib import Path

import numpy as np
import pandas as pd

from .atlas.store import AtlasStore
from .composition import cluster_composition
from .config import LabelerConfig
from .exceptions import CoordinateInputError, LabelerError
from .labeling import Labeler
from .resolver import Resolver


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _labeler(config: LabelerConfig, atlases: list[str] | None = None) -> Labeler:
    store = AtlasStore.from_config(config, names=atlases)
    return Labeler(store, Resolver(store, search=config.search))


def _search_nearest(args, config: LabelerConfig) -> bool:
    if args.distance is None:
        return config.search_nearest
    return args.distance


def _read_coords(path: Path) -> np.ndarray:
    try:
        df = pd.read_csv(path)
    except (OSError, ValueError) as e:
        raise CoordinateInputError(f"Cannot read coordinates from {path}: {e}") from e
    missing = [c for c in ("x", "y", "z") if c not in df.columns]
    if missing:
        raise CoordinateInputError(f"{path}: missing column(s) {', '.join(missing)}")
    try:
        return df[["x", "y", "z"]].to_numpy(dtype=float)
    except ValueError as e:
        raise CoordinateInputError(f"{path}: x, y, z must be numeric ({e})") from e


def _format_value(value) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "NULL"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def cmd_label(args):
    """Label a single coordinate."""
    config = LabelerConfig.from_yaml(args.config)
    labeler = _labeler(config, args.atlas)
    result = labeler.label(
        args.x, args.y, args.z,
        search_nearest=_search_nearest(args, config),
        atlases=args.atlas,
    )
    print(f"MNI ({result.coordinate[0]}, {result.coordinate[1]}, {result.coordinate[2]})")
    for key, value in result.to_flat().items():
        print(f"  {key}: {_format_value(value)}")


def cmd_table(args):
    """Label every coordinate in a CSV with x, y, z columns."""
    config = LabelerConfig.from_yaml(args.config)
    labeler = _labeler(config, args.atlas)
    coords = _read_coords(args.input)
    table = labeler.label_many(coords, search_nearest=_search_nearest(args, config), atlases=args.atlas)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(args.output, index=False)
    print(f"Labeled {len(table)} coordinates -> {args.output}")


def cmd_composition(args):
    """Show the region composition of a cluster."""
    config = LabelerConfig.from_yaml(args.config)
    labeler = _labeler(config, [args.atlas])
    coords = _read_coords(args.input)
    comp = cluster_composition(coords, args.atlas, labeler, search_nearest=args.nearest)
    print(f"Cluster composition ({len(coords)} coordinates, atlas '{args.atlas}'):")
    for label, count, percent in zip(comp["label"], comp["count"], comp["percent"]):
        print(f"  {label}: {count} ({percent:.1f}%)")


def cmd_region(args):
    """Print the MNI coordinates of a named region."""
    config = LabelerConfig.from_yaml(args.config)
    store = AtlasStore.from_config(config, names=[args.atlas])
    coords = store.load(args.atlas).region_coordinates(args.region)
    if len(coords) == 0:
        print(f"No region named '{args.region}' in atlas '{args.atlas}'")
        sys.exit(1)
    print(f"{args.region}: {len(coords)} voxels (centroid {np.round(coords.mean(axis=0), 1).tolist()})")
    for x, y, z in coords:
        print(f"  {x:g} {y:g} {z:g}")


def cmd_list(args):
    """List configured atlases."""
    config = LabelerConfig.from_yaml(args.config)
    store = AtlasStore.from_config(config)
    print(f"Atlases in {config.name}:")
    for atlas in store:
        desc = f" - {atlas.description}" if atlas.description else ""
        print(f"  {atlas.name}: {atlas.n_regions} regions, {atlas.n_labeled_voxels} labeled voxels{desc}")


def cmd_validate(args):
    """Validate a labeler configuration."""
    config = LabelerConfig.from_yaml(args.config)
    issues = config.validate()

    print(f"Config: {args.config}")
    print(f"Atlases: {len(config.atlases)}")
    for spec in config.atlases.values():
        print(f"  {spec.name}: {spec.volume.name} + {spec.labels.name}")
    print(f"Search: {config.search}")

    if issues:
        print(f"\nWarnings ({len(issues)}):")
        for issue in issues:
            print(f"  - {issue}")
        sys.exit(1)
    else:
        print("\nValidation passed.")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="mni-labeler",
        description="Label MNI coordinates with anatomical region names",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", required=True, type=Path, help="Path to atlas YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # label
    p_label = subparsers.add_parser("label", help="Label one MNI coordinate")
    p_label.add_argument("x", type=float)
    p_label.add_argument("y", type=float)
    p_label.add_argument("z", type=float)
    p_label.add_argument("--atlas", action="append", help="Atlas to use (repeatable; default all)")
    p_label.add_argument(
        "--distance", action=argparse.BooleanOptionalAction, default=None,
        help="Search for the nearest region when there is no exact match (default: from config)",
    )
    p_label.set_defaults(func=cmd_label)

    # table
    p_table = subparsers.add_parser("table", help="Label coordinates from a CSV")
    p_table.add_argument("--input", required=True, type=Path, help="CSV with x, y, z columns")
    p_table.add_argument("--output", required=True, type=Path, help="Output CSV")
    p_table.add_argument("--atlas", action="append", help="Atlas to use (repeatable; default all)")
    p_table.add_argument(
        "--distance", action=argparse.BooleanOptionalAction, default=None,
        help="Search for the nearest region when there is no exact match (default: from config)",
    )
    p_table.set_defaults(func=cmd_table)

    # composition
    p_comp = subparsers.add_parser("composition", help="Region composition of a cluster")
    p_comp.add_argument("--input", required=True, type=Path, help="CSV with x, y, z columns")
    p_comp.add_argument("--atlas", required=True, help="Atlas to use")
    p_comp.add_argument("--nearest", action="store_true", help="Assign unlabeled coordinates to nearest region")
    p_comp.set_defaults(func=cmd_composition)

    # region
    p_region = subparsers.add_parser("region", help="MNI coordinates of a region")
    p_region.add_argument("--atlas", required=True, help="Atlas to use")
    p_region.add_argument("region", help="Region name")
    p_region.set_defaults(func=cmd_region)

    # list
    p_list = subparsers.add_parser("list", help="List configured atlases")
    p_list.set_defaults(func=cmd_list)

    # validate
    p_val = subparsers.add_parser("validate", help="Validate atlas config")
    p_val.set_defaults(func=cmd_validate)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        args.func(args)
    except LabelerError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
