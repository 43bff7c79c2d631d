#!/usr/bin/env python3
"""
Index Rebuild Utility
Rebuilds the HNSW reference index from the reference catalog and writes a fresh snapshot.
Run after catalog changes or when warmup reports a stale/corrupt snapshot.
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from geomatch.core.catalog import load_catalog, write_catalog
from geomatch.core.config import get_catalog_path, get_hnsw_params, get_snapshot_path
from geomatch.core.errors import GeoMatchError
from geomatch.core.synthetic import generate_synthetic_catalog
from geomatch.vector.hnsw import HNSWIndex, HNSWParams
from geomatch.vector.snapshot import load_snapshot, save_snapshot


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Rebuild the reference index snapshot from the catalog.")
    parser.add_argument("--catalog", default=None, help="Catalog file (.json or .jsonl)")
    parser.add_argument("--snapshot", default=None, help="Snapshot output path")
    parser.add_argument("--dimension", type=int, default=None, help="Expected embedding dimension")
    parser.add_argument("--m", type=int, default=None, help="HNSW neighbors per node")
    parser.add_argument("--ef-construction", type=int, default=None, help="HNSW construction frontier")
    parser.add_argument("--seed", type=int, default=None, help="Level assignment seed")
    parser.add_argument("--synthetic", type=int, default=0, metavar="N",
                        help="Write a synthetic catalog of N references first")
    return parser.parse_args(argv)


def main(argv=None):
    """Rebuild the reference index from the catalog."""
    args = parse_args(argv)
    catalog_path = Path(args.catalog or get_catalog_path())
    snapshot_path = Path(args.snapshot or get_snapshot_path())

    print("Starting reference index rebuild...")

    try:
        defaults = get_hnsw_params()
        params = HNSWParams(
            m=args.m or defaults.m,
            ef_construction=args.ef_construction or defaults.ef_construction,
            seed=defaults.seed if args.seed is None else args.seed,
        )
    except GeoMatchError as e:
        print(f"ERROR: Invalid index parameters: {e}")
        sys.exit(1)

    if args.synthetic:
        if not args.dimension:
            print("ERROR: --dimension is required with --synthetic")
            sys.exit(1)
        references = generate_synthetic_catalog(args.synthetic, args.dimension)
        write_catalog(catalog_path, references, args.dimension)
        print(f"✓ Wrote synthetic catalog with {len(references)} references to {catalog_path}")

    try:
        catalog = load_catalog(catalog_path, args.dimension)
    except GeoMatchError as e:
        print(f"ERROR: Failed to load catalog: {e}")
        sys.exit(1)

    print(f"Found {catalog.accepted} references in catalog (dimension {catalog.dimension})")
    if catalog.rejected:
        print(f"WARNING: Rejected {catalog.rejected} invalid records")
        for locator, reason in catalog.rejections[:5]:
            print(f"  ... {locator}: {reason}")

    try:
        index = HNSWIndex.build(catalog.references, params, catalog.dimension)
    except GeoMatchError as e:
        print(f"ERROR: Failed to build index: {e}")
        sys.exit(1)

    print(f"✓ Built index with {len(index)} nodes (max level {index.max_level}, M={params.m})")
    unreachable = index.unreachable_count()
    if unreachable:
        print(f"WARNING: {unreachable} nodes unreachable from the entry point")

    try:
        save_snapshot(index, snapshot_path)
    except (OSError, GeoMatchError) as e:
        print(f"ERROR: Failed to save snapshot: {e}")
        sys.exit(1)

    print(f"✓ Saved snapshot to {snapshot_path}")

    # Reload and query to prove the snapshot is usable
    try:
        restored = load_snapshot(snapshot_path, catalog.references, catalog.dimension, params)
        sample = catalog.references[0]
        results = restored.search(sample.vector, k=min(3, len(restored)))
        print(f"✓ Verification search returned {len(results)} results")
        if results and results[0].id != sample.id:
            print(f"WARNING: Verification top match {results[0].id} differs from sample {sample.id}")
    except GeoMatchError as e:
        print(f"WARNING: Verification search failed: {e}")

    print("Index rebuild complete!")


if __name__ == "__main__":
    main()
