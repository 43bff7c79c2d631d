#!/usr/bin/env python3
"""
Recall/latency benchmark for the reference index.
Compares HNSW results for each search mode against exact brute-force ranking.
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from geomatch.core.catalog import load_catalog
from geomatch.core.config import get_hnsw_params, get_search_params
from geomatch.core.errors import GeoMatchError
from geomatch.core.synthetic import generate_synthetic_catalog, random_queries
from geomatch.vector.hnsw import HNSWIndex
from geomatch.vector.index import ExactIndex
from geomatch.vector.types import SearchMode


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Measure recall@k and latency of the reference index.")
    parser.add_argument("--catalog", default=None, help="Catalog to benchmark; synthetic when omitted")
    parser.add_argument("--count", type=int, default=2000, help="Synthetic reference count")
    parser.add_argument("--dimension", type=int, default=64, help="Synthetic embedding dimension")
    parser.add_argument("--queries", type=int, default=200, help="Number of random queries")
    parser.add_argument("--k", type=int, default=10, help="Recall cutoff")
    parser.add_argument("--seed", type=int, default=7)
    return parser.parse_args(argv)


def measure(index, exact, queries, k, ef):
    """Return (recall@k, mean latency ms, p95 latency ms) for one ef setting."""
    hits = 0
    expected_total = 0
    latencies = []
    for query in queries:
        truth = {m.id for m in exact.search(query, k)}
        start = time.perf_counter()
        found = index.search(query, k, ef)
        latencies.append((time.perf_counter() - start) * 1000)
        hits += len(truth & {m.id for m in found})
        expected_total += len(truth)

    recall = hits / expected_total if expected_total else 1.0
    return recall, float(np.mean(latencies)), float(np.percentile(latencies, 95))


def main(argv=None):
    """Run the benchmark and return per-mode results."""
    args = parse_args(argv)

    if args.catalog:
        try:
            catalog = load_catalog(args.catalog)
        except GeoMatchError as e:
            print(f"ERROR: Failed to load catalog: {e}")
            sys.exit(1)
        references = catalog.references
        dimension = catalog.dimension
        print(f"Loaded {len(references)} references from {args.catalog}")
    else:
        references = generate_synthetic_catalog(args.count, args.dimension, seed=args.seed)
        dimension = args.dimension
        print(f"Generated {len(references)} synthetic references (dimension {dimension})")

    start = time.perf_counter()
    index = HNSWIndex.build(references, get_hnsw_params(), dimension)
    print(f"✓ Built index in {time.perf_counter() - start:.2f}s (max level {index.max_level})")

    exact = ExactIndex(references, dimension)
    queries = random_queries(args.queries, dimension, seed=args.seed + 1)

    results = {}
    print(f"{'mode':<10}{'ef':>6}{'recall@' + str(args.k):>12}{'mean ms':>10}{'p95 ms':>10}")
    for mode in SearchMode:
        _, ef = get_search_params(mode)
        recall, mean_ms, p95_ms = measure(index, exact, queries, args.k, ef)
        results[mode.value] = {"ef": ef, "recall": recall, "mean_ms": mean_ms, "p95_ms": p95_ms}
        print(f"{mode.value:<10}{ef:>6}{recall:>12.3f}{mean_ms:>10.3f}{p95_ms:>10.3f}")

    print("Benchmark complete!")
    return results


if __name__ == "__main__":
    main()
