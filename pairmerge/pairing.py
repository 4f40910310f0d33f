"""
Index algebra linking raw read pairs to forward/reverse cluster pairs.

Each read ordinal is mapped twice per strand: first to its dereplicated
unique sequence, then from that unique sequence to its denoised cluster.
Composing the two maps for both strands gives, per read, the pair of
clusters it was assigned to.
"""

import logging
import numbers
from typing import List, Sequence, Optional, Tuple

import numpy as np

from pairmerge.errors import ShapeMismatchError, LengthMismatchError, TypeMismatchError
from pairmerge.types import DenoisedClusters, DereplicationRecord, ReadPairing, MISSING


def as_index_array(values: Sequence[Optional[int]], label: str) -> np.ndarray:
    """Convert a map to an int64 array with MISSING for unmapped entries.

    Plain sequences use None for unmapped entries; integer numpy arrays use
    any negative value.
    """
    if isinstance(values, np.ndarray):
        if not np.issubdtype(values.dtype, np.integer):
            raise TypeMismatchError(f"{label} must be integral, got dtype {values.dtype}")
        arr = values.astype(np.int64)
        arr[arr < 0] = MISSING
        return arr

    arr = np.empty(len(values), dtype=np.int64)
    for i, value in enumerate(values):
        if value is None:
            arr[i] = MISSING
        elif isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Integral):
            raise TypeMismatchError(
                f"{label} must be integral, found {value!r} ({type(value).__name__}) at position {i}")
        elif value < 0:
            raise TypeMismatchError(f"{label} contains negative index {value} at position {i}")
        else:
            arr[i] = value
    return arr


def compose_map(read_map: np.ndarray, cluster_map: np.ndarray) -> np.ndarray:
    """Map read ordinals straight to cluster indices; unmapped stays MISSING."""
    composed = np.full(read_map.shape, MISSING, dtype=np.int64)
    mapped = read_map != MISSING
    composed[mapped] = cluster_map[read_map[mapped]]
    return composed


def _check_strand(read_map: np.ndarray, cluster_map: np.ndarray, n_clusters: int,
                  strand: str, sample: str) -> None:
    resolved = read_map[read_map != MISSING]
    top = int(resolved.max()) if resolved.size else MISSING
    if top + 1 != len(cluster_map):
        raise ShapeMismatchError(
            f"Sample {sample}: {strand} dereplication map refers to {top + 1} unique sequences "
            f"but the {strand} cluster map has {len(cluster_map)} entries "
            f"(non-corresponding dereplication and cluster inputs)")

    assigned = cluster_map[cluster_map != MISSING]
    if assigned.size and int(assigned.max()) >= n_clusters:
        raise ShapeMismatchError(
            f"Sample {sample}: {strand} cluster map refers to cluster {int(assigned.max())} "
            f"but only {n_clusters} {strand} clusters are present")


def resolve_cluster_indices(clusters_f: DenoisedClusters, derep_f: DereplicationRecord,
                            clusters_r: DenoisedClusters, derep_r: DereplicationRecord,
                            sample: str = "sample") -> Tuple[np.ndarray, np.ndarray]:
    """Validate both strands and return per-read forward and reverse cluster indices.

    Raises:
        TypeMismatchError: a map holds non-integral values
        LengthMismatchError: the strands have different read counts
        ShapeMismatchError: a dereplication map does not fit its cluster map
    """
    map_f = as_index_array(derep_f.read_map, f"Sample {sample}: forward dereplication map")
    map_r = as_index_array(derep_r.read_map, f"Sample {sample}: reverse dereplication map")
    cmap_f = as_index_array(clusters_f.cluster_map, f"Sample {sample}: forward cluster map")
    cmap_r = as_index_array(clusters_r.cluster_map, f"Sample {sample}: reverse cluster map")

    if len(map_f) != len(map_r):
        raise LengthMismatchError(
            f"Sample {sample}: forward and reverse dereplication maps cover different "
            f"numbers of reads ({len(map_f)} vs {len(map_r)})")

    _check_strand(map_f, cmap_f, len(clusters_f.clustering), "forward", sample)
    _check_strand(map_r, cmap_r, len(clusters_r.clustering), "reverse", sample)

    return compose_map(map_f, cmap_f), compose_map(map_r, cmap_r)


def pair_table(r_f: np.ndarray, r_r: np.ndarray, n_forward: int, n_reverse: int) -> np.ndarray:
    """Contingency table of read counts per (forward, reverse) cluster pair."""
    table = np.zeros((n_forward, n_reverse), dtype=np.int64)
    valid = (r_f != MISSING) & (r_r != MISSING)
    np.add.at(table, (r_f[valid], r_r[valid]), 1)
    return table


def tabulate_pairings(r_f: np.ndarray, r_r: np.ndarray,
                      n_forward: int, n_reverse: int) -> List[ReadPairing]:
    """Unique cluster pairings in order of first appearance, with read counts.

    Pairings with an unmapped forward or reverse side are discarded.
    """
    valid = (r_f != MISSING) & (r_r != MISSING)
    fwd = r_f[valid]
    rev = r_r[valid]
    if fwd.size == 0:
        return []

    keys = fwd * n_reverse + rev
    _, first_seen = np.unique(keys, return_index=True)
    first_seen.sort()

    table = pair_table(r_f, r_r, n_forward, n_reverse)
    pairings = [
        ReadPairing(int(f), int(r), int(table[f, r]))
        for f, r in zip(fwd[first_seen], rev[first_seen])
    ]
    logging.debug(f"Found {len(pairings)} unique pairings among {int(valid.sum())} "
                  f"resolved read pairs ({len(r_f)} total)")
    return pairings
