"""
Normalization of merge inputs.

Callers may hand over a single per-sample object, a list or dict of them,
FASTQ file paths, or a directory of FASTQ files. These are tagged once here
and resolved into plain lists of DenoisedClusters and DereplicationRecords,
one entry per sample, before any merging happens.
"""

import glob
import gzip
import json
import logging
import os
from collections import Counter
from itertools import zip_longest
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from Bio import SeqIO

from pairmerge.errors import InputError, LengthMismatchError
from pairmerge.types import DenoisedClusters, DereplicationRecord

FASTQ_PATTERNS = ("*.fastq", "*.fastq.gz", "*.fq", "*.fq.gz")


class SingleCluster(NamedTuple):
    """One per-sample object (DenoisedClusters or DereplicationRecord)."""
    item: Any


class ClusterCollection(NamedTuple):
    """Per-sample objects for several samples; names set when given as a dict."""
    items: List[Any]
    names: Optional[List[Any]] = None


class FilePath(NamedTuple):
    """Read files, one per sample."""
    paths: List[str]


class DirectoryPath(NamedTuple):
    """Directory whose read files are the samples, in sorted order."""
    path: str


SampleInput = Union[SingleCluster, ClusterCollection, FilePath, DirectoryPath]


def _open_text(path: str):
    if path.endswith(".gz"):
        return gzip.open(path, "rt")
    return open(path, "r")


def _is_path(value) -> bool:
    return isinstance(value, (str, os.PathLike))


def find_fastq_files(directory: str) -> List[str]:
    """Sorted FASTQ files (plain or gzipped) directly inside a directory."""
    files = set()
    for pattern in FASTQ_PATTERNS:
        files.update(glob.glob(os.path.join(directory, pattern)))
    return sorted(files)


def dereplicate_fastq(path: str) -> DereplicationRecord:
    """Collapse the reads of a FASTQ file into unique sequences.

    Uniques are ordered by decreasing read count, ties broken by first
    occurrence; read_map gives the unique index of every read in file order.
    """
    with _open_text(path) as handle:
        sequences = [str(record.seq).upper() for record in SeqIO.parse(handle, "fastq")]

    counts = Counter(sequences)
    first_seen = {}
    for i, seq in enumerate(sequences):
        first_seen.setdefault(seq, i)
    ordered = sorted(counts, key=lambda seq: (-counts[seq], first_seen[seq]))
    index = {seq: i for i, seq in enumerate(ordered)}

    logging.debug(f"Dereplicated {len(sequences)} reads into {len(ordered)} unique sequences from {path}")
    return DereplicationRecord(
        read_map=[index[seq] for seq in sequences],
        uniques=[(seq, counts[seq]) for seq in ordered],
        name=os.path.basename(path),
    )


def same_order(path_f: str, path_r: str) -> bool:
    """Check that two FASTQ files hold the same read ids in the same order."""
    with _open_text(path_f) as handle_f, _open_text(path_r) as handle_r:
        for rec_f, rec_r in zip_longest(SeqIO.parse(handle_f, "fastq"), SeqIO.parse(handle_r, "fastq")):
            if rec_f is None or rec_r is None:
                return False
            if rec_f.id != rec_r.id:
                return False
    return True


def _denoised_from_dict(data: Dict[str, Any]) -> DenoisedClusters:
    try:
        return DenoisedClusters(clustering=data["clustering"], cluster_map=data["map"],
                                name=data.get("name"))
    except KeyError as e:
        raise InputError(f"Denoised cluster record is missing field {e}") from e


def _derep_from_dict(data: Dict[str, Any]) -> DereplicationRecord:
    try:
        uniques = data.get("uniques")
        return DereplicationRecord(read_map=data["map"],
                                   uniques=[tuple(u) for u in uniques] if uniques else None,
                                   name=data.get("name"))
    except KeyError as e:
        raise InputError(f"Dereplication record is missing field {e}") from e


def load_denoised_json(path: str) -> Union[DenoisedClusters, List[DenoisedClusters]]:
    """Load denoised clusters written as {"name", "clustering", "map"}, or a list of those."""
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, list):
        return [_denoised_from_dict(entry) for entry in data]
    return _denoised_from_dict(data)


def load_derep_json(path: str) -> Union[DereplicationRecord, List[DereplicationRecord]]:
    """Load dereplication records written as {"name", "map", "uniques"}, or a list of those."""
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, list):
        return [_derep_from_dict(entry) for entry in data]
    return _derep_from_dict(data)


def resolve_derep_path(path: str) -> DereplicationRecord:
    """Default resolver: derep JSON files are loaded, anything else is dereplicated as FASTQ."""
    if str(path).endswith(".json"):
        record = load_derep_json(path)
        if isinstance(record, list):
            raise InputError(f"{path} holds {len(record)} dereplication records; expected one per file")
        return record
    return dereplicate_fastq(path)


def classify_input(value, record_type: type) -> SampleInput:
    """Tag a raw input as one of the supported input shapes."""
    if isinstance(value, record_type):
        return SingleCluster(value)
    if _is_path(value):
        if os.path.isdir(value):
            return DirectoryPath(os.fspath(value))
        return FilePath([os.fspath(value)])
    if isinstance(value, dict):
        return ClusterCollection(list(value.values()), list(value.keys()))
    if isinstance(value, (list, tuple)) and value:
        if all(isinstance(item, record_type) for item in value):
            return ClusterCollection(list(value))
        if all(_is_path(item) for item in value):
            return FilePath([os.fspath(item) for item in value])
    raise InputError(f"Cannot interpret {type(value).__name__} as {record_type.__name__} input")


def resolve_input(tagged: SampleInput, resolver: Callable[[str], DereplicationRecord]) -> List[Any]:
    """Expand a tagged input into one object per sample."""
    if isinstance(tagged, SingleCluster):
        return [tagged.item]
    if isinstance(tagged, ClusterCollection):
        return list(tagged.items)
    if isinstance(tagged, FilePath):
        return [resolver(path) for path in tagged.paths]
    if isinstance(tagged, DirectoryPath):
        paths = find_fastq_files(tagged.path)
        if not paths:
            raise InputError(f"No FASTQ files found in directory {tagged.path}")
        logging.info(f"Found {len(paths)} FASTQ files in {tagged.path}")
        return [resolver(path) for path in paths]
    raise InputError(f"Unsupported input {tagged!r}")


def _resolve_clusters(value, label: str) -> SampleInput:
    tagged = classify_input(value, DenoisedClusters)
    if not isinstance(tagged, (SingleCluster, ClusterCollection)):
        raise InputError(f"{label} must be provided as DenoisedClusters objects or lists of them")
    if isinstance(tagged, ClusterCollection) and \
            not all(isinstance(item, DenoisedClusters) for item in tagged.items):
        raise InputError(f"{label} must be provided as DenoisedClusters objects or lists of them")
    return tagged


def _resolve_dereps(value, label: str) -> SampleInput:
    tagged = classify_input(value, DereplicationRecord)
    if isinstance(tagged, ClusterCollection) and \
            not all(isinstance(item, DereplicationRecord) for item in tagged.items):
        raise InputError(f"{label} must be provided as DereplicationRecords or read file paths")
    return tagged


def normalize_samples(dada_f, derep_f, dada_r, derep_r,
                      resolver: Optional[Callable[[str], DereplicationRecord]] = None
                      ) -> Tuple[List[Tuple[Any, DenoisedClusters, DereplicationRecord,
                                            DenoisedClusters, DereplicationRecord]], bool]:
    """Resolve the four merge arguments into aligned per-sample tuples.

    Returns:
        Tuple of (samples, keyed) where samples holds (name, clusters_f,
        derep_f, clusters_r, derep_r) per sample and keyed is True when the
        forward clusters were given as a dict (names are its keys, otherwise
        names are sample positions).
    """
    resolver = resolver or resolve_derep_path

    tagged_f = _resolve_clusters(dada_f, "dada_f")
    tagged_r = _resolve_clusters(dada_r, "dada_r")
    clusters_f = resolve_input(tagged_f, resolver)
    clusters_r = resolve_input(tagged_r, resolver)
    dereps_f = resolve_input(_resolve_dereps(derep_f, "derep_f"), resolver)
    dereps_r = resolve_input(_resolve_dereps(derep_r, "derep_r"), resolver)

    counts = (len(clusters_f), len(dereps_f), len(clusters_r), len(dereps_r))
    if len(set(counts)) > 1:
        raise LengthMismatchError(
            f"The dada_f/derep_f/dada_r/derep_r arguments must be the same length, got {counts}")

    keyed = isinstance(tagged_f, ClusterCollection) and tagged_f.names is not None
    names: Sequence[Any] = tagged_f.names if keyed else list(range(len(clusters_f)))

    return list(zip(names, clusters_f, dereps_f, clusters_r, dereps_r)), keyed
