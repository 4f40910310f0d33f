"""Data structures shared by the pairmerge modules."""

from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple


# Fixed leading columns of every merge table, in output order
OUTPUT_COLUMNS = (
    "sequence", "abundance", "forward", "reverse",
    "nmatch", "nmismatch", "nindel", "prefer", "accept",
)

# Placeholder for a missing index inside numpy index arrays
MISSING = -1

# Spacer placed between the forward and reverse reads in concatenate mode
SPACER = "N" * 10


class DenoisedClusters(NamedTuple):
    """Denoised clusters of one strand of one sample.

    clustering holds one row per cluster (at least 'sequence' and
    'abundance'; 'n0' is the abundance of origin when the denoiser reports
    it). cluster_map maps each dereplicated unique sequence to the cluster it
    was assigned to, or None when it was not assigned.
    """
    clustering: Sequence[Mapping[str, Any]]
    cluster_map: Sequence[Optional[int]]
    name: Optional[str] = None

    def origin_abundance(self, index: int) -> int:
        row = self.clustering[index]
        if "n0" in row:
            return row["n0"]
        return row["abundance"]

    def has_column(self, column: str) -> bool:
        return bool(self.clustering) and all(column in row for row in self.clustering)


class DereplicationRecord(NamedTuple):
    """Read ordinal -> dereplicated unique sequence index for one strand."""
    read_map: Sequence[Optional[int]]
    uniques: Optional[List[Tuple[str, int]]] = None  # (sequence, count) per unique
    name: Optional[str] = None


class ReadPairing(NamedTuple):
    """A unique (forward cluster, reverse cluster) combination and its read count."""
    forward: int
    reverse: int
    abundance: int


class PairAlignment(NamedTuple):
    """Equal-length gapped strings for a forward read and a reverse-complemented reverse read."""
    forward: str
    reverse: str


class MergedPair(NamedTuple):
    """One row of a merge table."""
    sequence: str
    abundance: int
    forward: int
    reverse: int
    nmatch: int
    nmismatch: int
    nindel: int
    prefer: Optional[int]  # 1=forward, 2=reverse, None when concatenated
    accept: bool
    extra: Optional[Dict[str, Any]] = None  # propagated F.<col>/R.<col> values

    def as_row(self) -> Dict[str, Any]:
        row = {column: getattr(self, column) for column in OUTPUT_COLUMNS}
        if self.extra:
            row.update(self.extra)
        return row
