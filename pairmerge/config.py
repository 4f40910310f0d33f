"""Configuration for merging paired reads."""

from dataclasses import dataclass
from typing import Optional, Tuple

from pairmerge.align import ScoringProfile


@dataclass(frozen=True)
class MergeConfig:
    """Options controlling how forward/reverse cluster pairs are merged.

    Attributes:
        min_overlap: Minimum matching overlap length to accept a merge (default: 12)
        max_mismatch: Maximum mismatches plus indels allowed in the overlap (default: 0)
        return_rejects: Keep rejected pairings in the output (default: False)
        propagate_col: Cluster columns copied to the output as F.<col>/R.<col>
        just_concatenate: Join reads with an N spacer instead of aligning them
        trim_overhang: Trim read overhangs past the other read's ends
        verbose: Log a per-sample summary at INFO level
        scoring: Alignment scores to use instead of the profile picked from max_mismatch
        threads: Worker threads for aligning pairings (default: 1)
    """
    min_overlap: int = 12
    max_mismatch: int = 0
    return_rejects: bool = False
    propagate_col: Tuple[str, ...] = ()
    just_concatenate: bool = False
    trim_overhang: bool = False
    verbose: bool = False
    scoring: Optional[ScoringProfile] = None
    threads: int = 1

    def __post_init__(self):
        if self.min_overlap < 0:
            raise ValueError(f"min_overlap must be >= 0, got {self.min_overlap}")
        if self.max_mismatch < 0:
            raise ValueError(f"max_mismatch must be >= 0, got {self.max_mismatch}")
        if self.threads < 1:
            raise ValueError(f"threads must be >= 1, got {self.threads}")
        # Accept any iterable of names (e.g. a list or set from the caller)
        object.__setattr__(self, "propagate_col", tuple(self.propagate_col))

    @classmethod
    def from_args(cls, args) -> 'MergeConfig':
        """Create config from command-line arguments."""
        return cls(
            min_overlap=args.min_overlap,
            max_mismatch=args.max_mismatch,
            return_rejects=args.return_rejects,
            propagate_col=tuple(getattr(args, 'propagate_col', None) or ()),
            just_concatenate=args.just_concatenate,
            trim_overhang=args.trim_overhang,
            verbose=args.verbose,
            threads=getattr(args, 'threads', 1),
        )
