"""
Pairmerge: merging of denoised forward and reverse amplicon reads.

Traces paired reads back to the forward/reverse clusters they were denoised
into, aligns each unique cluster pair and keeps the pairs whose overlap is
long enough and error free enough to trust.
"""

__version__ = "0.1.0"

from .config import MergeConfig
from .merge import MergeTable, PairMerger, merge_pairs, merge_samples
from .types import DenoisedClusters, DereplicationRecord, MergedPair

__all__ = [
    "MergeConfig", "MergeTable", "PairMerger", "merge_pairs", "merge_samples",
    "DenoisedClusters", "DereplicationRecord", "MergedPair", "__version__",
]
