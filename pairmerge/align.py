"""
Pairwise alignment primitives for merging forward and reverse reads.

The forward read and the reverse-complemented reverse read are aligned with
an ends-free Needleman-Wunsch alignment: leading and trailing gaps cost
nothing, so the alignment is free to pick how far the two reads overlap.
The overlap is then scored and collapsed into a single consensus sequence.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from Bio.Align import PairwiseAligner

from pairmerge.types import PairAlignment

GAP = "-"


@dataclass(frozen=True)
class ScoringProfile:
    """Match/mismatch/gap scores for one batch of alignments.

    Gaps are scored linearly (every gap column costs `gap`), except end gaps
    which are free.
    """
    match: int = 1
    mismatch: int = -8
    gap: int = -8


# Used when no mismatches are tolerated: any error in the overlap costs far
# more than shortening the overlap to avoid it
STRICT_SCORING = ScoringProfile(match=1, mismatch=-64, gap=-64)
RELAXED_SCORING = ScoringProfile(match=1, mismatch=-8, gap=-8)


def select_scoring(max_mismatch: int) -> ScoringProfile:
    """Pick the scoring profile for a mismatch tolerance."""
    if max_mismatch == 0:
        return STRICT_SCORING
    return RELAXED_SCORING


def build_aligner(scoring: ScoringProfile) -> PairwiseAligner:
    aligner = PairwiseAligner()
    aligner.mode = "global"
    aligner.match_score = scoring.match
    aligner.mismatch_score = scoring.mismatch
    aligner.open_gap_score = scoring.gap
    aligner.extend_gap_score = scoring.gap
    aligner.end_gap_score = 0
    return aligner


def _gapped_rows(seq_a: str, seq_b: str, alignment) -> Tuple[str, str]:
    """Rebuild the gapped strings of an alignment from its coordinates."""
    coords = alignment.coordinates
    a_pos = coords[0]
    b_pos = coords[1]
    a_rows = []
    b_rows = []

    for i in range(a_pos.size - 1):
        a0, a1 = int(a_pos[i]), int(a_pos[i + 1])
        b0, b1 = int(b_pos[i]), int(b_pos[i + 1])
        da = a1 - a0
        db = b1 - b0
        if da > 0 and db > 0:
            a_rows.append(seq_a[a0:a1])
            b_rows.append(seq_b[b0:b1])
        elif da > 0:
            a_rows.append(seq_a[a0:a1])
            b_rows.append(GAP * da)
        elif db > 0:
            a_rows.append(GAP * db)
            b_rows.append(seq_b[b0:b1])

    return "".join(a_rows), "".join(b_rows)


def nw_align(seq_a: str, seq_b: str, scoring: ScoringProfile,
             aligner: Optional[PairwiseAligner] = None) -> PairAlignment:
    """Unbanded ends-free global alignment of two sequences.

    Args:
        seq_a: Forward read
        seq_b: Reverse-complemented reverse read
        scoring: Scores for this alignment
        aligner: Pre-built aligner for `scoring`, to avoid rebuilding it per pair

    Returns:
        PairAlignment of two equal-length strings using '-' for gaps
    """
    if not seq_a or not seq_b:
        # Nothing to overlap; the reads sit side by side
        return PairAlignment(seq_a + GAP * len(seq_b), GAP * len(seq_a) + seq_b)
    if aligner is None:
        aligner = build_aligner(scoring)
    best = aligner.align(seq_a, seq_b)[0]
    gapped_a, gapped_b = _gapped_rows(seq_a, seq_b, best)
    return PairAlignment(gapped_a, gapped_b)


def _overlap_bounds(al1: str, al2: str) -> Tuple[int, int]:
    """First and last column where neither sequence is in its end gaps."""
    start = max(len(al1) - len(al1.lstrip(GAP)), len(al2) - len(al2.lstrip(GAP)))
    end = min(len(al1.rstrip(GAP)), len(al2.rstrip(GAP))) - 1
    return start, end


def eval_pair(al1: str, al2: str) -> Tuple[int, int, int]:
    """Count (matches, mismatches, indels) inside the overlap of an alignment."""
    if len(al1) != len(al2):
        raise ValueError(f"Aligned sequences differ in length: {len(al1)} vs {len(al2)}")

    nmatch = nmismatch = nindel = 0
    start, end = _overlap_bounds(al1, al2)
    for i in range(start, end + 1):
        if al1[i] == GAP or al2[i] == GAP:
            nindel += 1
        elif al1[i] == al2[i]:
            nmatch += 1
        else:
            nmismatch += 1
    return nmatch, nmismatch, nindel


def pair_consensus(al1: str, al2: str, prefer: Optional[int] = 1,
                   trim_overhang: bool = False) -> str:
    """Collapse an aligned forward/reverse pair into one sequence.

    Where the reads disagree the base of the preferred read is used
    (1=forward, 2=reverse, anything else gives 'N'). With trim_overhang,
    columns before the start of the forward read and after the end of the
    reverse read are dropped. Gap characters never appear in the result.
    """
    if len(al1) != len(al2):
        raise ValueError(f"Aligned sequences differ in length: {len(al1)} vs {len(al2)}")

    columns = []
    for a, b in zip(al1, al2):
        if a == b or b == GAP:
            columns.append(a)
        elif a == GAP:
            columns.append(b)
        elif prefer == 1:
            columns.append(a)
        elif prefer == 2:
            columns.append(b)
        else:
            columns.append("N")

    if trim_overhang:
        lead = len(al1) - len(al1.lstrip(GAP))
        tail = len(al2.rstrip(GAP))
        columns = columns[lead:tail]

    return "".join(columns).replace(GAP, "")


def is_match(alignment: PairAlignment, min_overlap: int) -> bool:
    """True if the overlap is at least min_overlap long and error free."""
    nmatch, nmismatch, nindel = eval_pair(alignment.forward, alignment.reverse)
    logging.debug(f"Match/mismatch/indel: {nmatch} {nmismatch} {nindel}")
    return nmatch >= min_overlap and nmismatch == 0 and nindel == 0
