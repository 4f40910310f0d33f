#!/usr/bin/env python3
"""
Merge denoised forward and reverse clusters into full-length sequences.

For every sample the reads are traced to the (forward, reverse) cluster
pairs they came from; each unique pair is aligned once, its overlap scored,
and a consensus sequence built. Pairs whose overlap is too short or has too
many differences are rejected.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from Bio.Seq import reverse_complement
from tqdm import tqdm

from pairmerge.align import build_aligner, eval_pair, nw_align, pair_consensus, select_scoring
from pairmerge.config import MergeConfig
from pairmerge.inputs import normalize_samples
from pairmerge.pairing import resolve_cluster_indices, tabulate_pairings
from pairmerge.types import (
    DenoisedClusters,
    DereplicationRecord,
    MergedPair,
    ReadPairing,
    OUTPUT_COLUMNS,
    SPACER,
)


class MergeTable:
    """Merged pairs of one sample, with a fixed column layout.

    The columns are the same whether or not any rows survived, so empty
    tables can be written and concatenated like full ones.
    """

    def __init__(self, rows: Sequence[MergedPair] = (), propagated_columns: Sequence[str] = ()):
        self.rows = list(rows)
        self.propagated_columns = tuple(propagated_columns)

    @property
    def columns(self) -> Tuple[str, ...]:
        return OUTPUT_COLUMNS + self.propagated_columns

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[MergedPair]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> MergedPair:
        return self.rows[index]

    def column(self, name: str) -> List[Any]:
        if name not in self.columns:
            raise KeyError(name)
        return [row.as_row()[name] for row in self.rows]

    def to_records(self) -> List[Dict[str, Any]]:
        return [row.as_row() for row in self.rows]


def concatenate_pair(pairing: ReadPairing, forward_seq: str, reverse_rc: str) -> MergedPair:
    """Join the reads around an N spacer; no alignment, always accepted."""
    return MergedPair(
        sequence=forward_seq + SPACER + reverse_rc,
        abundance=pairing.abundance,
        forward=pairing.forward,
        reverse=pairing.reverse,
        nmatch=0,
        nmismatch=0,
        nindel=0,
        prefer=None,
        accept=True,
    )


def propagated_column_names(columns: Sequence[str], clusters_f: DenoisedClusters,
                            clusters_r: DenoisedClusters) -> List[str]:
    """Output names for the requested cluster columns that actually exist."""
    names = []
    for column in columns:
        if clusters_f.has_column(column):
            names.append(f"F.{column}")
        if clusters_r.has_column(column):
            names.append(f"R.{column}")
    return names


def propagate_columns(row: MergedPair, extra_columns: Sequence[str], clusters_f: DenoisedClusters,
                      clusters_r: DenoisedClusters) -> MergedPair:
    """Copy the F.<col>/R.<col> values of both parent clusters onto a merged row."""
    extra = {}
    for name in extra_columns:
        side, column = name.split(".", 1)
        if side == "F":
            extra[name] = clusters_f.clustering[row.forward][column]
        else:
            extra[name] = clusters_r.clustering[row.reverse][column]
    return row._replace(extra=extra)


def assemble_result(rows: Sequence[MergedPair], return_rejects: bool = False,
                    verbose: bool = False, sample: str = "sample") -> List[MergedPair]:
    """Blank rejected sequences, sort by abundance and drop rejects if asked.

    The sort is stable, so pairings with equal abundance keep the order in
    which they were first seen.
    """
    rows = [row if row.accept else row._replace(sequence="") for row in rows]
    rows = sorted(rows, key=lambda row: row.abundance, reverse=True)

    accepted = [row for row in rows if row.accept]
    summary = (f"{sum(row.abundance for row in accepted)} paired-reads "
               f"(in {len(accepted)} unique pairings) successfully merged out of "
               f"{sum(row.abundance for row in rows)} (in {len(rows)} pairings) input.")
    if verbose:
        logging.info(f"Sample {sample}: {summary}")
    else:
        logging.debug(f"Sample {sample}: {summary}")

    if not return_rejects:
        rows = accepted

    sequence_counts = Counter(row.sequence for row in rows if row.sequence)
    duplicates = sum(1 for count in sequence_counts.values() if count > 1)
    if duplicates:
        logging.info(f"Sample {sample}: Duplicate sequences in merged output "
                     f"({duplicates} sequences shared by more than one pairing).")

    return rows


class PairMerger:
    """Merges the cluster pairs of one sample at a time under a fixed configuration."""

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()
        # One profile per merger; every alignment receives it explicitly
        self.scoring = self.config.scoring or select_scoring(self.config.max_mismatch)

    def _merge_pairing(self, pairing: ReadPairing, clusters_f: DenoisedClusters,
                       clusters_r: DenoisedClusters, aligner=None) -> MergedPair:
        forward_seq = str(clusters_f.clustering[pairing.forward]["sequence"])
        reverse_rc = reverse_complement(str(clusters_r.clustering[pairing.reverse]["sequence"]))

        if self.config.just_concatenate:
            return concatenate_pair(pairing, forward_seq, reverse_rc)

        alignment = nw_align(forward_seq, reverse_rc, self.scoring, aligner=aligner)
        return self._classify(pairing, alignment, clusters_f, clusters_r)

    def _classify(self, pairing, alignment, clusters_f, clusters_r) -> MergedPair:
        nmatch, nmismatch, nindel = eval_pair(alignment.forward, alignment.reverse)
        # Ties go to the forward read
        if clusters_r.origin_abundance(pairing.reverse) > clusters_f.origin_abundance(pairing.forward):
            prefer = 2
        else:
            prefer = 1
        accept = nmatch >= self.config.min_overlap and \
            (nmismatch + nindel) <= self.config.max_mismatch

        return MergedPair(
            sequence=pair_consensus(alignment.forward, alignment.reverse, prefer,
                                    self.config.trim_overhang),
            abundance=pairing.abundance,
            forward=pairing.forward,
            reverse=pairing.reverse,
            nmatch=nmatch,
            nmismatch=nmismatch,
            nindel=nindel,
            prefer=prefer,
            accept=accept,
        )

    def _align_pairings(self, pairings: List[ReadPairing], clusters_f: DenoisedClusters,
                        clusters_r: DenoisedClusters, sample: str) -> List[MergedPair]:
        desc = f"Merging pairs of {sample}"
        if self.config.threads > 1 and len(pairings) > 1:
            def process_pairing(pairing):
                return self._merge_pairing(pairing, clusters_f, clusters_r)

            with ThreadPoolExecutor(max_workers=self.config.threads) as executor:
                return list(tqdm(
                    executor.map(process_pairing, pairings),
                    total=len(pairings),
                    desc=desc,
                    disable=not self.config.verbose
                ))

        aligner = None if self.config.just_concatenate else build_aligner(self.scoring)
        return [
            self._merge_pairing(pairing, clusters_f, clusters_r, aligner)
            for pairing in tqdm(pairings, desc=desc, disable=not self.config.verbose)
        ]

    def merge_sample(self, clusters_f: DenoisedClusters, derep_f: DereplicationRecord,
                     clusters_r: DenoisedClusters, derep_r: DereplicationRecord,
                     sample: str = "sample") -> MergeTable:
        """Merge one sample.

        Raises:
            PairMergeError: the dereplication and cluster inputs do not
                correspond; nothing is returned for the sample
        """
        r_f, r_r = resolve_cluster_indices(clusters_f, derep_f, clusters_r, derep_r, sample)
        pairings = tabulate_pairings(r_f, r_r, len(clusters_f.clustering), len(clusters_r.clustering))
        extra_columns = propagated_column_names(self.config.propagate_col, clusters_f, clusters_r)

        if not pairings:
            message = (f"Sample {sample}: No paired-reads (in ZERO unique pairings) successfully "
                       f"merged out of {len(r_f)} pairings input.")
            if self.config.verbose:
                logging.info(message)
            else:
                logging.debug(message)
            return MergeTable([], extra_columns)

        rows = self._align_pairings(pairings, clusters_f, clusters_r, sample)
        rows = [propagate_columns(row, extra_columns, clusters_f, clusters_r)
                for row in rows]
        rows = assemble_result(rows, self.config.return_rejects, self.config.verbose, sample)
        return MergeTable(rows, extra_columns)


def merge_samples(samples: Sequence[Tuple[Any, DenoisedClusters, DereplicationRecord,
                                          DenoisedClusters, DereplicationRecord]],
                  config: Optional[MergeConfig] = None) -> Dict[Any, MergeTable]:
    """Merge already-normalized samples, keyed by sample name in input order."""
    merger = PairMerger(config)
    results = {}
    for name, clusters_f, derep_f, clusters_r, derep_r in samples:
        label = clusters_f.name or str(name)
        results[name] = merger.merge_sample(clusters_f, derep_f, clusters_r, derep_r, sample=label)
    return results


def merge_pairs(dada_f, derep_f, dada_r, derep_r, config: Optional[MergeConfig] = None,
                resolver=None, **options):
    """Merge denoised forward and reverse reads of one or more samples.

    Args:
        dada_f: Forward DenoisedClusters, or a list/dict of them (one per sample)
        derep_f: Forward DereplicationRecord(s), FASTQ path(s) or a directory of FASTQ files
        dada_r: Reverse DenoisedClusters, or a list/dict of them
        derep_r: Reverse DereplicationRecord(s), FASTQ path(s) or a directory
        config: MergeConfig; keyword options (min_overlap=..., etc.) build one if omitted
        resolver: Callable turning a FASTQ path into a DereplicationRecord

    Returns:
        A MergeTable for a single sample, otherwise a dict (when dada_f is a
        dict) or list of MergeTables in sample order.
    """
    if config is None:
        config = MergeConfig(**options)
    elif options:
        raise TypeError("Pass either config or keyword options, not both")

    samples, keyed = normalize_samples(dada_f, derep_f, dada_r, derep_r, resolver=resolver)
    results = merge_samples(samples, config)

    if len(results) == 1:
        return next(iter(results.values()))
    if keyed:
        return results
    return list(results.values())
