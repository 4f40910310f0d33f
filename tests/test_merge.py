#!/usr/bin/env python3
"""
Tests for merging denoised forward/reverse cluster pairs.

Samples are built directly from cluster sequences and a list of read pairs,
each read pair naming the forward and reverse cluster it was denoised into.
"""

import logging
import random

import pytest
from Bio.Seq import reverse_complement

from pairmerge import MergeConfig, MergeTable, PairMerger, merge_pairs
from pairmerge.align import RELAXED_SCORING, STRICT_SCORING, ScoringProfile
from pairmerge.errors import LengthMismatchError, ShapeMismatchError, TypeMismatchError
from pairmerge.merge import assemble_result, merge_samples
from pairmerge.types import OUTPUT_COLUMNS, SPACER, DenoisedClusters, DereplicationRecord, MergedPair


def generate_dna_sequence(seed_str: str, length: int) -> str:
    """Generate a deterministic DNA sequence from a seed string."""
    rng = random.Random(seed_str)
    return ''.join(rng.choice('ACGT') for _ in range(length))


def mutate(seq: str, position: int) -> str:
    swap = {'A': 'T', 'T': 'A', 'G': 'C', 'C': 'G'}
    return seq[:position] + swap[seq[position]] + seq[position + 1:]


def build_sample(forward_seqs, reverse_seqs, read_pairs, forward_n0=None, reverse_n0=None):
    """Build (clusters_f, derep_f, clusters_r, derep_r) for one sample.

    Each unique sequence is its own cluster, so read pairs index clusters
    directly; None marks a read that was not assigned on that strand.
    """
    forward_n0 = forward_n0 or [10] * len(forward_seqs)
    reverse_n0 = reverse_n0 or [10] * len(reverse_seqs)
    clusters_f = DenoisedClusters(
        clustering=[{"sequence": s, "abundance": n, "n0": n, "birth_type": "A"}
                    for s, n in zip(forward_seqs, forward_n0)],
        cluster_map=list(range(len(forward_seqs))),
    )
    clusters_r = DenoisedClusters(
        clustering=[{"sequence": s, "abundance": n, "n0": n}
                    for s, n in zip(reverse_seqs, reverse_n0)],
        cluster_map=list(range(len(reverse_seqs))),
    )
    derep_f = DereplicationRecord(read_map=[f for f, _ in read_pairs])
    derep_r = DereplicationRecord(read_map=[r for _, r in read_pairs])
    return clusters_f, derep_f, clusters_r, derep_r


AMPLICON = generate_dna_sequence("amplicon", 60)
FORWARD = AMPLICON[:40]
REVERSE = reverse_complement(AMPLICON[20:])  # 20bp overlap with FORWARD
UNRELATED = reverse_complement(generate_dna_sequence("unrelated", 40))


class TestSpecExamples:

    def test_perfect_full_length_overlap(self):
        sample = build_sample(["ACGTACGT"], [reverse_complement("ACGTACGT")], [(0, 0)])
        result = merge_pairs(*sample, min_overlap=8)

        assert isinstance(result, MergeTable)
        row = result[0]
        assert (row.nmatch, row.nmismatch, row.nindel) == (8, 0, 0)
        assert row.accept is True
        assert row.sequence == "ACGTACGT"

    def test_single_mismatch_rejected_without_tolerance(self):
        sample = build_sample(["ACGTACGT"], [reverse_complement("ACGTACCT")], [(0, 0)])
        result = merge_pairs(*sample, min_overlap=8, max_mismatch=0, return_rejects=True)

        assert len(result) == 1
        assert result[0].accept is False
        assert result[0].sequence == ""

    def test_rejected_rows_dropped_by_default(self):
        sample = build_sample(["ACGTACGT"], [reverse_complement("ACGTACCT")], [(0, 0)])
        result = merge_pairs(*sample, min_overlap=8)
        assert len(result) == 0
        assert result.columns == OUTPUT_COLUMNS


class TestMergeMode:

    def test_partial_overlap_merges_to_amplicon(self):
        sample = build_sample([FORWARD], [REVERSE], [(0, 0)] * 3)
        row = merge_pairs(*sample)[0]

        assert row.sequence == AMPLICON
        assert row.abundance == 3
        assert (row.nmatch, row.nmismatch, row.nindel) == (20, 0, 0)
        assert row.prefer == 1
        assert row.accept is True

    def test_mismatch_tolerated_with_relaxed_scoring(self):
        reverse = reverse_complement(mutate(AMPLICON[20:], 10))
        sample = build_sample([FORWARD], [reverse], [(0, 0)])
        row = merge_pairs(*sample, max_mismatch=1)[0]

        assert (row.nmatch, row.nmismatch, row.nindel) == (19, 1, 0)
        assert row.accept is True
        # Equal abundances: the forward base wins
        assert row.prefer == 1
        assert row.sequence == AMPLICON

    def test_more_abundant_reverse_is_preferred(self):
        mutated = mutate(AMPLICON[20:], 10)
        sample = build_sample([FORWARD], [reverse_complement(mutated)], [(0, 0)],
                              forward_n0=[5], reverse_n0=[50])
        row = merge_pairs(*sample, max_mismatch=1)[0]

        assert row.prefer == 2
        assert row.sequence == AMPLICON[:20] + mutated

    def test_accept_predicate_holds_for_every_row(self):
        sample = build_sample([FORWARD], [REVERSE, UNRELATED, reverse_complement(mutate(AMPLICON[20:], 5))],
                              [(0, 0), (0, 1), (0, 2), (0, 2)])
        config = MergeConfig(min_overlap=12, max_mismatch=0, return_rejects=True)
        result = merge_pairs(*sample, config=config)

        assert len(result) == 3
        for row in result:
            expected = row.nmatch >= 12 and (row.nmismatch + row.nindel) <= 0
            assert row.accept == expected
            if not row.accept:
                assert row.sequence == ""
        assert [row.accept for row in result].count(True) == 1

    def test_overhang_trimmed(self):
        # Reads longer than the amplicon run into each other's primer region
        amplicon = generate_dna_sequence("short_amplicon", 30)
        forward = amplicon + "GGGGG"
        reverse_rc = "CCCCC" + amplicon
        sample = build_sample([forward], [reverse_complement(reverse_rc)], [(0, 0)])

        assert merge_pairs(*sample, trim_overhang=True)[0].sequence == amplicon
        assert merge_pairs(*sample)[0].sequence == "CCCCC" + amplicon + "GGGGG"

    def test_scoring_profile_follows_mismatch_tolerance(self):
        assert PairMerger(MergeConfig(max_mismatch=0)).scoring == STRICT_SCORING
        assert PairMerger(MergeConfig(max_mismatch=2)).scoring == RELAXED_SCORING
        custom = ScoringProfile(match=2, mismatch=-4, gap=-6)
        assert PairMerger(MergeConfig(scoring=custom)).scoring == custom

    def test_threaded_matches_sequential(self):
        forward_seqs = [generate_dna_sequence(f"amp{i}", 60)[:40] for i in range(4)]
        reverse_seqs = [reverse_complement(generate_dna_sequence(f"amp{i}", 60)[20:]) for i in range(4)]
        pairs = [(i, j) for i in range(4) for j in range(4)] + [(i, i) for i in range(4)] * 3
        sample = build_sample(forward_seqs, reverse_seqs, pairs)

        sequential = merge_pairs(*sample, return_rejects=True)
        threaded = merge_pairs(*sample, return_rejects=True, threads=4)
        assert sequential.rows == threaded.rows

    def test_empty_cluster_sequence_rejected(self):
        sample = build_sample([""], [REVERSE], [(0, 0)])
        row = merge_pairs(*sample, return_rejects=True)[0]

        assert (row.nmatch, row.nmismatch, row.nindel) == (0, 0, 0)
        assert row.accept is False
        assert row.sequence == ""


class TestConcatenateMode:

    def test_concatenation(self):
        sample = build_sample([FORWARD], [UNRELATED], [(0, 0), (0, 0)])
        row = merge_pairs(*sample, just_concatenate=True)[0]

        assert row.sequence == FORWARD + "NNNNNNNNNN" + reverse_complement(UNRELATED)
        assert SPACER == "N" * 10
        assert (row.nmatch, row.nmismatch, row.nindel) == (0, 0, 0)
        assert row.prefer is None
        assert row.accept is True
        assert row.abundance == 2


class TestAssembly:

    def test_sorted_by_abundance_with_stable_ties(self):
        pairs = [(0, 0)] * 2 + [(1, 1)] * 5 + [(0, 1)] * 2
        sample = build_sample([FORWARD, FORWARD[::-1]], [REVERSE, UNRELATED], pairs)
        result = merge_pairs(*sample, just_concatenate=True)

        assert [(row.forward, row.reverse, row.abundance) for row in result] == [
            (1, 1, 5), (0, 0, 2), (0, 1, 2)]

    def test_resorting_is_a_no_op(self):
        pairs = [(0, 0)] * 2 + [(1, 1)] * 5 + [(0, 1)] * 2 + [(1, 0)]
        sample = build_sample([FORWARD, FORWARD[::-1]], [REVERSE, UNRELATED], pairs)
        result = merge_pairs(*sample, just_concatenate=True)

        resorted = sorted(result.rows, key=lambda row: row.abundance, reverse=True)
        assert resorted == result.rows

    def test_abundance_sum_matches_resolved_reads(self):
        pairs = [(0, 0), (0, 0), (None, 1), (1, None), (1, 1), (0, 1), (None, None)]
        sample = build_sample([FORWARD, FORWARD[::-1]], [REVERSE, UNRELATED], pairs)
        result = merge_pairs(*sample, return_rejects=True)

        resolved = sum(1 for f, r in pairs if f is not None and r is not None)
        assert sum(row.abundance for row in result) == resolved

    def test_assemble_blanks_rejected_sequences(self):
        rows = [
            MergedPair("ACGT", 1, 0, 0, 4, 0, 0, 1, True),
            MergedPair("TTTT", 3, 0, 1, 2, 1, 0, 1, False),
        ]
        assembled = assemble_result(rows, return_rejects=True)
        assert [row.sequence for row in assembled] == ["", "ACGT"]
        assert assemble_result(rows) == [rows[0]]

    def test_rows_without_extra_do_not_share_columns(self):
        first = MergedPair("ACGT", 1, 0, 0, 4, 0, 0, 1, True)
        second = MergedPair("TTTT", 1, 0, 0, 4, 0, 0, 1, True)
        first.as_row()["F.n0"] = 5

        assert first.extra is None
        assert set(second.as_row()) == set(OUTPUT_COLUMNS)

    def test_duplicate_sequences_kept_with_notice(self, caplog):
        sample = build_sample([FORWARD, FORWARD], [REVERSE], [(0, 0), (1, 0), (1, 0)])
        with caplog.at_level(logging.INFO):
            result = merge_pairs(*sample)

        assert len(result) == 2
        assert result[0].sequence == result[1].sequence == AMPLICON
        assert "Duplicate sequences" in caplog.text


class TestColumnPropagation:

    def test_known_columns_propagated(self):
        sample = build_sample([FORWARD], [REVERSE], [(0, 0)], forward_n0=[7], reverse_n0=[9])
        result = merge_pairs(*sample, propagate_col=["n0", "birth_type"])

        assert result.columns == OUTPUT_COLUMNS + ("F.n0", "R.n0", "F.birth_type")
        record = result.to_records()[0]
        assert record["F.n0"] == 7
        assert record["R.n0"] == 9
        assert record["F.birth_type"] == "A"

    def test_unknown_columns_dropped(self):
        sample = build_sample([FORWARD], [REVERSE], [(0, 0)])
        result = merge_pairs(*sample, propagate_col=["birth_ham"])

        assert result.columns == OUTPUT_COLUMNS
        assert "F.birth_ham" not in result.to_records()[0]
        with pytest.raises(KeyError):
            result.column("F.birth_ham")


class TestEmptyResult:

    def test_no_pairings_gives_empty_table(self):
        sample = build_sample([FORWARD], [REVERSE], [(0, None), (None, 0)])
        result = merge_pairs(*sample, propagate_col=["n0"])

        assert isinstance(result, MergeTable)
        assert len(result) == 0
        assert result.columns == OUTPUT_COLUMNS + ("F.n0", "R.n0")
        assert result.to_records() == []

    def test_empty_result_logged_when_verbose(self, caplog):
        sample = build_sample([FORWARD], [REVERSE], [(0, None), (None, 0)])
        with caplog.at_level(logging.INFO):
            merge_pairs(*sample, verbose=True)
        assert "ZERO unique pairings" in caplog.text


class TestErrors:

    def test_shape_mismatch(self):
        clusters_f, derep_f, clusters_r, derep_r = build_sample([FORWARD], [REVERSE], [(0, 0)])
        bad_derep = DereplicationRecord(read_map=[1])
        with pytest.raises(ShapeMismatchError):
            merge_pairs(clusters_f, bad_derep, clusters_r, derep_r)

    def test_read_count_mismatch(self):
        clusters_f, derep_f, clusters_r, derep_r = build_sample([FORWARD], [REVERSE], [(0, 0)])
        with pytest.raises(LengthMismatchError):
            merge_pairs(clusters_f, DereplicationRecord([0, 0]), clusters_r, derep_r)

    def test_non_integral_map(self):
        clusters_f, derep_f, clusters_r, derep_r = build_sample([FORWARD], [REVERSE], [(0, 0)])
        with pytest.raises(TypeMismatchError):
            merge_pairs(clusters_f, DereplicationRecord([0.0]), clusters_r, derep_r)

    def test_config_and_options_exclusive(self):
        sample = build_sample([FORWARD], [REVERSE], [(0, 0)])
        with pytest.raises(TypeError):
            merge_pairs(*sample, config=MergeConfig(), min_overlap=5)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            MergeConfig(min_overlap=-1)
        with pytest.raises(ValueError):
            MergeConfig(threads=0)


class TestMultipleSamples:

    def test_list_input_returns_list(self):
        s1 = build_sample([FORWARD], [REVERSE], [(0, 0)])
        s2 = build_sample([FORWARD], [UNRELATED], [(0, 0)] * 2)
        result = merge_pairs([s1[0], s2[0]], [s1[1], s2[1]], [s1[2], s2[2]], [s1[3], s2[3]],
                             return_rejects=True)

        assert isinstance(result, list)
        assert len(result) == 2
        assert result[0][0].accept is True
        assert result[1][0].accept is False

    def test_dict_input_keeps_names(self):
        s1 = build_sample([FORWARD], [REVERSE], [(0, 0)])
        s2 = build_sample([FORWARD], [REVERSE], [(0, 0)] * 4)
        result = merge_pairs({"A": s1[0], "B": s2[0]}, [s1[1], s2[1]],
                             {"A": s1[2], "B": s2[2]}, [s1[3], s2[3]])

        assert list(result) == ["A", "B"]
        assert result["B"][0].abundance == 4

    def test_sample_count_mismatch(self):
        s1 = build_sample([FORWARD], [REVERSE], [(0, 0)])
        with pytest.raises(LengthMismatchError):
            merge_pairs([s1[0], s1[0]], [s1[1]], [s1[2], s1[2]], [s1[3], s1[3]])

    def test_merge_samples_always_keyed(self):
        s1 = build_sample([FORWARD], [REVERSE], [(0, 0)])
        results = merge_samples([("only", *s1)])
        assert list(results) == ["only"]
        assert isinstance(results["only"], MergeTable)
