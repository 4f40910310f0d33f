#!/usr/bin/env python3
"""Command line entry point for merging denoised paired-end clusters."""

import argparse
import csv
import logging
import sys
from typing import Dict, List, Optional

from pairmerge import __version__
from pairmerge.config import MergeConfig
from pairmerge.errors import PairMergeError
from pairmerge.inputs import load_denoised_json
from pairmerge.merge import MergeTable, merge_pairs


def parse_arguments(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Merge denoised forward and reverse reads into full-length amplicon sequences."
    )
    parser.add_argument("--forward-clusters", required=True,
                        help="JSON file with the denoised forward clusters (one sample or a list)")
    parser.add_argument("--forward-derep", required=True, nargs='+',
                        help="Forward dereplication: derep JSON, FASTQ file(s), or a directory of FASTQ files")
    parser.add_argument("--reverse-clusters", required=True,
                        help="JSON file with the denoised reverse clusters (one sample or a list)")
    parser.add_argument("--reverse-derep", required=True, nargs='+',
                        help="Reverse dereplication: derep JSON, FASTQ file(s), or a directory of FASTQ files")
    parser.add_argument("-o", "--output", default="-",
                        help="Output TSV file (default: - for stdout)")
    parser.add_argument("--min-overlap", type=int, default=12,
                        help="Minimum overlap length required to merge (default: 12)")
    parser.add_argument("--max-mismatch", type=int, default=0,
                        help="Maximum mismatches plus indels allowed in the overlap (default: 0)")
    parser.add_argument("--return-rejects", action="store_true",
                        help="Keep rejected pairings (with an empty sequence) in the output")
    parser.add_argument("--propagate-col", nargs='+', default=[], metavar="COL",
                        help="Cluster columns to copy into the output as F.<COL> and R.<COL>")
    parser.add_argument("--just-concatenate", action="store_true",
                        help="Concatenate forward and reverse-complemented reverse reads with a 10 N spacer "
                             "instead of merging them")
    parser.add_argument("--trim-overhang", action="store_true",
                        help="Trim overhangs where one read extends past the start or end of the other")
    parser.add_argument("--threads", type=int, default=1, metavar="N",
                        help="Worker threads for aligning pairings (default: 1)")
    parser.add_argument("--verbose", action="store_true",
                        help="Report a per-sample merge summary")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level")
    parser.add_argument("--log-file", default=None,
                        help="Also write log messages to this file")
    parser.add_argument("--version", action="version",
                        version=f"pairmerge {__version__}",
                        help="Show program's version number and exit")
    return parser.parse_args(argv)


def setup_logging(log_level: str, log_file: str = None):
    """Setup logging configuration with optional file output."""
    # Clear any existing handlers
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        return log_file

    return None


def _format_value(value) -> str:
    if value is None:
        return "NA"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


def write_merge_tables(tables: Dict[str, MergeTable], handle) -> int:
    """Write merge tables as TSV; a leading sample column is added for several samples."""
    multi = len(tables) > 1
    columns: List[str] = []
    for table in tables.values():
        for column in table.columns:
            if column not in columns:
                columns.append(column)

    writer = csv.writer(handle, delimiter='\t', lineterminator='\n')
    writer.writerow((["sample"] if multi else []) + columns)

    rows_written = 0
    for sample, table in tables.items():
        for record in table.to_records():
            values = [_format_value(record.get(column)) for column in columns]
            writer.writerow(([sample] if multi else []) + values)
            rows_written += 1
    return rows_written


def _single_or_list(values: List[str]):
    return values[0] if len(values) == 1 else values


def main(argv: Optional[List[str]] = None):
    args = parse_arguments(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = MergeConfig.from_args(args)
    except ValueError as e:
        logging.error(f"Invalid option: {e}")
        sys.exit(1)

    try:
        dada_f = load_denoised_json(args.forward_clusters)
        dada_r = load_denoised_json(args.reverse_clusters)
    except (OSError, ValueError) as e:
        logging.error(f"Failed to read cluster input: {e}")
        sys.exit(1)

    try:
        result = merge_pairs(dada_f, _single_or_list(args.forward_derep),
                             dada_r, _single_or_list(args.reverse_derep), config=config)
    except (PairMergeError, OSError) as e:
        logging.error(f"Merging failed: {e}")
        sys.exit(1)

    if isinstance(result, MergeTable):
        tables = {"sample": result}
    else:
        labels = [clusters.name or str(position) for position, clusters in enumerate(dada_f, 1)]
        if len(set(labels)) != len(labels):
            logging.warning("Sample names in the forward clusters are not unique; "
                            "labelling samples by position")
            labels = [str(position) for position in range(1, len(result) + 1)]
        tables = dict(zip(labels, result))

    if args.output == "-":
        write_merge_tables(tables, sys.stdout)
    else:
        with open(args.output, 'w', newline='') as f:
            count = write_merge_tables(tables, f)
        logging.info(f"Wrote {count} merged pairings to {args.output}")


if __name__ == "__main__":
    main()
