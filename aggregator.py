#!/usr/bin/env python3
"""
Ad Performance Aggregator

Streams a campaign metrics CSV once, keeps exact per-campaign totals, and
writes two top-10 reports:

1. Highest CTR (clicks / impressions), every campaign eligible
2. Lowest CPA (spend / conversions), campaigns with conversions only

Memory grows with the number of distinct campaigns, not with file size.
"""

import argparse
import logging
import os
import sys
import time
from typing import IO, Any, Dict, List, Tuple, Union

from decoder import RecordDecoder
from errors import RowDecodeError, StreamError
from metrics import DerivedEntry, derive_all
from ranking import TOP_K, top_by_cpa, top_by_ctr
from report import write_ranking
from table import AggregationTable

logger = logging.getLogger(__name__)

CTR_REPORT_NAME = 'top10_ctr.csv'
CPA_REPORT_NAME = 'top10_cpa.csv'


class Aggregator:
    """
    Decode -> fold -> derive -> rank -> emit.

    The aggregation table is created per run and passed explicitly between
    stages; nothing is shared between runs.
    """

    def __init__(
        self,
        progress_every: int = 5_000_000,
        chunksize: int = 1_000_000,
        top_k: int = TOP_K,
        encoding: str = 'utf-8',
    ):
        """
        Initialize the aggregator.

        Args:
            progress_every: Log progress every N rows
            chunksize: Number of rows to process per chunk
            top_k: Maximum number of rows in each report
            encoding: Input encoding when the stream yields bytes
        """
        self.progress_every = progress_every
        self.chunksize = chunksize
        self.top_k = top_k
        self.encoding = encoding
        self.stats: Dict[str, Any] = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'rows_read': 0,
            'rows_folded': 0,
            'rows_skipped': 0,
            'skip_reasons': {reason: 0 for reason in RowDecodeError.REASONS},
            'unique_campaigns': 0,
            'elapsed_seconds': 0.0,
        }

    def process_stream(self, stream: Union[IO[str], IO[bytes]]) -> AggregationTable:
        """
        Fold every valid row of ``stream`` into a fresh table.

        Args:
            stream: Readable CSV stream, consumed front to back

        Returns:
            The populated aggregation table

        Raises:
            StreamReadError: if the stream fails mid-read
        """
        start_time = time.time()
        self.stats = self._empty_stats()

        decoder = RecordDecoder(chunksize=self.chunksize, encoding=self.encoding)
        table = AggregationTable()
        rows_folded = 0
        last_rows_read = 0

        for chunk in decoder.iter_chunks(stream):
            table.fold_chunk(chunk)
            rows_folded += len(chunk)

            # Progress logging
            chunk_rows = decoder.rows_read - last_rows_read
            last_rows_read = decoder.rows_read
            if decoder.rows_read % self.progress_every < chunk_rows:
                logger.info(f"Processed {decoder.rows_read:,} rows...")

        self.stats['rows_read'] = decoder.rows_read
        self.stats['rows_folded'] = rows_folded
        self.stats['rows_skipped'] = decoder.rows_skipped
        self.stats['skip_reasons'].update(decoder.skip_reasons)
        self.stats['unique_campaigns'] = len(table)
        self.stats['elapsed_seconds'] = time.time() - start_time

        return table

    def rank(self, table: AggregationTable) -> Tuple[List[DerivedEntry], List[DerivedEntry]]:
        """
        Derive ratios for every campaign and select both rankings.

        Returns:
            (top entries by CTR, top entries by CPA)
        """
        derived = derive_all(table.drain())
        return top_by_ctr(derived, self.top_k), top_by_cpa(derived, self.top_k)

    def run(
        self,
        stream: Union[IO[str], IO[bytes]],
        ctr_sink: IO[str],
        cpa_sink: IO[str],
    ) -> Dict[str, Any]:
        """
        Process ``stream`` and write both reports.

        Returns:
            The run statistics (see ``stats``)

        Raises:
            StreamError: on a fatal read or write failure
        """
        table = self.process_stream(stream)
        top_ctr, top_cpa = self.rank(table)
        write_ranking(top_ctr, ctr_sink, 'ctr')
        write_ranking(top_cpa, cpa_sink, 'cpa')
        return self.stats

    def print_stats(self) -> None:
        """Log aggregation statistics."""
        logger.info("\n" + "="*60)
        logger.info("AGGREGATION COMPLETE")
        logger.info("="*60)
        logger.info(f"Rows read:        {self.stats['rows_read']:,}")
        logger.info(f"Rows folded:      {self.stats['rows_folded']:,}")
        logger.info(f"Rows skipped:     {self.stats['rows_skipped']:,}")
        for reason, count in self.stats['skip_reasons'].items():
            if count:
                logger.info(f"  {reason + ':':<18}{count:,}")
        logger.info(f"Unique campaigns: {self.stats['unique_campaigns']:,}")
        logger.info(f"Elapsed time:     {self.stats['elapsed_seconds']:.2f} seconds")
        if self.stats['rows_read'] > 0 and self.stats['elapsed_seconds'] > 0:
            logger.info(f"Throughput:       {self.stats['rows_read'] / self.stats['elapsed_seconds']:,.0f} rows/second")
        logger.info("="*60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Aggregate advertising performance data by campaign',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python aggregator.py --input ad_data.csv --output results/
  python aggregator.py -i ad_data.csv -o results/ --chunksize 2000000

Writes top10_ctr.csv and top10_cpa.csv into the output directory.
Malformed rows are skipped and counted, never fatal.
        """
    )

    parser.add_argument('-i', '--input', required=True, help='Path to input CSV file')
    parser.add_argument('-o', '--output', required=True, help='Path to output directory')
    parser.add_argument('--encoding', default='utf-8', help='File encoding (default: utf-8)')
    parser.add_argument('--progress-every', type=int, default=5_000_000, help='Log progress every N rows (default: 5_000_000)')
    parser.add_argument('--chunksize', type=int, default=1_000_000, help='Number of rows to process per chunk (default: 1_000_000). Higher = faster but more memory.')
    parser.add_argument('--top-k', type=int, default=TOP_K, help=f'Rows per report (default: {TOP_K})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every skipped row')
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    # Configure logging to stderr for progress updates
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(message)s',
        stream=sys.stderr
    )

    # Validate input file exists
    if not os.path.isfile(args.input):
        logger.error(f"Error: Input file not found: {args.input}")
        return 1

    aggregator = Aggregator(
        progress_every=args.progress_every,
        chunksize=args.chunksize,
        top_k=args.top_k,
        encoding=args.encoding,
    )

    logger.info(f"Processing: {args.input}")
    logger.info(f"Output directory: {args.output}")
    logger.info(f"Chunk size: {args.chunksize:,} rows")
    logger.info("")

    ctr_output_path = os.path.join(args.output, CTR_REPORT_NAME)
    cpa_output_path = os.path.join(args.output, CPA_REPORT_NAME)

    try:
        os.makedirs(args.output, exist_ok=True)
        with open(args.input, 'r', encoding=args.encoding, newline='') as stream, \
                open(ctr_output_path, 'w', encoding='utf-8', newline='') as ctr_sink, \
                open(cpa_output_path, 'w', encoding='utf-8', newline='') as cpa_sink:
            aggregator.run(stream, ctr_sink, cpa_sink)
    except StreamError as exc:
        logger.error(f"Error: {exc}")
        return 2
    except OSError as exc:
        logger.error(f"Error: {exc}")
        return 1

    logger.info(f"Written: {ctr_output_path}")
    logger.info(f"Written: {cpa_output_path}")

    aggregator.print_stats()

    logger.info(f"\n✓ Successfully processed {aggregator.stats['rows_read']:,} rows")
    logger.info(f"✓ Output files written to: {args.output}/")

    return 0


if __name__ == '__main__':
    sys.exit(main())
