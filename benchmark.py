#!/usr/bin/env python3
"""
Performance Benchmark Script for Ad Performance Aggregator

Times each pipeline phase and reports resident memory:
- Decode + fold (single streaming pass)
- Ranking (CTR + CPA)
- Report output

Usage:
    python benchmark.py --input ad_data.csv --output results/
    python benchmark.py --input ad_data.csv --output results/ --profile-memory

Requirements:
    pip install -e .[bench]
"""

import argparse
import os
import sys
import time
from typing import Any, Dict

import psutil

from aggregator import CPA_REPORT_NAME, CTR_REPORT_NAME, Aggregator
from report import write_ranking


class PerformanceMonitor:
    """Context manager for monitoring performance metrics."""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.process = psutil.Process(os.getpid())
        self.start_time = None
        self.start_memory = None
        self.end_memory = None
        self.elapsed_time = 0.0

    def __enter__(self):
        self.start_time = time.time()
        self.start_memory = self._rss_mb()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_time = time.time() - self.start_time
        self.end_memory = self._rss_mb()

    def _rss_mb(self) -> float:
        return self.process.memory_info().rss / (1024 * 1024)

    def get_stats(self) -> Dict[str, Any]:
        """Return performance statistics."""
        return {
            'operation': self.operation_name,
            'time_elapsed': self.elapsed_time,
            'start_memory_mb': self.start_memory,
            'end_memory_mb': self.end_memory,
            'memory_delta_mb': self.end_memory - self.start_memory,
        }


def format_stats(stats: Dict[str, Any]) -> str:
    """Format statistics for display."""
    lines = []
    lines.append(f"\n{'='*60}")
    lines.append(f"PERFORMANCE: {stats['operation']}")
    lines.append('='*60)
    lines.append(f"Time Elapsed:     {stats['time_elapsed']:.2f} seconds")
    lines.append(f"Start Memory:    {stats['start_memory_mb']:.2f} MB")
    lines.append(f"End Memory:      {stats['end_memory_mb']:.2f} MB")
    lines.append(f"Memory Delta:    {stats['memory_delta_mb']:+.2f} MB")
    lines.append('='*60)
    return '\n'.join(lines)


def _write_reports(top_ctr, top_cpa, output_path: str) -> None:
    os.makedirs(output_path, exist_ok=True)
    with open(os.path.join(output_path, CTR_REPORT_NAME), 'w', encoding='utf-8', newline='') as sink:
        write_ranking(top_ctr, sink, 'ctr')
    with open(os.path.join(output_path, CPA_REPORT_NAME), 'w', encoding='utf-8', newline='') as sink:
        write_ranking(top_cpa, sink, 'cpa')


def run_benchmark(input_path: str, output_path: str, **kwargs) -> Dict[str, Any]:
    """
    Run the aggregator with per-phase performance monitoring.

    Args:
        input_path: Path to input CSV file
        output_path: Path to output directory
        **kwargs: Additional arguments for the Aggregator

    Returns:
        Dictionary with performance statistics
    """
    file_size_mb = os.path.getsize(input_path) / (1024 * 1024)

    print(f"\n{'='*60}")
    print("BENCHMARK: Ad Performance Aggregator")
    print('='*60)
    print(f"Input:  {input_path}")
    print(f"Output: {output_path}")
    print(f"Size:   {file_size_mb:.2f} MB")
    print('='*60)

    aggregator = Aggregator(**kwargs)

    with PerformanceMonitor("Decode + Fold") as proc_monitor:
        with open(input_path, 'r', encoding=aggregator.encoding, newline='') as stream:
            table = aggregator.process_stream(stream)

    with PerformanceMonitor("Ranking (CTR + CPA)") as rank_monitor:
        top_ctr, top_cpa = aggregator.rank(table)

    with PerformanceMonitor("Output Generation") as output_monitor:
        _write_reports(top_ctr, top_cpa, output_path)

    results = {
        'processing': proc_monitor.get_stats(),
        'ranking': rank_monitor.get_stats(),
        'output': output_monitor.get_stats(),
        'total_time': proc_monitor.elapsed_time + rank_monitor.elapsed_time + output_monitor.elapsed_time,
        'rows_processed': aggregator.stats['rows_read'],
        'rows_folded': aggregator.stats['rows_folded'],
        'rows_skipped': aggregator.stats['rows_skipped'],
        'unique_campaigns': aggregator.stats['unique_campaigns'],
    }

    print(format_stats(results['processing']))
    print(format_stats(results['ranking']))
    print(format_stats(results['output']))

    print(f"\n{'='*60}")
    print("BENCHMARK SUMMARY")
    print('='*60)
    print(f"Total Time:        {results['total_time']:.2f} seconds")
    print(f"Rows Processed:    {results['rows_processed']:,}")
    print(f"Rows Folded:       {results['rows_folded']:,}")
    print(f"Rows Skipped:      {results['rows_skipped']:,}")
    print(f"Unique Campaigns:  {results['unique_campaigns']:,}")

    processing_time = results['processing']['time_elapsed']
    if results['rows_processed'] > 0 and processing_time > 0:
        print(f"Throughput:        {results['rows_processed'] / processing_time:,.0f} rows/second")
        print(f"Processing Rate:   {file_size_mb / processing_time:.2f} MB/second")
    print(f"File Size:         {file_size_mb:.2f} MB")
    print('='*60)

    return results


def run_memory_profiler(input_path: str, output_path: str, **kwargs) -> Dict[str, Any]:
    """
    Sample process memory while the whole pipeline runs.

    Args:
        input_path: Path to input CSV file
        output_path: Path to output directory
        **kwargs: Additional arguments for the Aggregator
    """
    from memory_profiler import memory_usage

    print(f"\n{'='*60}")
    print("MEMORY PROFILER: Detailed Analysis")
    print('='*60)

    def run_aggregator():
        aggregator = Aggregator(**kwargs)
        with open(input_path, 'r', encoding=aggregator.encoding, newline='') as stream:
            table = aggregator.process_stream(stream)
        top_ctr, top_cpa = aggregator.rank(table)
        _write_reports(top_ctr, top_cpa, output_path)
        return aggregator.stats

    # Returns (mem_usage_list, retval) when retval=True
    mem_usage, stats = memory_usage(
        (run_aggregator,),
        interval=0.1,
        timeout=None,
        retval=True
    )

    print(f"\n{'='*60}")
    print("MEMORY PROFILER RESULTS")
    print('='*60)
    print(f"Rows Processed:    {stats['rows_read']:,}")
    print(f"Unique Campaigns:  {stats['unique_campaigns']:,}")
    print(f"Elapsed Time:      {stats['elapsed_seconds']:.2f} seconds")
    print(f"\nMemory Usage:")
    print(f"  Min:  {min(mem_usage):.2f} MiB")
    print(f"  Max:  {max(mem_usage):.2f} MiB")
    print(f"  Avg:  {sum(mem_usage) / len(mem_usage):.2f} MiB")
    print('='*60)

    return stats


def main():
    """Main entry point for benchmark script."""
    parser = argparse.ArgumentParser(
        description='Benchmark Ad Performance Aggregator with performance monitoring',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic benchmark
  python benchmark.py --input ad_data.csv --output results/

  # Detailed memory profiling
  python benchmark.py --input ad_data.csv --output results/ --profile-memory

  # Compare different chunk sizes
  python benchmark.py --input ad_data.csv --output results1/ --chunksize 500000
  python benchmark.py --input ad_data.csv --output results2/ --chunksize 2000000
        """
    )

    parser.add_argument('-i', '--input', required=True, help='Path to input CSV file')
    parser.add_argument('-o', '--output', required=True, help='Path to output directory')
    parser.add_argument('--profile-memory', action='store_true', help='Run detailed memory profiling (requires memory-profiler)')
    parser.add_argument('--encoding', default='utf-8', help='File encoding (default: utf-8)')
    parser.add_argument('--progress-every', type=int, default=5_000_000, help='Log progress every N rows (default: 5_000_000)')
    parser.add_argument('--chunksize', type=int, default=1_000_000, help='Number of rows to process per chunk (default: 1_000_000)')

    args = parser.parse_args()

    if not os.path.isfile(args.input):
        print(f"Error: Input file not found: {args.input}")
        sys.exit(1)

    options = dict(
        encoding=args.encoding,
        progress_every=args.progress_every,
        chunksize=args.chunksize,
    )

    if args.profile_memory:
        run_memory_profiler(args.input, args.output, **options)
    else:
        results = run_benchmark(args.input, args.output, **options)

        # Non-zero exit when rows were dropped, so scripted runs notice
        sys.exit(0 if results['rows_skipped'] == 0 else 1)


if __name__ == '__main__':
    main()
