"""
CSV serialization of a ranking.

Pure formatting: rows are written in the order given.
"""

import csv
import logging
from typing import IO, List, Sequence

from errors import ReportWriteError
from metrics import DerivedEntry

logger = logging.getLogger(__name__)

BASE_HEADER = ['campaign_id', 'impressions', 'clicks', 'spend', 'conversions']
METRICS = ('ctr', 'cpa')

SPEND_FORMAT = '{:.2f}'
RATIO_FORMAT = '{:.4f}'


def header_for(metric: str) -> List[str]:
    if metric not in METRICS:
        raise ValueError(f"Unknown report metric: {metric!r}")
    return BASE_HEADER + [metric]


def format_row(entry: DerivedEntry, metric: str) -> List[str]:
    """Render one entry as output fields; ``metric`` selects the last column."""
    value = getattr(entry, metric)
    return [
        entry.campaign_id,
        str(entry.impressions),
        str(entry.clicks),
        SPEND_FORMAT.format(entry.spend),
        str(entry.conversions),
        RATIO_FORMAT.format(value) if value is not None else '',
    ]


def write_ranking(ranking: Sequence[DerivedEntry], sink: IO[str], metric: str) -> int:
    """
    Write a header plus one row per entry to ``sink``.

    Args:
        ranking: Entries in rank order (best first)
        sink: Writable text stream, opened with ``newline=''`` if it is a file
        metric: ``'ctr'`` or ``'cpa'``

    Returns:
        Number of data rows written

    Raises:
        ReportWriteError: if the sink rejects a write
    """
    header = header_for(metric)
    try:
        writer = csv.writer(sink, lineterminator='\n')
        writer.writerow(header)
        for entry in ranking:
            writer.writerow(format_row(entry, metric))
        sink.flush()
    except (OSError, ValueError) as exc:
        raise ReportWriteError(str(exc), metric) from exc

    logger.debug(f"Wrote {len(ranking)} {metric} rows")
    return len(ranking)
