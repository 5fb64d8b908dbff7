"""
Keyed accumulator of per-campaign running totals.

Integer totals are Python ints, spend totals are ``Decimal`` summed under an
unbounded-precision context, so totals are exact and independent of the
order in which rows arrive.
"""

import decimal
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, Optional

import numpy as np
import pandas as pd

from decoder import INT_COLUMNS, RawRecord

# Decimal addition never rounds under this context.
EXACT_CONTEXT = decimal.Context(
    prec=decimal.MAX_PREC,
    Emax=decimal.MAX_EMAX,
    Emin=decimal.MIN_EMIN,
)

_INT64_MAX = np.iinfo(np.int64).max


@dataclass
class AggregateEntry:
    """Running totals for one campaign."""

    campaign_id: str
    impressions: int = 0
    clicks: int = 0
    spend: Decimal = field(default_factory=Decimal)
    conversions: int = 0


def _exact_sum(values: np.ndarray):
    # Python-level addition: ints stay unbounded, Decimals stay exact.
    return sum(values.tolist())


def _may_overflow(values: np.ndarray) -> bool:
    return len(values) > 0 and int(values.max()) > _INT64_MAX // len(values)


class AggregationTable:
    """
    Mapping of campaign id to ``AggregateEntry``.

    Entries are created on first sighting with zero totals and are never
    removed. Individual records are never stored.
    """

    def __init__(self):
        self._entries: Dict[str, AggregateEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, campaign_id: str) -> bool:
        return campaign_id in self._entries

    def get(self, campaign_id: str) -> Optional[AggregateEntry]:
        return self._entries.get(campaign_id)

    def _entry(self, campaign_id: str) -> AggregateEntry:
        entry = self._entries.get(campaign_id)
        if entry is None:
            entry = self._entries[campaign_id] = AggregateEntry(campaign_id)
        return entry

    def fold(self, record: RawRecord) -> None:
        """Add one record's metrics to its campaign's totals."""
        entry = self._entry(record.campaign_id)
        entry.impressions += record.impressions
        entry.clicks += record.clicks
        entry.conversions += record.conversions
        with decimal.localcontext(EXACT_CONTEXT):
            entry.spend += record.spend

    def fold_chunk(self, chunk: pd.DataFrame) -> None:
        """
        Add a validated chunk to the table.

        Rows are grouped by campaign id first, so there is one entry update
        per campaign per chunk rather than one per row.

        Args:
            chunk: Frame as produced by ``RecordDecoder.iter_chunks``
        """
        if chunk.empty:
            return

        groups = chunk.groupby('campaign_id', sort=False).indices
        counts = {col: chunk[col].to_numpy() for col in INT_COLUMNS}
        spend = chunk['spend'].to_numpy()

        # int64 sums are exact unless a group total could pass the int64 limit.
        wide = any(_may_overflow(values) for values in counts.values())

        with decimal.localcontext(EXACT_CONTEXT):
            for campaign_id, positions in groups.items():
                entry = self._entry(campaign_id)
                sums = {
                    col: _exact_sum(values[positions]) if wide else int(values[positions].sum())
                    for col, values in counts.items()
                }
                entry.impressions += sums['impressions']
                entry.clicks += sums['clicks']
                entry.conversions += sums['conversions']
                entry.spend += _exact_sum(spend[positions])

    def merge(self, other: 'AggregationTable') -> None:
        """Add every total of ``other`` into this table."""
        with decimal.localcontext(EXACT_CONTEXT):
            for theirs in other.drain():
                entry = self._entry(theirs.campaign_id)
                entry.impressions += theirs.impressions
                entry.clicks += theirs.clicks
                entry.conversions += theirs.conversions
                entry.spend += theirs.spend

    def drain(self) -> Iterator[AggregateEntry]:
        """
        Yield every entry exactly once, in no particular order.

        The table itself is left intact, so a partial table can be drained
        into ``merge`` and still be inspected afterwards.
        """
        return iter(list(self._entries.values()))
