"""Derived efficiency ratios for aggregated campaigns."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from table import AggregateEntry


@dataclass(frozen=True)
class DerivedEntry:
    """
    Final campaign totals plus CTR and CPA.

    ``ctr`` is 0.0 when there were no impressions. ``cpa`` is None when
    there were no conversions; such campaigns are not ranked by CPA.
    """

    campaign_id: str
    impressions: int
    clicks: int
    spend: Decimal
    conversions: int
    ctr: float
    cpa: Optional[float]


def compute_ctr(clicks: int, impressions: int) -> float:
    if impressions == 0:
        return 0.0
    return clicks / impressions


def compute_cpa(spend: Decimal, conversions: int) -> Optional[float]:
    if conversions == 0:
        return None
    return float(spend) / conversions


def derive(entry: AggregateEntry) -> DerivedEntry:
    return DerivedEntry(
        campaign_id=entry.campaign_id,
        impressions=entry.impressions,
        clicks=entry.clicks,
        spend=entry.spend,
        conversions=entry.conversions,
        ctr=compute_ctr(entry.clicks, entry.impressions),
        cpa=compute_cpa(entry.spend, entry.conversions),
    )


def derive_all(entries: Iterable[AggregateEntry]) -> List[DerivedEntry]:
    return [derive(entry) for entry in entries]
