"""
Top-K selection over derived campaign entries.

``heapq.nsmallest`` keeps a bounded heap of K items (O(N log K)) and is
equivalent to ``sorted(entries, key=key)[:k]``, so ties resolve exactly as
a full stable sort would. Every key ends with the campaign id, which makes
the order total and independent of dict iteration order.
"""

import heapq
from typing import Iterable, List, Tuple

from metrics import DerivedEntry

TOP_K = 10


def ctr_sort_key(entry: DerivedEntry) -> Tuple[float, str]:
    """Highest CTR first, then campaign id ascending."""
    return (-entry.ctr, entry.campaign_id)


def cpa_sort_key(entry: DerivedEntry) -> Tuple[float, str]:
    """Lowest CPA first, then campaign id ascending."""
    return (entry.cpa, entry.campaign_id)


def top_by_ctr(entries: Iterable[DerivedEntry], k: int = TOP_K) -> List[DerivedEntry]:
    """
    Return up to ``k`` entries with the highest CTR.

    All entries take part; zero-impression campaigns compete with CTR 0.
    """
    return heapq.nsmallest(k, entries, key=ctr_sort_key)


def top_by_cpa(entries: Iterable[DerivedEntry], k: int = TOP_K) -> List[DerivedEntry]:
    """
    Return up to ``k`` entries with the lowest CPA.

    Entries without a CPA (zero conversions) are left out.
    """
    eligible = (entry for entry in entries if entry.cpa is not None)
    return heapq.nsmallest(k, eligible, key=cpa_sort_key)
