# Role-scoped projection of the complaint store

from collections import Counter
from typing import Any, Dict, Iterable, List

from .models import Caller, ComplaintBase


def filter_for_caller(records: Iterable[ComplaintBase], caller: Caller) -> List[ComplaintBase]:
    """Administrators see every record, passengers only their own, guests nothing."""
    if caller.is_admin:
        return list(records)
    if caller.is_authenticated:
        return [r for r in records if r.owner_email == caller.email]
    return []


def summarize_view(records: Iterable[ComplaintBase]) -> Dict[str, Any]:
    by_status: Counter = Counter()
    by_area: Counter = Counter()
    total = 0
    for r in records:
        total += 1
        by_status[r.status.value] += 1
        by_area[r.complaint_area] += 1
    return {
        "total": total,
        "status_distribution": dict(by_status),
        "area_distribution": dict(by_area),
    }
