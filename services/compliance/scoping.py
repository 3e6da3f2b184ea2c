"""
Scoped, Versioned, Effective-Dated Resources

Rule sets and document templates share one ownership model: a row belongs
either to an organization or to nobody (global), carries an integer
version, and is active within [effective_from, effective_to]. The helpers
here implement that model once for both.

Callers pass rows already narrowed to the exact scope key (jurisdiction,
and for templates doc_type/deal_type); nothing here touches the database.
"""

from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')

PriorityKey = Callable[[T], tuple]


def as_datetime(value) -> datetime:
    """Normalise a date/datetime for comparison with effective windows."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def is_active(resource, as_of) -> bool:
    """Inside its effective window and not soft-deleted."""
    if getattr(resource, 'deleted_at', None) is not None:
        return False
    moment = as_datetime(as_of)
    if resource.effective_from is None or as_datetime(resource.effective_from) > moment:
        return False
    return resource.effective_to is None or as_datetime(resource.effective_to) >= moment


def partition_by_scope(candidates: Iterable[T], org_id, as_of) -> Tuple[List[T], List[T]]:
    """
    Split active candidates into (org_scoped, global).

    Rows owned by a different organization belong to neither pool.
    """
    org_pool: List[T] = []
    global_pool: List[T] = []
    for candidate in candidates:
        if not is_active(candidate, as_of):
            continue
        if candidate.org_id is None:
            global_pool.append(candidate)
        elif org_id is not None and candidate.org_id == org_id:
            org_pool.append(candidate)
    return org_pool, global_pool


def rank(pool: Sequence[T], priority: PriorityKey) -> List[T]:
    """Highest priority first; priority tuples compare descending."""
    return sorted(pool, key=priority, reverse=True)


def select_best(candidates: Iterable[T], org_id, as_of, priority: PriorityKey) -> Optional[T]:
    """
    Pick one winner: the org pool if it has any active row, otherwise the
    global pool, then the highest priority within that pool.
    """
    org_pool, global_pool = partition_by_scope(candidates, org_id, as_of)
    pool = org_pool or global_pool
    if not pool:
        return None
    return rank(pool, priority)[0]


def latest_per_scope(candidates: Iterable[T], org_id, as_of, priority: PriorityKey) -> List[T]:
    """
    The winning row of each scope, ordered [global, org].

    Used where both scopes apply together and the org row must be the
    one evaluated last.
    """
    org_pool, global_pool = partition_by_scope(candidates, org_id, as_of)
    ordered = []
    for pool in (global_pool, org_pool):
        if pool:
            ordered.append(rank(pool, priority)[0])
    return ordered


def next_version(existing_versions: Iterable[Optional[int]]) -> int:
    versions = [v for v in existing_versions if v is not None]
    return (max(versions) if versions else 0) + 1


# =============================================================================
# PRIORITY KEYS
# =============================================================================

def template_priority(template) -> tuple:
    return (
        bool(template.default_for_org),
        bool(template.is_default),
        template.version or 0,
        as_datetime(template.effective_from),
    )


def rule_set_priority(rule_set) -> tuple:
    return (rule_set.version or 0, as_datetime(rule_set.effective_from))
