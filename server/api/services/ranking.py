"""Recency-aware ranking of search hits."""

from datetime import datetime, timezone
from functools import cmp_to_key

from shared.clients.rag.models.SearchHit import SearchHit


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 payload timestamp. Returns None for missing or unparseable values."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compare_hits(a: SearchHit, b: SearchHit, recency_window_minutes: float = 60) -> int:
    """Ordering of two hits, negative if a ranks first.

    Both timestamped: within the recency window the higher score wins,
    otherwise the newer hit wins. A timestamped hit beats one without.
    Neither timestamped: the higher score wins.
    """
    ts_a = parse_timestamp(a.payload.get("created_at"))
    ts_b = parse_timestamp(b.payload.get("created_at"))

    if ts_a is not None and ts_b is not None:
        delta_seconds = (ts_b - ts_a).total_seconds()
        if abs(delta_seconds) < recency_window_minutes * 60:
            return _by_score(a, b)
        return 1 if delta_seconds > 0 else -1
    if ts_a is not None:
        return -1
    if ts_b is not None:
        return 1
    return _by_score(a, b)


def _by_score(a: SearchHit, b: SearchHit) -> int:
    if a.score == b.score:
        return 0
    return -1 if a.score > b.score else 1


def rank_hits(hits: list[SearchHit], min_score: float, recency_window_minutes: float = 60) -> list[SearchHit]:
    """Drop hits below min_score and order the rest.

    Args:
        hits (list[SearchHit]): Raw search hits.
        min_score (float): Minimum score a hit needs to survive.
        recency_window_minutes (float): Timestamps closer than this are ordered by score.

    Returns:
        list[SearchHit]: Surviving hits, best first.
    """
    surviving = [hit for hit in hits if hit.score >= min_score]
    return sorted(surviving, key=cmp_to_key(lambda a, b: compare_hits(a, b, recency_window_minutes)))
