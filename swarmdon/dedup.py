"""Pick the checkins of a feed page that have not been relayed yet.

Checkin ids are opaque: they are only ever compared for equality against
the stored watermark, and their position in the feed (newest first) is
the only notion of order. Ids of different accounts are never compared.
"""

from typing import Sequence, TypeVar

from swarmdon.models import SwarmCheckin

T = TypeVar("T", bound=SwarmCheckin)


def select_new(
    watermark: str, candidates: Sequence[T], limit: int | None = None
) -> list[T]:
    """Return the checkins newer than `watermark`, oldest first.

    `candidates` must be in feed order (newest first). Everything before the
    checkin whose id equals the watermark is new. If the watermark is empty
    or not on the page, the whole page is new, capped at `limit` newest
    entries so a first run never replays an unbounded backlog.
    """
    fresh: list[T] = []
    for checkin in candidates:
        if watermark and checkin.id == watermark:
            break
        fresh.append(checkin)
        if limit is not None and len(fresh) >= limit:
            break
    fresh.reverse()
    return fresh
