"""Server-Sent Events stream of row changes for the signed-in user.

Each stream is pinned to the caller: the filter column is chosen from a
fixed list per table and always compared against the caller's own id.
"""
import logging
from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from lostfound.utils import change_feed
from lostfound.utils.auth_helper import get_caller
from lostfound.utils.policies import Caller

logger = logging.getLogger(__name__)

router = APIRouter()

FEEDS = {
    "messages": ("recipient_id", "sender_id"),
    "notifications": ("user_id",),
    "claims": ("claimant_id",),
}

KEEPALIVE_SECONDS = 15.0


async def stream_subscription(
    feed: change_feed.ChangeFeed,
    table: str,
    events: frozenset,
    column: str,
    value,
    poll_seconds: float = KEEPALIVE_SECONDS,
) -> AsyncGenerator[str, None]:
    with feed.subscribe(table, events, column, value) as subscription:
        logger.debug("Realtime stream opened on %s.%s", table, column)
        try:
            yield ": connected\n\n"

            while True:
                change = await subscription.next(poll_seconds)
                if change is None:
                    yield ": keep-alive\n\n"
                    continue

                yield change.to_sse()
        finally:
            logger.debug("Realtime stream closed on %s.%s", table, column)


@router.get("/{table}")
async def stream_changes(
    table: str,
    column: Optional[str] = None,
    events: str = "INSERT,UPDATE",
    caller: Caller = Depends(get_caller),
) -> StreamingResponse:
    columns = FEEDS.get(table)
    if not columns:
        raise HTTPException(status_code=404, detail="No realtime feed for this table")

    column = column or columns[0]
    if column not in columns:
        raise HTTPException(status_code=400, detail=f"Cannot filter {table} on '{column}'")

    event_set = frozenset(e.strip().upper() for e in events.split(",") if e.strip())
    if not event_set or event_set - change_feed.EVENTS:
        raise HTTPException(status_code=400, detail="Invalid event list")

    return StreamingResponse(
        stream_subscription(change_feed.get_change_feed(), table, event_set, column, caller.id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
