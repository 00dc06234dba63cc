from __future__ import annotations

import redis.asyncio as redis
from .settings import REDIS_URL, MERGE_QUEUE, PUBLISHED_TTL_SECONDS

r = redis.from_url(REDIS_URL, decode_responses=True)

def published_key(run_id: str) -> str:
    return f"gateci:published:{run_id}"

async def publish_status(run_id: str) -> bool:
    """
    Push a run id to the merge-queue list exactly once.
    Returns False if it was already published (re-report of the same run).
    """
    first = await r.set(published_key(run_id), "1", nx=True, ex=PUBLISHED_TTL_SECONDS)
    if not first:
        return False
    await r.rpush(MERGE_QUEUE, run_id)  # FIFO: push right
    return True
