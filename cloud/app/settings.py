from __future__ import annotations
import os

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ["REDIS_URL"]
# Redis list the merge-queue bot pops gate statuses from
MERGE_QUEUE = os.environ.get("MERGE_QUEUE", "gateci:merge-queue")
PUBLISHED_TTL_SECONDS = int(os.environ.get("PUBLISHED_TTL_SECONDS", str(7 * 24 * 3600)))
