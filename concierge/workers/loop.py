from __future__ import annotations

import asyncio

# Keep one asyncio loop per worker process. Creating a new loop for each task
# causes asyncpg/SQLAlchemy "attached to a different loop" errors.
_worker_loop: asyncio.AbstractEventLoop | None = None


def get_worker_loop() -> asyncio.AbstractEventLoop:
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)
    return _worker_loop


def run(coro):
    return get_worker_loop().run_until_complete(coro)
