"""Work queue submission.

Jobs are submitted explicitly after the database transaction that makes
them necessary has committed. Handlers are idempotent, so a job that is
delivered twice is harmless; a fixed ``job_id`` additionally lets arq drop
duplicates while the first copy is queued or its result is retained.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from arq.connections import ArqRedis, RedisSettings, create_pool
from redis.exceptions import RedisError

from mpintel.config import get_config
from mpintel.exceptions import DispatchError

logger = logging.getLogger(__name__)

JobFunction = Callable[..., Awaitable[Any]]


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from configuration."""
    return RedisSettings.from_dsn(get_config().queue.redis_url)


class JobDispatcher(Protocol):
    async def enqueue(self, function: str, *args: Any, job_id: str | None = None) -> bool:
        """Submit a job. Returns False when a job with ``job_id`` already exists."""
        ...


class ArqDispatcher:
    """Submits jobs to Redis for ``mpintel.worker.WorkerSettings``."""

    def __init__(self, redis_settings: RedisSettings | None = None, pool: ArqRedis | None = None):
        self._redis_settings = redis_settings
        self._pool = pool

    async def _get_pool(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self._redis_settings or get_redis_settings())
        return self._pool

    async def enqueue(self, function: str, *args: Any, job_id: str | None = None) -> bool:
        try:
            pool = await self._get_pool()
            job = await pool.enqueue_job(function, *args, _job_id=job_id)
        except (OSError, RedisError) as exc:
            raise DispatchError(f"Failed to enqueue {function}: {exc}") from exc

        if job is None:
            logger.info("Job %s already queued; skipping duplicate %s", job_id, function)
            return False

        logger.info("Enqueued %s (job %s)", function, job.job_id)
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None


class LocalDispatcher:
    """Runs job functions as tasks on the current event loop.

    Used by the CLI, local development and tests. Jobs receive the same
    ``ctx`` dict an arq worker would build, and job ids are de-duplicated
    for the lifetime of the dispatcher.
    """

    def __init__(self, functions: Iterable[JobFunction], ctx: dict[str, Any] | None = None):
        self.functions = {fn.__name__: fn for fn in functions}
        self.ctx: dict[str, Any] = ctx if ctx is not None else {}
        self.ctx.setdefault("dispatcher", self)
        self._job_ids: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.submitted: list[tuple[str, tuple[Any, ...]]] = []

    async def enqueue(self, function: str, *args: Any, job_id: str | None = None) -> bool:
        fn = self.functions.get(function)
        if fn is None:
            raise DispatchError(f"Unknown job function: {function}")

        if job_id is not None:
            if job_id in self._job_ids:
                logger.info("Job %s already queued; skipping duplicate %s", job_id, function)
                return False
            self._job_ids.add(job_id)

        self.submitted.append((function, args))
        task = asyncio.create_task(self._run(function, fn, args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, name: str, fn: JobFunction, args: tuple[Any, ...]) -> Any:
        try:
            return await fn(self.ctx, *args)
        except Exception:
            # arq logs failed jobs the same way and moves on
            logger.exception("Job %s%r failed", name, args)
            return None

    async def drain(self) -> None:
        """Wait until every submitted job, including ones submitted by jobs, finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
