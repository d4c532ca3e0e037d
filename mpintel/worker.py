"""arq worker: extraction, normalization and the stale-work sweep.

Run with ``arq mpintel.worker.WorkerSettings``. The same job functions
are executed in-process by ``LocalDispatcher`` when ``QUEUE_BACKEND=local``.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy import select

from mpintel.config import AppConfig, get_config
from mpintel.core.logging import configure_logging
from mpintel.core.queue import ArqDispatcher, JobDispatcher, LocalDispatcher, get_redis_settings
from mpintel.db.connection import close_db, get_session_factory
from mpintel.db.models import QuoteModel
from mpintel.exceptions import DispatchError, QuoteNotFoundError
from mpintel.ingestion.extraction import HttpExtractor
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.ingestion.storage import LocalObjectStorage
from mpintel.matching.orchestrator import NormalizationOrchestrator
from mpintel.notifications.slack import slack_status_subscriber
from mpintel.notifications.status import StatusNotifier
from mpintel.review.service import NORMALIZE_JOB

logger = logging.getLogger(__name__)


def build_notifier(config: AppConfig) -> StatusNotifier:
    notifier = StatusNotifier()
    if config.notifications.enabled:
        notifier.subscribe(slack_status_subscriber)
    return notifier


def build_context(config: AppConfig | None = None) -> dict[str, Any]:
    """Resources every job reads from ``ctx``."""
    config = config or get_config()
    return {
        "config": config,
        "session_maker": get_session_factory(),
        "storage": LocalObjectStorage(config.storage.root_dir),
        "extractor": HttpExtractor(config.extraction),
        "notifier": build_notifier(config),
    }


def lifecycle_from_ctx(ctx: dict[str, Any]) -> DocumentLifecycleController:
    return DocumentLifecycleController(
        session_factory=ctx["session_maker"],
        storage=ctx["storage"],
        dispatcher=ctx["dispatcher"],
        notifier=ctx.get("notifier"),
        config=ctx["config"],
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    config = get_config()
    configure_logging(config.log_level, config.log_format)
    ctx.update(build_context(config))
    ctx["dispatcher"] = ArqDispatcher(pool=ctx["redis"])
    logger.info("Worker started. Database connection initialized.")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    await close_db()
    logger.info("Worker stopped. Database connection closed.")


async def process_document_job(ctx: dict[str, Any], document_id: str) -> dict[str, Any]:
    """Extract one document. Safe to deliver more than once."""
    controller = lifecycle_from_ctx(ctx)
    status = await controller.process_document(UUID(document_id), ctx["extractor"])
    logger.info("Document %s extraction job finished: %s", document_id, status)
    return {"document_id": document_id, "status": status}


async def normalize_quote_job(ctx: dict[str, Any], quote_id: str) -> dict[str, Any]:
    """Match a verified quote's material lines against the catalog."""
    async with ctx["session_maker"]() as session:
        try:
            summary = await NormalizationOrchestrator(session).normalize_quote(UUID(quote_id))
        except QuoteNotFoundError:
            logger.warning("Quote %s not found; nothing to normalize", quote_id)
            return {"quote_id": quote_id, "status": "not_found"}
        await session.commit()

    return {
        "quote_id": quote_id,
        "status": "skipped" if summary.skipped else "normalized",
        "material_lines": summary.material_lines,
        "matched": summary.matched,
        "unmatched": summary.unmatched,
    }


async def requeue_unnormalized_quotes(
    ctx: dict[str, Any], dispatcher: JobDispatcher, now: datetime | None = None
) -> list[UUID]:
    """Re-submit verified quotes whose normalization never completed."""
    config: AppConfig = ctx["config"]
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(
        seconds=config.pipeline.normalization_grace_seconds
    )
    async with ctx["session_maker"]() as session:
        quote_ids = list(
            await session.scalars(
                select(QuoteModel.id).where(
                    QuoteModel.verified.is_(True),
                    QuoteModel.normalized_at.is_(None),
                    QuoteModel.verified_at < cutoff,
                )
            )
        )

    requeued = []
    for quote_id in quote_ids:
        try:
            # No job id: the original one may still be held by a failed result
            await dispatcher.enqueue(NORMALIZE_JOB, str(quote_id))
        except DispatchError as exc:
            logger.error("Could not re-enqueue normalization for %s: %s", quote_id, exc)
            continue
        requeued.append(quote_id)
    return requeued


async def sweep_stale_documents_job(ctx: dict[str, Any]) -> dict[str, Any]:
    """Fail timed-out extractions and retry stuck normalizations."""
    controller = lifecycle_from_ctx(ctx)
    expired = await controller.expire_stale_extractions()
    requeued = await requeue_unnormalized_quotes(ctx, ctx["dispatcher"])
    if expired or requeued:
        logger.info(
            "Sweep: %d extraction(s) expired, %d normalization(s) re-enqueued",
            len(expired),
            len(requeued),
        )
    return {
        "expired": [str(d) for d in expired],
        "requeued": [str(q) for q in requeued],
    }


JOB_FUNCTIONS = [process_document_job, normalize_quote_job, sweep_stale_documents_job]


def create_dispatcher(config: AppConfig | None = None) -> JobDispatcher:
    """Dispatcher for the configured queue backend."""
    config = config or get_config()
    if config.queue.backend == "local":
        return LocalDispatcher(JOB_FUNCTIONS, ctx=build_context(config))
    return ArqDispatcher(get_redis_settings())


class WorkerSettings:
    functions = JOB_FUNCTIONS
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(
        os.environ.get("REDIS_URL", "redis://redis:6379")
    )
    cron_jobs = [cron(sweep_stale_documents_job, second=0, run_at_startup=True)]
