"""Shared dependencies for mpintel web routes.

Long-lived collaborators (dispatcher, storage, notifier) live on
``app.state`` and are created in the app lifespan; tests replace them
through ``app.dependency_overrides``.

Usage:
    from fastapi import Depends
    from mpintel.web.dependencies import get_lifecycle

    @router.get("/documents/{document_id}")
    async def get_document(document_id: UUID, lifecycle=Depends(get_lifecycle)):
        ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mpintel.config import AppConfig, get_config
from mpintel.core.queue import JobDispatcher
from mpintel.db.connection import get_session_factory
from mpintel.ingestion.lifecycle import DocumentLifecycleController
from mpintel.ingestion.storage import ObjectStorage
from mpintel.notifications.status import StatusNotifier
from mpintel.review.service import ReviewService


def get_app_config() -> AppConfig:
    return get_config()


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def get_db(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped read session."""
    async with session_maker() as session:
        yield session


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_notifier(request: Request) -> StatusNotifier | None:
    return getattr(request.app.state, "notifier", None)


def get_org_id(
    org: str | None = Query(default=None, description="Organization id"),
    config: AppConfig = Depends(get_app_config),
) -> str:
    return org or config.org_id


def get_lifecycle(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    storage: ObjectStorage = Depends(get_storage),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    notifier: StatusNotifier | None = Depends(get_notifier),
    config: AppConfig = Depends(get_app_config),
) -> DocumentLifecycleController:
    return DocumentLifecycleController(
        session_factory=session_maker,
        storage=storage,
        dispatcher=dispatcher,
        notifier=notifier,
        config=config,
    )


def get_review_service(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    config: AppConfig = Depends(get_app_config),
) -> ReviewService:
    return ReviewService(session_maker, dispatcher, config)
