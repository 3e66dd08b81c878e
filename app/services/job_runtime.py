# app/services/job_runtime.py
"""Wires the job store, handlers, executor and dispatcher together."""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import get_settings
from app.integrations.base import CredentialProvider
from app.integrations.credentials import CachingCredentialProvider, env_token_refresher
from app.integrations.google_business import GoogleBusinessClient
from app.integrations.google_merchant import GoogleMerchantClient
from app.services.dispatcher import JobDispatcher
from app.services.handlers import CategoryMirrorHandler, FeedPushHandler, HandlerRegistry, JobHandler
from app.services.handlers.feed_push import InventorySource
from app.services.job_events import JobEventRecorder
from app.services.job_executor import JobExecutor
from app.services.job_queue import JobQueue


@dataclass
class SyncRuntime:
    queue: JobQueue
    registry: HandlerRegistry
    executor: JobExecutor
    dispatcher: JobDispatcher
    events: JobEventRecorder

    async def close(self) -> None:
        """Let in-flight jobs finish, then release the provider HTTP clients."""
        await self.dispatcher.drain()
        for kind in self.registry.kinds:
            await self.registry.get(kind).client.close()


def default_handlers(inventory_source: Optional[InventorySource] = None, settings=None):
    return [
        FeedPushHandler(GoogleMerchantClient(settings=settings), inventory_source=inventory_source),
        CategoryMirrorHandler(GoogleBusinessClient(settings=settings)),
    ]


def build_runtime(
    session_factory: Optional[async_sessionmaker] = None,
    credentials: Optional[CredentialProvider] = None,
    handlers: Optional[Iterable[JobHandler]] = None,
    events: Optional[JobEventRecorder] = None,
    settings=None,
    **executor_kwargs,
) -> SyncRuntime:
    """Assemble a runtime; anything not supplied gets the production default."""
    settings = settings or get_settings()
    events = events or JobEventRecorder()
    registry = HandlerRegistry(handlers if handlers is not None else default_handlers(settings=settings))
    queue = JobQueue(session_factory, events=events, settings=settings, known_kinds=registry.kinds)
    credentials = credentials or CachingCredentialProvider(env_token_refresher)
    executor = JobExecutor(queue, registry, credentials, settings=settings, **executor_kwargs)
    dispatcher = JobDispatcher(queue, executor, settings=settings)
    return SyncRuntime(queue=queue, registry=registry, executor=executor, dispatcher=dispatcher, events=events)
