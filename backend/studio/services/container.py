"""Process-wide service graph, built once at startup and passed by reference."""

from dataclasses import dataclass
from typing import Any

import httpx

from studio.config import Settings
from studio.models.database import build_engine, build_session_maker
from studio.services.generation_providers import ProviderRegistry, build_provider_registry
from studio.services.generation_queue import GenerationQueue
from studio.services.idempotency_store import IdempotencyStore
from studio.services.orchestrator import GenerationOrchestrator
from studio.services.repository import InMemoryTimelineRepository, TimelineRepository
from studio.services.revision_service import RevisionService
from studio.services.segment_service import SegmentService
from studio.services.sql_repository import SqlTimelineRepository
from studio.services.storage_service import StorageSelector, build_storage_selector


@dataclass
class ServiceContainer:
    settings: Settings
    repository: TimelineRepository
    providers: ProviderRegistry
    storage: StorageSelector
    queue: GenerationQueue
    segments: SegmentService
    revisions: RevisionService
    orchestrator: GenerationOrchestrator
    idempotency: IdempotencyStore
    engine: Any = None  # AsyncEngine when backed by SQL


def build_container(
    settings: Settings,
    *,
    repository: TimelineRepository | None = None,
    providers: ProviderRegistry | None = None,
    storage: StorageSelector | None = None,
    http_client: httpx.AsyncClient | None = None,
    **orchestrator_options: Any,
) -> ServiceContainer:
    engine = None
    if repository is None:
        if settings.use_in_memory_store:
            repository = InMemoryTimelineRepository()
        else:
            engine = build_engine(settings.database_url, settings.database_echo)
            repository = SqlTimelineRepository(build_session_maker(engine))

    providers = providers or build_provider_registry(settings, http_client)
    storage = storage or build_storage_selector(settings, http_client)
    queue = GenerationQueue(settings.generation_concurrency_policy)
    revisions = RevisionService(repository)
    orchestrator = GenerationOrchestrator(
        repository,
        providers,
        storage,
        revisions,
        queue,
        server_key=settings.gemini_api_key,
        min_key_length=settings.min_api_key_length,
        poll_interval_s=settings.generation_poll_interval_s,
        timeout_s=settings.generation_timeout_s,
        cache_control=settings.storage_cache_control,
        **orchestrator_options,
    )
    return ServiceContainer(
        settings=settings,
        repository=repository,
        providers=providers,
        storage=storage,
        queue=queue,
        segments=SegmentService(repository),
        revisions=revisions,
        orchestrator=orchestrator,
        idempotency=IdempotencyStore(),
        engine=engine,
    )
