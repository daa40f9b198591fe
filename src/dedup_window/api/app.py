"""Fábrica da aplicação FastAPI.

Componentes (claim store, publisher, aggregator, dispatcher) são
construídos uma vez por app e injetados via `app.state`. O I/O de
startup acontece no lifespan:
- ping no claim store (falha => startup fatal)
- bootstrap do event stream com retry (esgotado => startup fatal)
- start do dispatcher de notificações e do aggregator
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from dedup_window.api.routes import router
from dedup_window.application.accept import RequestOrchestrator
from dedup_window.application.aggregator import WindowAggregator
from dedup_window.application.deduplicator import Deduplicator
from dedup_window.application.notifications import NotificationDispatcher
from dedup_window.config.settings import Settings, get_settings
from dedup_window.infra.claim_store import ClaimStore, ClaimStoreError, create_claim_store
from dedup_window.infra.event_stream import (
    EventPublisher,
    EventStreamBootstrapError,
    create_event_publisher,
)
from dedup_window.infra.http import HttpClient, create_http_client
from dedup_window.observability.logging import configure_logging, get_logger
from dedup_window.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)


@dataclass(slots=True)
class ServiceComponents:
    """Dependências de processo, criadas uma vez no startup."""

    claim_store: ClaimStore
    publisher: EventPublisher
    deduplicator: Deduplicator
    aggregator: WindowAggregator
    dispatcher: NotificationDispatcher
    orchestrator: RequestOrchestrator


def build_components(
    settings: Settings,
    *,
    claim_store: ClaimStore | None = None,
    publisher: EventPublisher | None = None,
    http_client: HttpClient | None = None,
) -> ServiceComponents:
    """Monta o grafo de componentes (sem I/O)."""
    store = claim_store or create_claim_store(settings)
    event_publisher = publisher or create_event_publisher(settings)

    deduplicator = Deduplicator(store=store, ttl_seconds=settings.claim_ttl_seconds)
    aggregator = WindowAggregator(
        store=store,
        publisher=event_publisher,
        interval_seconds=settings.aggregation_interval_seconds,
    )
    dispatcher = NotificationDispatcher(
        store=store,
        http_client=http_client or create_http_client(settings),
        max_pending=settings.notification_queue_size,
        workers=settings.notification_workers,
    )
    return ServiceComponents(
        claim_store=store,
        publisher=event_publisher,
        deduplicator=deduplicator,
        aggregator=aggregator,
        dispatcher=dispatcher,
        orchestrator=RequestOrchestrator(deduplicator, dispatcher),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown dos componentes de processo."""
    components: ServiceComponents = app.state.components

    try:
        await asyncio.to_thread(components.claim_store.ping)
    except ClaimStoreError:
        logger.critical("startup_failed", extra={"reason": "claim_store_unreachable"})
        raise

    try:
        await asyncio.to_thread(components.publisher.bootstrap)
    except EventStreamBootstrapError:
        logger.critical("startup_failed", extra={"reason": "event_stream_unreachable"})
        components.claim_store.close()
        raise

    await components.dispatcher.start()
    await components.aggregator.start()
    logger.info("service_started", extra={"service": app.title})

    try:
        yield
    finally:
        await components.aggregator.stop()
        await components.dispatcher.stop()
        await asyncio.to_thread(components.publisher.close)
        components.claim_store.close()
        logger.info("service_stopped")


def create_app(
    settings: Settings | None = None,
    *,
    claim_store: ClaimStore | None = None,
    publisher: EventPublisher | None = None,
    http_client: HttpClient | None = None,
) -> FastAPI:
    """Cria a aplicação FastAPI.

    Backends podem ser injetados (testes); caso contrário vêm das settings.

    Raises:
        ValueError: Configuração inválida
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name)

    validation_errors = settings.validate_all()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(router)

    components = build_components(
        settings,
        claim_store=claim_store,
        publisher=publisher,
        http_client=http_client,
    )
    app.state.settings = settings
    app.state.components = components
    app.state.orchestrator = components.orchestrator

    return app


# Instância padrão para uvicorn (ex.: `uvicorn dedup_window.api.app:app`)
app = create_app()
