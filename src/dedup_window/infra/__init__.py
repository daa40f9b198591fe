"""Camada de infraestrutura: adapters para serviços externos.

Este módulo exporta as factories principais para criação de
componentes de infraestrutura:

- Claim store: InMemoryClaimStore, RedisClaimStore, create_claim_store
- Event stream: InMemoryEventPublisher, KafkaEventPublisher, create_event_publisher
- HTTP: HttpClient, create_http_client

Uso típico:
    from dedup_window.infra import create_claim_store, create_event_publisher

Infraestrutura não decide regra de negócio (ex.: fail-closed do claim).
"""

from dedup_window.infra.claim_store import (
    ClaimStore,
    ClaimStoreError,
    InMemoryClaimStore,
    RedisClaimStore,
    create_claim_store,
)
from dedup_window.infra.event_stream import (
    EventPublisher,
    EventStreamBootstrapError,
    InMemoryEventPublisher,
    KafkaEventPublisher,
    create_event_publisher,
)
from dedup_window.infra.http import HttpClient, HttpClientConfig, HttpError, create_http_client

__all__ = [
    "ClaimStore",
    "ClaimStoreError",
    "InMemoryClaimStore",
    "RedisClaimStore",
    "create_claim_store",
    "EventPublisher",
    "EventStreamBootstrapError",
    "InMemoryEventPublisher",
    "KafkaEventPublisher",
    "create_event_publisher",
    "HttpClient",
    "HttpClientConfig",
    "HttpError",
    "create_http_client",
]
