"""Event stream: publica a contagem de cada janela de agregação.

Responsabilidades:
- Bootstrap da conectividade com o broker (retry fixo antes do primeiro uso)
- Garantir que o tópico exista (tópico pré-existente não é erro)
- Publicar uma mensagem por tick do Aggregator

Entrega at-most-once: falha de envio é logada e a mensagem descartada.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kafka import KafkaAdminClient, KafkaProducer
from kafka.admin import NewTopic
from kafka.errors import KafkaError, TopicAlreadyExistsError

from dedup_window.domain.models import WindowCount
from dedup_window.observability.logging import get_logger

if TYPE_CHECKING:
    from dedup_window.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


class EventStreamBootstrapError(Exception):
    """Broker inalcançável após esgotar as tentativas de bootstrap.

    Condição fatal de startup: o processo não deve começar a servir.
    """

    pass


class EventPublisher(ABC):
    """Contrato abstrato para publicação de contagens."""

    @abstractmethod
    def bootstrap(self) -> None:
        """Prepara o publisher antes do primeiro uso.

        Raises:
            EventStreamBootstrapError: Se o broker não ficar acessível
        """
        ...

    @abstractmethod
    def publish(self, window: WindowCount) -> bool:
        """Publica uma contagem (uma única tentativa).

        Returns:
            True se o broker confirmou, False se a mensagem foi descartada
        """
        ...

    def close(self) -> None:
        """Libera recursos (opcional)."""
        return None


@dataclass(slots=True)
class InMemoryEventPublisher(EventPublisher):
    """Publisher em memória para desenvolvimento e testes.

    Guarda (key, payload) de cada publicação em `messages`.
    """

    message_key: str = "unique-id-count"
    messages: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    bootstrapped: bool = False

    def bootstrap(self) -> None:
        self.bootstrapped = True

    def publish(self, window: WindowCount) -> bool:
        payload = window.to_payload()
        self.messages.append((self.message_key, payload))
        logger.info("window_count_published", extra={"backend": "memory", **payload})
        return True

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [payload for _, payload in self.messages]


def _serialize_value(value: dict[str, Any]) -> bytes:
    return json.dumps(value).encode("utf-8")


class KafkaEventPublisher(EventPublisher):
    """Publisher Kafka (kafka-python).

    Admin client e producer são criados via factories injetáveis, o que
    permite substituir o broker em testes.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        *,
        message_key: str = "unique-id-count",
        num_partitions: int = 1,
        replication_factor: int = 1,
        bootstrap_retries: int = 10,
        bootstrap_delay_seconds: float = 5.0,
        publish_timeout_seconds: float = 10.0,
        client_id: str = "dedup_window",
        admin_factory: Callable[..., Any] = KafkaAdminClient,
        producer_factory: Callable[..., Any] = KafkaProducer,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._bootstrap_servers = [s.strip() for s in bootstrap_servers.split(",") if s.strip()]
        self._topic = topic
        self._message_key = message_key
        self._num_partitions = num_partitions
        self._replication_factor = replication_factor
        self._bootstrap_retries = bootstrap_retries
        self._bootstrap_delay_seconds = bootstrap_delay_seconds
        self._publish_timeout_seconds = publish_timeout_seconds
        self._client_id = client_id
        self._admin_factory = admin_factory
        self._producer_factory = producer_factory
        self._sleep = sleep
        self._producer: Any | None = None

    @property
    def topic(self) -> str:
        return self._topic

    def bootstrap(self) -> None:
        """Conecta com retry, garante o tópico e cria o producer."""
        admin = self._connect_with_retry()
        try:
            self._ensure_topic(admin)
        finally:
            admin.close()

        try:
            self._producer = self._producer_factory(
                bootstrap_servers=self._bootstrap_servers,
                client_id=self._client_id,
                key_serializer=lambda k: k.encode("utf-8"),
                value_serializer=_serialize_value,
                acks=1,
            )
        except KafkaError as e:
            logger.error(
                "Falha ao criar producer Kafka",
                extra={"error_type": type(e).__name__},
            )
            raise EventStreamBootstrapError(f"Não foi possível criar producer: {e}") from e

        logger.info(
            "event_stream_ready",
            extra={"topic": self._topic, "brokers": self._bootstrap_servers},
        )

    def _connect_with_retry(self) -> Any:
        """Tenta conectar ao broker até `bootstrap_retries` vezes."""
        for attempt in range(1, self._bootstrap_retries + 1):
            try:
                admin = self._admin_factory(
                    bootstrap_servers=self._bootstrap_servers,
                    client_id=self._client_id,
                )
            except KafkaError as e:
                logger.warning(
                    "Broker Kafka indisponível, aguardando retry",
                    extra={
                        "brokers": self._bootstrap_servers,
                        "attempt": attempt,
                        "max_attempts": self._bootstrap_retries,
                        "delay_seconds": self._bootstrap_delay_seconds,
                        "error_type": type(e).__name__,
                    },
                )
                if attempt < self._bootstrap_retries:
                    self._sleep(self._bootstrap_delay_seconds)
                continue

            logger.info(
                "Conectado ao broker Kafka",
                extra={"brokers": self._bootstrap_servers, "attempt": attempt},
            )
            return admin

        logger.error(
            "Esgotou tentativas de conexão ao broker Kafka",
            extra={"brokers": self._bootstrap_servers, "total_attempts": self._bootstrap_retries},
        )
        raise EventStreamBootstrapError(
            f"Broker Kafka inalcançável em {self._bootstrap_servers} "
            f"após {self._bootstrap_retries} tentativas"
        )

    def _ensure_topic(self, admin: Any) -> None:
        """Cria o tópico; falha na criação é logada e ignorada."""
        topic = NewTopic(
            name=self._topic,
            num_partitions=self._num_partitions,
            replication_factor=self._replication_factor,
        )
        try:
            admin.create_topics(new_topics=[topic])
        except TopicAlreadyExistsError:
            logger.info("Tópico Kafka já existe", extra={"topic": self._topic})
            return
        except KafkaError as e:
            logger.warning(
                "Falha ao criar tópico Kafka",
                extra={"topic": self._topic, "error_type": type(e).__name__},
            )
            return

        logger.info(
            "Tópico Kafka criado",
            extra={
                "topic": self._topic,
                "num_partitions": self._num_partitions,
                "replication_factor": self._replication_factor,
            },
        )

    def publish(self, window: WindowCount) -> bool:
        """Envia uma vez e aguarda o ack do broker; sem retry."""
        if self._producer is None:
            logger.error("Publisher Kafka usado antes do bootstrap", extra={"topic": self._topic})
            return False

        payload = window.to_payload()
        try:
            future = self._producer.send(self._topic, key=self._message_key, value=payload)
            future.get(timeout=self._publish_timeout_seconds)
        except Exception as e:  # noqa: BLE001 - best effort: descarta a mensagem
            logger.error(
                "Falha ao publicar contagem no Kafka (mensagem descartada)",
                extra={"topic": self._topic, "error_type": type(e).__name__, **payload},
            )
            return False

        logger.info("window_count_published", extra={"topic": self._topic, **payload})
        return True

    def close(self) -> None:
        if self._producer is None:
            return
        try:
            self._producer.close(timeout=self._publish_timeout_seconds)
        except KafkaError as e:
            logger.warning("Erro ao fechar producer Kafka", extra={"error_type": type(e).__name__})
        finally:
            self._producer = None


def create_event_publisher(settings: Settings | None = None) -> EventPublisher:
    """Factory para criar o publisher apropriado.

    Usa settings.event_stream_backend:
    - "memory": InMemoryEventPublisher (dev/testes)
    - "kafka": KafkaEventPublisher (produção)

    Não faz I/O: a conexão acontece em `bootstrap()` no startup.
    """
    if settings is None:
        from dedup_window.config.settings import get_settings

        settings = get_settings()

    backend = settings.event_stream_backend.lower()
    if backend == "memory":
        logger.info("Usando InMemoryEventPublisher (apenas dev/testes)")
        return InMemoryEventPublisher(message_key=settings.kafka_message_key)

    if backend == "kafka":
        if not settings.kafka_broker:
            raise ValueError("KAFKA_BROKER é obrigatório quando event_stream_backend=kafka")
        logger.info(
            "Usando KafkaEventPublisher",
            extra={"broker": settings.kafka_broker, "topic": settings.kafka_topic},
        )
        return KafkaEventPublisher(
            bootstrap_servers=settings.kafka_broker,
            topic=settings.kafka_topic,
            message_key=settings.kafka_message_key,
            num_partitions=settings.kafka_num_partitions,
            replication_factor=settings.kafka_replication_factor,
            bootstrap_retries=settings.kafka_bootstrap_retries,
            bootstrap_delay_seconds=settings.kafka_bootstrap_delay_seconds,
            publish_timeout_seconds=settings.kafka_publish_timeout_seconds,
            client_id=settings.service_name,
        )

    raise ValueError(f"Backend de event stream não reconhecido: {backend}")
