"""Testes para infra/event_stream.py (kafka-python mockado via factories)."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from kafka.errors import KafkaTimeoutError, NoBrokersAvailable, TopicAlreadyExistsError

from dedup_window.config.settings import Settings
from dedup_window.domain.models import WindowCount
from dedup_window.infra.event_stream import (
    EventStreamBootstrapError,
    InMemoryEventPublisher,
    KafkaEventPublisher,
    create_event_publisher,
)

WINDOW = WindowCount(count=3, captured_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC))


@pytest.fixture
def admin() -> MagicMock:
    return MagicMock()


@pytest.fixture
def producer() -> MagicMock:
    return MagicMock()


@pytest.fixture
def sleep() -> MagicMock:
    return MagicMock()


def _publisher(admin_factory, producer_factory, sleep, **kwargs) -> KafkaEventPublisher:
    return KafkaEventPublisher(
        "kafka:9092, kafka2:9092",
        "unique-id-count",
        admin_factory=admin_factory,
        producer_factory=producer_factory,
        sleep=sleep,
        **kwargs,
    )


class TestKafkaBootstrap:
    """Conexão com retry e criação de tópico."""

    def test_bootstrap_creates_topic_and_producer(self, admin, producer, sleep) -> None:
        admin_factory = MagicMock(return_value=admin)
        producer_factory = MagicMock(return_value=producer)
        publisher = _publisher(admin_factory, producer_factory, sleep)

        publisher.bootstrap()

        assert admin_factory.call_args.kwargs["bootstrap_servers"] == [
            "kafka:9092",
            "kafka2:9092",
        ]
        new_topic = admin.create_topics.call_args.kwargs["new_topics"][0]
        assert new_topic.name == "unique-id-count"
        assert new_topic.num_partitions == 1
        assert new_topic.replication_factor == 1
        admin.close.assert_called_once()
        assert producer_factory.call_args.kwargs["acks"] == 1
        sleep.assert_not_called()

    def test_bootstrap_retries_until_broker_available(self, admin, producer, sleep) -> None:
        admin_factory = MagicMock(side_effect=[NoBrokersAvailable(), NoBrokersAvailable(), admin])
        publisher = _publisher(
            admin_factory,
            MagicMock(return_value=producer),
            sleep,
            bootstrap_delay_seconds=5.0,
        )

        publisher.bootstrap()

        assert admin_factory.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(5.0)

    def test_bootstrap_exhausted_raises(self, sleep) -> None:
        admin_factory = MagicMock(side_effect=NoBrokersAvailable())
        producer_factory = MagicMock()
        publisher = _publisher(admin_factory, producer_factory, sleep, bootstrap_retries=3)

        with pytest.raises(EventStreamBootstrapError):
            publisher.bootstrap()

        assert admin_factory.call_count == 3
        # Sem espera após a última tentativa
        assert sleep.call_count == 2
        producer_factory.assert_not_called()

    def test_default_retry_policy(self, sleep) -> None:
        """Padrão: 10 tentativas com 5s de intervalo."""
        admin_factory = MagicMock(side_effect=NoBrokersAvailable())
        publisher = _publisher(admin_factory, MagicMock(), sleep)

        with pytest.raises(EventStreamBootstrapError):
            publisher.bootstrap()

        assert admin_factory.call_count == 10
        assert sleep.call_count == 9
        sleep.assert_called_with(5.0)

    def test_existing_topic_is_not_an_error(self, admin, producer, sleep) -> None:
        admin.create_topics.side_effect = TopicAlreadyExistsError()
        publisher = _publisher(MagicMock(return_value=admin), MagicMock(return_value=producer), sleep)

        publisher.bootstrap()

        assert publisher.publish(WINDOW) is True

    def test_topic_creation_failure_is_not_fatal(self, admin, producer, sleep) -> None:
        admin.create_topics.side_effect = KafkaTimeoutError()
        publisher = _publisher(MagicMock(return_value=admin), MagicMock(return_value=producer), sleep)

        publisher.bootstrap()

        admin.close.assert_called_once()


class TestKafkaPublish:
    """Publicação at-most-once."""

    @pytest.fixture
    def ready(self, admin, producer, sleep) -> KafkaEventPublisher:
        publisher = _publisher(
            MagicMock(return_value=admin),
            MagicMock(return_value=producer),
            sleep,
            publish_timeout_seconds=2.5,
        )
        publisher.bootstrap()
        return publisher

    def test_publish_sends_keyed_payload_and_waits_ack(self, ready, producer) -> None:
        assert ready.publish(WINDOW) is True

        producer.send.assert_called_once_with(
            "unique-id-count",
            key="unique-id-count",
            value={"unique_request_count": 3, "timestamp": "2026-01-02T03:04:05+00:00"},
        )
        producer.send.return_value.get.assert_called_once_with(timeout=2.5)

    def test_publish_failure_drops_message(self, ready, producer) -> None:
        producer.send.return_value.get.side_effect = KafkaTimeoutError()

        assert ready.publish(WINDOW) is False
        assert producer.send.call_count == 1

    def test_publish_before_bootstrap_returns_false(self, sleep) -> None:
        publisher = _publisher(MagicMock(), MagicMock(), sleep)
        assert publisher.publish(WINDOW) is False

    def test_close_closes_producer(self, ready, producer) -> None:
        ready.close()
        ready.close()

        producer.close.assert_called_once()
        assert ready.publish(WINDOW) is False


class TestInMemoryEventPublisher:
    def test_records_messages_with_key(self) -> None:
        publisher = InMemoryEventPublisher(message_key="k")
        publisher.bootstrap()

        assert publisher.publish(WINDOW) is True
        assert publisher.bootstrapped is True
        assert publisher.messages == [("k", WINDOW.to_payload())]


class TestCreateEventPublisher:
    def test_memory_backend(self) -> None:
        publisher = create_event_publisher(Settings(event_stream_backend="memory"))
        assert isinstance(publisher, InMemoryEventPublisher)

    def test_kafka_backend_uses_settings(self) -> None:
        settings = Settings(
            event_stream_backend="kafka",
            kafka_broker="broker:9092",
            kafka_topic="counts",
        )
        publisher = create_event_publisher(settings)

        assert isinstance(publisher, KafkaEventPublisher)
        assert publisher.topic == "counts"

    def test_kafka_backend_requires_broker(self) -> None:
        with pytest.raises(ValueError):
            create_event_publisher(Settings(event_stream_backend="kafka"))

    def test_unknown_backend_raises(self) -> None:
        with pytest.raises(ValueError):
            create_event_publisher(Settings(event_stream_backend="rabbit"))
