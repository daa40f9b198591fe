"""Configurações da aplicação via variáveis de ambiente.

Todas as configurações são carregadas de env vars (ex.: REDIS_HOST,
KAFKA_BROKER, KAFKA_TOPIC). Constantes de retry/intervalo possuem
defaults documentados e são validadas no startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# -----------------------------------------------------------------------------
# Defaults do stream de métricas
# -----------------------------------------------------------------------------
DEFAULT_TOPIC: str = "unique-id-count"
DEFAULT_MESSAGE_KEY: str = "unique-id-count"
DEFAULT_AGGREGATION_INTERVAL_SECONDS: int = 60


class Settings(BaseSettings):
    """Configurações lidas do ambiente (nomes case-insensitive)."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "dedup_window"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Claim store (cache distribuído)
    claim_store_backend: str = "memory"  # memory | redis
    redis_url: str | None = None  # Tem precedência sobre host/port
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_socket_timeout_seconds: float = 5.0
    claim_key_prefix: str = "claim:"  # Namespace dedicado dos claims
    claim_scan_batch_size: int = 1000  # Chaves por SCAN/DEL em lote

    # Janela de agregação (também é o TTL de cada claim)
    aggregation_interval_seconds: int = DEFAULT_AGGREGATION_INTERVAL_SECONDS

    # Event stream (Kafka)
    event_stream_backend: str = "memory"  # memory | kafka
    kafka_broker: str | None = None  # host:port[,host:port]
    kafka_topic: str = DEFAULT_TOPIC
    kafka_message_key: str = DEFAULT_MESSAGE_KEY
    kafka_num_partitions: int = 1
    kafka_replication_factor: int = 1
    kafka_bootstrap_retries: int = 10
    kafka_bootstrap_delay_seconds: float = 5.0
    kafka_publish_timeout_seconds: float = 10.0

    # Notificação (callback opcional)
    notification_timeout_seconds: float = 10.0
    notification_max_retries: int = 0  # Fire-and-forget: sem retry por padrão
    notification_queue_size: int = 1000  # Backpressure: excedente é descartado
    notification_workers: int = 4

    @property
    def claim_ttl_seconds(self) -> int:
        """TTL de cada claim: igual ao intervalo de agregação."""
        return self.aggregation_interval_seconds

    def validate_claim_store_config(self) -> list[str]:
        """Valida backend do claim store.

        Em staging/prod, memory é proibido (instâncias não compartilham estado).
        Retorna lista de erros (vazia = tudo OK).
        """
        errors: list[str] = []
        backend = self.claim_store_backend.lower()
        valid_backends = {"memory", "redis"}

        if backend not in valid_backends:
            errors.append(
                f"CLAIM_STORE_BACKEND '{backend}' inválido. Valores válidos: {valid_backends}"
            )

        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append(
                "CLAIM_STORE_BACKEND=memory é proibido em staging/production. "
                "Configure Redis para dedupe entre instâncias."
            )

        if backend == "redis" and not (self.redis_url or self.redis_host):
            errors.append("CLAIM_STORE_BACKEND=redis requer REDIS_URL ou REDIS_HOST")

        if not 0 < self.redis_port < 65536:
            errors.append("REDIS_PORT deve estar entre 1 e 65535")

        if not self.claim_key_prefix:
            errors.append("CLAIM_KEY_PREFIX não pode ser vazio (SCAN varreria o keyspace todo)")

        if self.claim_scan_batch_size < 1:
            errors.append("CLAIM_SCAN_BATCH_SIZE deve ser >= 1")

        return errors

    def validate_aggregation_config(self) -> list[str]:
        """Valida intervalo da janela de agregação."""
        errors: list[str] = []
        if self.aggregation_interval_seconds < 1:
            errors.append("AGGREGATION_INTERVAL_SECONDS deve ser >= 1")
        return errors

    def validate_event_stream_config(self) -> list[str]:
        """Valida backend do event stream e parâmetros de bootstrap."""
        errors: list[str] = []
        backend = self.event_stream_backend.lower()
        valid_backends = {"memory", "kafka"}

        if backend not in valid_backends:
            errors.append(
                f"EVENT_STREAM_BACKEND '{backend}' inválido. Valores válidos: {valid_backends}"
            )

        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append("EVENT_STREAM_BACKEND=memory é proibido em staging/production")

        if backend == "kafka" and not self.kafka_broker:
            errors.append("EVENT_STREAM_BACKEND=kafka requer KAFKA_BROKER configurado")

        if not self.kafka_topic:
            errors.append("KAFKA_TOPIC não pode ser vazio")

        if self.kafka_num_partitions < 1:
            errors.append("KAFKA_NUM_PARTITIONS deve ser >= 1")

        if self.kafka_replication_factor < 1:
            errors.append("KAFKA_REPLICATION_FACTOR deve ser >= 1")

        if self.kafka_bootstrap_retries < 1:
            errors.append("KAFKA_BOOTSTRAP_RETRIES deve ser >= 1")

        if self.kafka_bootstrap_delay_seconds < 0:
            errors.append("KAFKA_BOOTSTRAP_DELAY_SECONDS não pode ser negativo")

        if self.kafka_publish_timeout_seconds <= 0:
            errors.append("KAFKA_PUBLISH_TIMEOUT_SECONDS deve ser > 0")

        return errors

    def validate_notification_config(self) -> list[str]:
        """Valida fila e workers de notificação."""
        errors: list[str] = []
        if self.notification_timeout_seconds <= 0:
            errors.append("NOTIFICATION_TIMEOUT_SECONDS deve ser > 0")
        if self.notification_max_retries < 0:
            errors.append("NOTIFICATION_MAX_RETRIES não pode ser negativo")
        if self.notification_queue_size < 1:
            errors.append("NOTIFICATION_QUEUE_SIZE deve ser >= 1")
        if self.notification_workers < 1:
            errors.append("NOTIFICATION_WORKERS deve ser >= 1")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todos os erros de validação."""
        errors: list[str] = []
        errors.extend(self.validate_claim_store_config())
        errors.extend(self.validate_aggregation_config())
        errors.extend(self.validate_event_stream_config())
        errors.extend(self.validate_notification_config())
        return errors

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings.

    A cache garante que mesmo múltiplas injeções não criam novos objetos.
    """
    return Settings()
