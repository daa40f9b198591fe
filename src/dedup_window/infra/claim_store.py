"""Claim store: cache compartilhado com TTL para dedupe entre instâncias.

Este módulo implementa os stores onde cada identificador aceito na janela
corrente vira um claim record (chave com TTL). O store é a autoridade:
nenhuma instância é dona de um claim.

Regras:
- Redis é o backend de produção (SET NX EX para atomicidade)
- Chaves sempre sob namespace dedicado (claim_key_prefix)
- Cada claim guarda um token aleatório; o drain só remove o claim
  enumerado se o token não mudou (compare-and-delete)
- InMemoryClaimStore apenas para dev/testes
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from itertools import islice
from typing import TYPE_CHECKING, Any

import redis
from redis.exceptions import RedisError

from dedup_window.observability.logging import get_logger

if TYPE_CHECKING:
    from dedup_window.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

# Remove cada KEYS[i] somente se o valor ainda for ARGV[i].
_RELEASE_SCRIPT = """
local deleted = 0
for i, key in ipairs(KEYS) do
    if redis.call('GET', key) == ARGV[i] then
        deleted = deleted + redis.call('DEL', key)
    end
end
return deleted
"""


class ClaimStoreError(Exception):
    """Falha no backend do claim store (indisponível, timeout, etc.)."""

    pass


def new_claim_token() -> str:
    """Token que identifica um claim específico de uma chave."""
    return uuid.uuid4().hex


def _chunks(items: list[Any], size: int) -> Iterator[list[Any]]:
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk


class ClaimStore(ABC):
    """Contrato abstrato para stores de claims.

    Implementações devem garantir:
    - Atomicidade de claim (set-if-not-exists) com TTL
    - Enumeração restrita ao namespace de claims
    - Remoção apenas dos claims enumerados (por chave + token)
    """

    @abstractmethod
    def claim(self, key: str, ttl_seconds: int) -> bool:
        """Cria o claim se não existir.

        Args:
            key: Forma textual do identificador (sem prefixo)
            ttl_seconds: Expiração do claim

        Returns:
            True se o claim foi criado agora (primeiro da janela)
            False se já existia (duplicado)

        Raises:
            ClaimStoreError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    def snapshot(self) -> dict[str, str]:
        """Enumera os claims presentes.

        Returns:
            Mapa chave -> token dos claims da janela corrente

        Raises:
            ClaimStoreError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    def release(self, snapshot: dict[str, str]) -> int:
        """Remove exatamente os claims enumerados em `snapshot`.

        Claims recriados depois da enumeração (token diferente) e claims
        novos ficam para a próxima janela.

        Returns:
            Quantidade de claims removidos

        Raises:
            ClaimStoreError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    def count(self) -> int:
        """Total atual de claims (contagem fresca, sem remover)."""
        ...

    @abstractmethod
    def ping(self) -> None:
        """Verifica conectividade; levanta ClaimStoreError se indisponível."""
        ...

    def close(self) -> None:
        """Libera recursos do backend (opcional)."""
        return None


@dataclass(slots=True)
class InMemoryClaimStore(ClaimStore):
    """Claim store em memória para desenvolvimento e testes.

    ATENÇÃO: Não usar em produção!
    - Não compartilha estado entre instâncias
    - TTL simulado a partir de `clock`

    Seguro sob threads concorrentes (lock único).
    """

    clock: Callable[[], float] = time.monotonic
    _claims: dict[str, tuple[str, float]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def claim(self, key: str, ttl_seconds: int) -> bool:
        """Marca claim se ausente (ou expirado); retorna True se novo."""
        with self._lock:
            now = self.clock()
            current = self._claims.get(key)
            if current is not None and current[1] > now:
                logger.debug("Claim hit (in-memory)", extra={"key": key, "is_duplicate": True})
                return False

            self._claims[key] = (new_claim_token(), now + ttl_seconds)
            logger.debug("Claim miss (in-memory)", extra={"key": key, "is_duplicate": False})
            return True

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            self._purge_expired()
            return {key: token for key, (token, _) in self._claims.items()}

    def release(self, snapshot: dict[str, str]) -> int:
        deleted = 0
        with self._lock:
            for key, token in snapshot.items():
                current = self._claims.get(key)
                if current is not None and current[0] == token:
                    del self._claims[key]
                    deleted += 1
        return deleted

    def count(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._claims)

    def ping(self) -> None:
        return None

    def _purge_expired(self) -> None:
        """Remove claims expirados (TTL simulado). Chamar com lock."""
        now = self.clock()
        expired = [k for k, (_, expires_at) in self._claims.items() if expires_at <= now]
        for k in expired:
            del self._claims[k]


class RedisClaimStore(ClaimStore):
    """Claim store via Redis com TTL nativo.

    Estrutura Redis:
        KEY: {prefix}{identifier}
        VALUE: token do claim (uuid4 hex)
        EXPIRE: intervalo de agregação

    O cliente é injetado (construído uma vez no startup).
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "claim:",
        scan_batch_size: int = 1000,
    ) -> None:
        """Inicializa store.

        Args:
            client: Cliente redis-py (decode_responses=True)
            key_prefix: Namespace dedicado aos claims
            scan_batch_size: Hint de COUNT no SCAN e tamanho dos lotes de MGET/DEL
        """
        self._client = client
        self._key_prefix = key_prefix
        self._scan_batch_size = scan_batch_size
        self._release_script = client.register_script(_RELEASE_SCRIPT)

    def _make_key(self, key: str) -> str:
        """Adiciona prefixo à chave."""
        return f"{self._key_prefix}{key}"

    def _match_pattern(self) -> str:
        return f"{self._key_prefix}*"

    def claim(self, key: str, ttl_seconds: int) -> bool:
        """Usa SET NX EX para criar o claim atomicamente."""
        redis_key = self._make_key(key)
        try:
            was_set = self._client.set(redis_key, new_claim_token(), nx=True, ex=ttl_seconds)
        except RedisError as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "claim", "error_type": type(e).__name__},
            )
            raise ClaimStoreError(f"Falha ao registrar claim: {e}") from e

        is_new = bool(was_set)
        logger.debug(
            "Claim check (Redis)",
            extra={"key": redis_key, "is_duplicate": not is_new, "ttl": ttl_seconds},
        )
        return is_new

    def _scan_keys(self) -> list[str]:
        # SCAN pode repetir chaves entre cursores
        keys = self._client.scan_iter(match=self._match_pattern(), count=self._scan_batch_size)
        return list(dict.fromkeys(keys))

    def snapshot(self) -> dict[str, str]:
        """SCAN no namespace + MGET dos tokens."""
        try:
            keys = self._scan_keys()
            snapshot: dict[str, str] = {}
            for chunk in _chunks(keys, self._scan_batch_size):
                tokens = self._client.mget(chunk)
                # Claims que expiraram entre SCAN e MGET não entram
                snapshot.update({k: t for k, t in zip(chunk, tokens) if t is not None})
        except RedisError as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "snapshot", "error_type": type(e).__name__},
            )
            raise ClaimStoreError(f"Falha ao enumerar claims: {e}") from e
        return snapshot

    def release(self, snapshot: dict[str, str]) -> int:
        """Compare-and-delete em lotes via script Lua."""
        if not snapshot:
            return 0

        deleted = 0
        try:
            for chunk in _chunks(list(snapshot.items()), self._scan_batch_size):
                keys = [k for k, _ in chunk]
                tokens = [t for _, t in chunk]
                deleted += int(self._release_script(keys=keys, args=tokens))
        except RedisError as e:
            logger.error(
                "Erro em operação Redis",
                extra={
                    "operation": "release",
                    "error_type": type(e).__name__,
                    "deleted_before_error": deleted,
                },
            )
            raise ClaimStoreError(f"Falha ao remover claims: {e}") from e
        return deleted

    def count(self) -> int:
        try:
            return len(self._scan_keys())
        except RedisError as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "count", "error_type": type(e).__name__},
            )
            raise ClaimStoreError(f"Falha ao contar claims: {e}") from e

    def ping(self) -> None:
        try:
            self._client.ping()
        except RedisError as e:
            logger.error("Falha ao conectar ao Redis", extra={"error_type": type(e).__name__})
            raise ClaimStoreError(f"Não foi possível conectar ao Redis: {e}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as e:
            logger.warning("Erro ao fechar cliente Redis", extra={"error_type": type(e).__name__})


def create_redis_client(settings: Settings) -> Any:
    """Cria cliente Redis a partir de REDIS_URL ou REDIS_HOST/REDIS_PORT."""
    options: dict[str, Any] = {
        "decode_responses": True,
        "socket_timeout": settings.redis_socket_timeout_seconds,
        "socket_connect_timeout": settings.redis_socket_timeout_seconds,
    }
    if settings.redis_url:
        return redis.from_url(settings.redis_url, **options)
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        **options,
    )


def create_claim_store(settings: Settings | None = None) -> ClaimStore:
    """Factory para criar o claim store apropriado.

    Usa settings.claim_store_backend para determinar implementação:
    - "memory": InMemoryClaimStore (dev/testes)
    - "redis": RedisClaimStore (produção)

    Não faz I/O: a conectividade é verificada no startup via `ping()`.

    Raises:
        ValueError: Se backend não reconhecido
    """
    if settings is None:
        from dedup_window.config.settings import get_settings

        settings = get_settings()

    backend = settings.claim_store_backend.lower()
    if backend == "memory":
        logger.info("Usando InMemoryClaimStore (apenas dev/testes)")
        return InMemoryClaimStore()

    if backend == "redis":
        target = settings.redis_url or f"{settings.redis_host}:{settings.redis_port}"
        logger.info(
            "Usando RedisClaimStore",
            extra={
                "target": target.split("@")[-1],  # Sem credenciais
                "key_prefix": settings.claim_key_prefix,
            },
        )
        return RedisClaimStore(
            client=create_redis_client(settings),
            key_prefix=settings.claim_key_prefix,
            scan_batch_size=settings.claim_scan_batch_size,
        )

    raise ValueError(f"Backend de claim store não reconhecido: {backend}")
