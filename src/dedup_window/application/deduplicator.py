"""Deduplicator: claim de identificadores na janela corrente.

Apenas deriva a chave textual e delega ao ClaimStore; a atomicidade vem
inteiramente do set-if-absent do store (sem lock adicional).
"""

from __future__ import annotations

from dataclasses import dataclass

from dedup_window.infra.claim_store import ClaimStore, ClaimStoreError
from dedup_window.observability.logging import get_logger, log_fallback

logger = get_logger(__name__)


@dataclass(slots=True)
class Deduplicator:
    """Verifica e marca identificadores.

    Regras:
    - Chave: forma decimal do identificador (o store aplica o namespace)
    - TTL: intervalo de agregação (rede de segurança se o drain atrasar)
    - Fail-closed: store indisponível => não-único
    """

    store: ClaimStore
    ttl_seconds: int

    def claim(self, identifier: int) -> bool:
        """Tenta registrar o identificador na janela corrente.

        Returns:
            True se esta chamada foi a primeira a ver o identificador;
            False se já existia ou se o estado é desconhecido (store fora).
        """
        try:
            return self.store.claim(str(identifier), self.ttl_seconds)
        except ClaimStoreError as exc:
            logger.error(
                "claim_store_unavailable",
                extra={"identifier": identifier, "error": str(exc)},
            )
            log_fallback(logger, "claim", reason="store_unavailable", default="not_unique")
            return False
