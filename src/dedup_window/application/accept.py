"""Orquestração do accept: valida, faz o claim e encaminha a notificação.

A resposta sai logo após o claim; a notificação (se pedida) é apenas
enfileirada, sem afetar a latência nem o conteúdo da resposta.
"""

from __future__ import annotations

import re

from dedup_window.application.deduplicator import Deduplicator
from dedup_window.application.notifications import NotificationDispatcher
from dedup_window.domain.models import AcceptOutcome
from dedup_window.observability.logging import get_logger

logger = get_logger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"\+?[0-9]+")
MAX_IDENTIFIER = 2**63 - 1


class InvalidIdentifierError(ValueError):
    """Identificador ausente, malformado ou não positivo (erro do cliente)."""

    pass


def parse_identifier(raw: str | None) -> int:
    """Converte o parâmetro `id` em inteiro estritamente positivo.

    Aceita apenas dígitos decimais (com `+` opcional); sem espaços.

    Raises:
        InvalidIdentifierError: Se ausente, malformado, <= 0 ou acima de int64
    """
    if raw is None or not _IDENTIFIER_PATTERN.fullmatch(raw):
        raise InvalidIdentifierError("Invalid or missing 'id' parameter")
    try:
        identifier = int(raw)
    except ValueError as exc:
        # Excede o limite de dígitos de int()
        raise InvalidIdentifierError("Invalid or missing 'id' parameter") from exc
    if not 0 < identifier <= MAX_IDENTIFIER:
        raise InvalidIdentifierError("Invalid or missing 'id' parameter")
    return identifier


class RequestOrchestrator:
    """Lógica por request do endpoint de accept."""

    def __init__(self, deduplicator: Deduplicator, dispatcher: NotificationDispatcher) -> None:
        self._deduplicator = deduplicator
        self._dispatcher = dispatcher

    def accept(self, identifier: int) -> AcceptOutcome:
        """Faz o claim (bloqueante) e monta o resultado."""
        is_unique = self._deduplicator.claim(identifier)
        logger.info(
            "request_accepted",
            extra={"identifier": identifier, "is_duplicate": not is_unique},
        )
        return AcceptOutcome(identifier=identifier, is_unique=is_unique)

    async def notify(self, endpoint: str) -> bool:
        """Enfileira notificação da contagem corrente (não bloqueante)."""
        return self._dispatcher.submit(endpoint)
