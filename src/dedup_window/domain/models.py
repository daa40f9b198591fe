"""Modelos de domínio da janela de dedupe.

Tipos imutáveis trocados entre Aggregator, Publisher e notificações.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

DUPLICATE_BODY = "ok (duplicate), retry with different id"
UNIQUE_BODY = "ok"


def utc_now() -> datetime:
    """Relógio padrão (UTC, aware)."""
    return datetime.now(tz=UTC)


def format_rfc3339(moment: datetime) -> str:
    """Formata datetime como RFC3339 (UTC) com precisão de segundos.

    Datetimes naive são tratados como UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="seconds")


def count_payload(count: int, moment: datetime) -> dict[str, Any]:
    """Payload canônico de contagem (stream e callback usam o mesmo contrato)."""
    return {
        "unique_request_count": count,
        "timestamp": format_rfc3339(moment),
    }


@dataclass(frozen=True, slots=True)
class WindowCount:
    """Snapshot de contagem de uma janela de agregação."""

    count: int
    captured_at: datetime

    def to_payload(self) -> dict[str, Any]:
        """Serializa para o formato publicado no event stream."""
        return count_payload(self.count, self.captured_at)


@dataclass(frozen=True, slots=True)
class AcceptOutcome:
    """Resultado de um accept: identificador e se foi único na janela."""

    identifier: int
    is_unique: bool

    @property
    def body(self) -> str:
        return UNIQUE_BODY if self.is_unique else DUPLICATE_BODY
