"""Configuração de logging estruturado (JSON)."""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from dedup_window.observability.middleware import get_correlation_id


class CorrelationIdFilter(logging.Filter):
    """Insere correlation_id e service no record de log.

    Logs de tasks em background (agregação, notificação) saem sem
    correlation_id, a menos que seja passado via `extra`.
    """

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        existing = getattr(record, "correlation_id", None)
        record.correlation_id = existing if existing else get_correlation_id()
        record.service = self._service_name
        return True


def configure_logging(level: str, service_name: str) -> None:
    """Configura logging JSON com campos padrão do serviço."""

    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s %(correlation_id)s %(service)s",
        rename_fields={"levelname": "level", "name": "logger"},
    )

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter(service_name))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]


def get_logger(name: str) -> logging.Logger:
    """Retorna logger simples; o filtro injeta service/correlation_id."""

    return logging.getLogger(name)


def log_fallback(
    logger: logging.Logger,
    component: str,
    reason: str | None = None,
    default: str | None = None,
) -> None:
    """Log observável de default conservador aplicado.

    Args:
        logger: Logger instance
        component: Nome do componente (ex: "claim", "drain", "publish")
        reason: Razão do fallback (ex: "store_unavailable")
        default: Default aplicado (ex: "not_unique", "tick_skipped")

    Exemplo:
        log_fallback(logger, "claim", reason="store_unavailable", default="not_unique")
    """
    extra: dict[str, object] = {
        "fallback_used": True,
        "component": component,
    }
    if reason:
        extra["reason"] = reason
    if default:
        extra["default"] = default

    logger.warning(
        f"Fallback applied for {component}",
        extra=extra,
    )
