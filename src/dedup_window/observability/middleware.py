"""Correlation id por request de accept.

O id é propagado do header `x-correlation-id` quando seguro para logs
(alfanumérico, `-` ou `_`, até 64 caracteres); caso contrário um novo
id é gerado. Tasks de agregação e notificação rodam fora do request e
logam sem correlation_id.
"""

from __future__ import annotations

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_ID_HEADER = "x-correlation-id"

_SAFE_CORRELATION_ID = re.compile(r"[A-Za-z0-9_-]{1,64}")

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Retorna o correlation_id do request corrente (ou vazio)."""

    return _correlation_id.get()


def resolve_correlation_id(incoming: str | None) -> str:
    """Reaproveita o id recebido se for seguro; senão gera um novo."""
    if incoming and _SAFE_CORRELATION_ID.fullmatch(incoming):
        return incoming
    return uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Define o correlation_id do request e o devolve na resposta."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        token = _correlation_id.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            _correlation_id.reset(token)

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
