"""Rotas HTTP: accept de identificadores e healthcheck."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from dedup_window.api.dependencies import get_orchestrator, get_settings
from dedup_window.application.accept import (
    InvalidIdentifierError,
    RequestOrchestrator,
    parse_identifier,
)
from dedup_window.config.settings import Settings
from dedup_window.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

ACCEPT_PATH = "/api/verve/accept"


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Healthcheck simples."""
    return {"status": "ok", "service": settings.service_name, "version": settings.version}


@router.get(ACCEPT_PATH, response_class=PlainTextResponse)
async def accept(
    background_tasks: BackgroundTasks,
    raw_id: str | None = Query(None, alias="id"),
    endpoint: str | None = Query(None),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
) -> PlainTextResponse:
    """Registra o identificador na janela e responde imediatamente.

    Métodos diferentes de GET recebem 405 do próprio roteador.
    """
    try:
        identifier = parse_identifier(raw_id)
    except InvalidIdentifierError as exc:
        logger.info("invalid_identifier_rejected", extra={"raw_id": (raw_id or "")[:64]})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or missing 'id' parameter",
        ) from exc

    # Claim é I/O bloqueante: roda no threadpool
    outcome = await run_in_threadpool(orchestrator.accept, identifier)

    if endpoint and outcome.is_unique:
        # Só claims únicos notificam; executa depois que a resposta foi enviada
        background_tasks.add_task(orchestrator.notify, endpoint)

    return PlainTextResponse(outcome.body, status_code=status.HTTP_200_OK)
