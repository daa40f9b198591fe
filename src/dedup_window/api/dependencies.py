"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Request

from dedup_window.application.accept import RequestOrchestrator
from dedup_window.config.settings import Settings


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_orchestrator(request: Request) -> RequestOrchestrator:
    """Retorna o orquestrador de accept."""

    return request.app.state.orchestrator
