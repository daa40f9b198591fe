"""Configurações centralizadas do dedup_window.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única
- Defaults do stream de métricas (DEFAULT_TOPIC, etc.)

Uso típico:
    from dedup_window.config import get_settings, DEFAULT_TOPIC
"""

from dedup_window.config.settings import (
    DEFAULT_AGGREGATION_INTERVAL_SECONDS,
    DEFAULT_MESSAGE_KEY,
    DEFAULT_TOPIC,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "DEFAULT_TOPIC",
    "DEFAULT_MESSAGE_KEY",
    "DEFAULT_AGGREGATION_INTERVAL_SECONDS",
]
