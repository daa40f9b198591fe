"""Cliente HTTP para callbacks de notificação.

Cliente assíncrono (httpx) usado para entregar a contagem corrente ao
endpoint informado pelo chamador, com:
- Timeout configurável
- Retry opcional (padrão: nenhum, entrega best-effort)
- Logging estruturado sem query string (pode carregar tokens do chamador)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from dedup_window.observability.logging import get_logger

if TYPE_CHECKING:
    from dedup_window.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def sanitize_url(url: str) -> str:
    """Remove query string e credenciais da URL para logging seguro."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return "<invalid-url>"
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{parsed.host}{port}{parsed.path}"


@dataclass
class HttpClientConfig:
    """Configuração do cliente HTTP.

    Valores padrão refletem entrega fire-and-forget.
    """

    timeout_seconds: float = 10.0
    max_retries: int = 0
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 5.0
    default_headers: dict[str, str] = field(default_factory=dict)


class HttpError(Exception):
    """Erro de requisição HTTP sem expor informações sensíveis."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


def _is_retryable_status(status_code: int) -> bool:
    """Determina se status HTTP permite retry (429 ou 5xx)."""
    return status_code == 429 or 500 <= status_code < 600


def _calculate_backoff(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
) -> float:
    """Calcula tempo de espera com backoff exponencial."""
    backoff = (2**attempt) * base_seconds
    return min(backoff, max_seconds)


def _to_http_error(exc: Exception, method: str, url: str, attempt: int) -> HttpError:
    """Converte exceções de transporte em HttpError (retentável)."""
    if isinstance(exc, httpx.TimeoutException):
        message = "Timeout"
    elif isinstance(exc, httpx.TransportError):
        message = "Erro de conexão"
    else:
        logger.error(
            "Erro inesperado em requisição HTTP",
            extra={"method": method, "url": sanitize_url(url), "error_type": type(exc).__name__},
        )
        raise HttpError(f"Erro inesperado: {type(exc).__name__}") from exc

    logger.warning(
        f"{message} em requisição HTTP",
        extra={
            "method": method,
            "url": sanitize_url(url),
            "attempt": attempt + 1,
            "error_type": type(exc).__name__,
        },
    )
    return HttpError(message, is_retryable=True)


class HttpClient:
    """Cliente HTTP assíncrono com retry opcional e logging.

    Uso típico:
        async with HttpClient(config) as client:
            response = await client.post(url, json=payload)
    """

    def __init__(self, config: HttpClientConfig | None = None) -> None:
        self._config = config or HttpClientConfig()
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> HttpClientConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Executa requisição com até `max_retries` retries.

        Raises:
            HttpError: Status não-2xx ou falha de transporte após as tentativas
        """
        client = await self._get_client()
        cfg = self._config
        last_error: HttpError | None = None

        for attempt in range(cfg.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except Exception as exc:  # noqa: BLE001 - convertido em HttpError
                last_error = _to_http_error(exc, method, url, attempt)
            else:
                if response.is_success:
                    logger.debug(
                        "Requisição HTTP bem-sucedida",
                        extra={
                            "method": method,
                            "url": sanitize_url(url),
                            "status_code": response.status_code,
                        },
                    )
                    return response

                retryable = _is_retryable_status(response.status_code)
                last_error = HttpError(
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    is_retryable=retryable,
                )
                if not retryable:
                    raise last_error

            if attempt < cfg.max_retries:
                backoff = _calculate_backoff(
                    attempt, cfg.backoff_base_seconds, cfg.backoff_max_seconds
                )
                logger.info(
                    "Aguardando backoff antes de retry",
                    extra={"backoff_seconds": backoff, "next_attempt": attempt + 2},
                )
                await asyncio.sleep(backoff)

        raise last_error or HttpError("Falha após todos os retries")

    async def post(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Executa POST."""
        return await self.request("POST", url, json=json, **kwargs)


def create_http_client(settings: Settings | None = None) -> HttpClient:
    """Factory para o cliente HTTP de notificações."""
    if settings is None:
        from dedup_window.config.settings import get_settings

        settings = get_settings()

    config = HttpClientConfig(
        timeout_seconds=settings.notification_timeout_seconds,
        max_retries=settings.notification_max_retries,
        default_headers={"User-Agent": f"{settings.service_name}/{settings.version}"},
    )
    return HttpClient(config)
