"""Notificações opcionais da contagem corrente para endpoints do chamador.

Fire-and-forget com backpressure: fila limitada + pool fixo de workers.
- Fila cheia ou dispatcher parado: notificação descartada (log)
- Cada entrega re-enumera o store para obter contagem fresca
- Sem retry por padrão; falhas são logadas e descartadas
- stop() não drena pendentes: são descartados e contabilizados em log
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from dedup_window.domain.models import count_payload, utc_now
from dedup_window.infra.claim_store import ClaimStore, ClaimStoreError
from dedup_window.infra.http import HttpClient, HttpError, sanitize_url
from dedup_window.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def is_valid_endpoint(endpoint: str) -> bool:
    """Aceita apenas URLs absolutas http(s) com host."""
    try:
        url = httpx.URL(endpoint)
    except (httpx.InvalidURL, TypeError):
        return False
    return url.scheme in _ALLOWED_SCHEMES and bool(url.host)


class NotificationDispatcher:
    """Entrega a contagem corrente via POST JSON.

    Payload: {"unique_request_count": int, "timestamp": RFC3339}
    """

    def __init__(
        self,
        store: ClaimStore,
        http_client: HttpClient,
        max_pending: int = 1000,
        workers: int = 4,
    ) -> None:
        self._store = store
        self._http_client = http_client
        self._max_pending = max_pending
        self._workers = workers
        self._queue: asyncio.Queue[str] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def submit(self, endpoint: str) -> bool:
        """Enfileira uma notificação sem bloquear.

        Returns:
            True se enfileirada; False se descartada
        """
        if not is_valid_endpoint(endpoint):
            logger.warning("notification_invalid_endpoint", extra={"endpoint": endpoint[:200]})
            return False

        if self._queue is None or not self._tasks:
            logger.warning(
                "notification_dropped",
                extra={"reason": "dispatcher_stopped", "endpoint": sanitize_url(endpoint)},
            )
            return False

        try:
            self._queue.put_nowait(endpoint)
        except asyncio.QueueFull:
            logger.warning(
                "notification_dropped",
                extra={
                    "reason": "queue_full",
                    "endpoint": sanitize_url(endpoint),
                    "max_pending": self._max_pending,
                },
            )
            return False
        return True

    async def deliver(self, endpoint: str) -> bool:
        """Conta os claims correntes e faz o POST. Nunca levanta exceção."""
        try:
            count = await asyncio.to_thread(self._store.count)
        except ClaimStoreError as exc:
            logger.error(
                "notification_count_failed",
                extra={"endpoint": sanitize_url(endpoint), "error": str(exc)},
            )
            return False

        payload = count_payload(count, utc_now())
        try:
            response = await self._http_client.post(endpoint, json=payload)
        except HttpError as exc:
            logger.warning(
                "notification_failed",
                extra={
                    "endpoint": sanitize_url(endpoint),
                    "status_code": exc.status_code,
                    "error": str(exc),
                },
            )
            return False

        logger.info(
            "notification_sent",
            extra={
                "endpoint": sanitize_url(endpoint),
                "status_code": response.status_code,
                "unique_request_count": count,
            },
        )
        return True

    async def start(self) -> None:
        """Cria a fila e os workers (idempotente)."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self._max_pending)
        self._tasks = [
            asyncio.create_task(self._worker(self._queue), name=f"notification-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info(
            "notification_dispatcher_started",
            extra={"workers": self._workers, "max_pending": self._max_pending},
        )

    async def stop(self) -> None:
        """Cancela workers; pendentes são descartados."""
        if not self._tasks:
            return
        dropped = self.pending
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        await self._http_client.close()
        logger.info("notification_dispatcher_stopped", extra={"dropped_pending": dropped})

    async def _worker(self, queue: asyncio.Queue[str]) -> None:
        while True:
            endpoint = await queue.get()
            try:
                await self.deliver(endpoint)
            except Exception:  # noqa: BLE001 - worker não pode morrer
                logger.exception("notification_worker_error")
            finally:
                queue.task_done()
