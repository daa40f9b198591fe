"""Aggregator: drain periódico da janela e publicação da contagem.

A cada intervalo:
1. Enumera os claims do namespace (snapshot chave -> token)
2. count = len(snapshot)
3. Remove somente os claims enumerados, por chave + token
4. Entrega a contagem ao EventPublisher

Política de corrida (enumeração x claims concorrentes): um claim criado
entre a enumeração e a remoção não está no snapshot e por isso é
preservado; ele é contado no próximo drain. Um claim enumerado que
expirou e foi recriado antes da remoção tem token novo e também é
preservado. Nada é contado duas vezes e nada é descartado sem contagem.

Agendamento em taxa fixa: os drains seguem deadlines monotônicos
espaçados de `interval_seconds` (sem deriva) e a publicação roda fora do
caminho do próximo snapshot. Como o TTL do claim é o próprio intervalo,
um claim feito logo após um snapshot ainda existe no snapshot seguinte.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime

from dedup_window.domain.models import WindowCount, utc_now
from dedup_window.infra.claim_store import ClaimStore, ClaimStoreError
from dedup_window.infra.event_stream import EventPublisher
from dedup_window.observability.logging import get_logger, log_fallback
from dedup_window.observability.timing import timed

logger = get_logger(__name__)


class WindowAggregator:
    """Task periódica com ciclo de vida explícito (start/stop).

    Uso típico:
        aggregator = WindowAggregator(store, publisher, interval_seconds=60)
        await aggregator.start()
        ...
        await aggregator.stop()
    """

    def __init__(
        self,
        store: ClaimStore,
        publisher: EventPublisher,
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None
        self._publishing: set[asyncio.Task[bool]] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def drain(self) -> WindowCount | None:
        """Encerra a janela corrente (bloqueante).

        Returns:
            WindowCount da janela, ou None se a enumeração falhou (tick pulado)
        """
        try:
            snapshot = self._store.snapshot()
        except ClaimStoreError as exc:
            logger.error("window_enumeration_failed", extra={"error": str(exc)})
            log_fallback(logger, "drain", reason="store_unavailable", default="tick_skipped")
            return None

        window = WindowCount(count=len(snapshot), captured_at=self._clock())

        try:
            released = self._store.release(snapshot)
        except ClaimStoreError as exc:
            # Claims restantes expiram pelo TTL; a contagem segue válida
            logger.error(
                "window_release_failed",
                extra={"error": str(exc), "unique_request_count": window.count},
            )
        else:
            logger.debug(
                "window_released",
                extra={"enumerated": window.count, "released": released},
            )

        return window

    async def tick(self) -> WindowCount | None:
        """Executa um ciclo drain + publish. Nunca levanta exceção.

        Returns:
            WindowCount publicado, ou None se o drain ou o publish falharam
        """
        window = await self._drain_window()
        if window is None:
            return None
        if not await self._publish(window):
            return None
        return window

    async def _drain_window(self) -> WindowCount | None:
        try:
            with timed("drain"):
                window = await asyncio.to_thread(self.drain)
        except Exception:  # noqa: BLE001 - a task periódica não pode morrer
            logger.exception("aggregation_drain_failed")
            return None

        if window is not None:
            logger.info(
                "Unique requests in the last window",
                extra={
                    "unique_request_count": window.count,
                    "interval_seconds": self._interval_seconds,
                },
            )
        return window

    async def _publish(self, window: WindowCount) -> bool:
        try:
            await asyncio.to_thread(self._publisher.publish, window)
        except Exception:  # noqa: BLE001 - best effort: contagem descartada
            logger.exception(
                "aggregation_publish_failed",
                extra={"unique_request_count": window.count},
            )
            return False
        return True

    def _spawn_publish(self, window: WindowCount) -> None:
        task = asyncio.create_task(self._publish(window), name="window-publish")
        self._publishing.add(task)
        task.add_done_callback(self._publishing.discard)

    async def start(self) -> None:
        """Inicia a task periódica (idempotente)."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stopping), name="window-aggregator")
        logger.info("aggregator_started", extra={"interval_seconds": self._interval_seconds})

    async def stop(self) -> None:
        """Sinaliza parada e aguarda o fim da task (tick em curso termina)."""
        if self._task is None or self._stopping is None:
            return
        self._stopping.set()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            self._stopping = None
        # Publicações em curso terminam (limitadas pelo timeout do publisher)
        if self._publishing:
            await asyncio.gather(*self._publishing, return_exceptions=True)
        logger.info("aggregator_stopped")

    async def _run(self, stopping: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_deadline = loop.time() + self._interval_seconds
        while not stopping.is_set():
            delay = max(0.0, next_deadline - loop.time())
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stopping.wait(), timeout=delay)
            if stopping.is_set():
                break

            next_deadline += self._interval_seconds
            window = await self._drain_window()
            if window is not None:
                self._spawn_publish(window)

            # Drain mais longo que o intervalo: ticks perdidos são pulados
            missed = 0
            while next_deadline <= loop.time():
                next_deadline += self._interval_seconds
                missed += 1
            if missed:
                logger.warning("aggregation_ticks_missed", extra={"missed": missed})
