"""
Orquestador del crawl.

Recorre las fuentes en un anillo fijo, procesa cada registro en serie
(normalizar -> deduplicar -> validar -> enviar) y guarda el progreso
para que la siguiente ejecución continúe donde se quedó esta.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from .base import SourceFetcher
from .dedup import DeduplicationIndex
from .exceptions import CatalogLookupError, SinkWriteError, StateSaveError
from .http_client import Deadline
from .models import (
    INITIAL_CURSOR,
    SOURCE_RING,
    Batch,
    CanonicalProduct,
    CrawlState,
    RawProduct,
    RunContext,
    SourceId,
    ValidationResult,
)
from .state import CrawlStateStore
from .validators import validate_product

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """Presupuesto y ritmo de una ejecución."""

    max_runtime: float = 300.0
    safety_margin: float = 30.0
    max_products: int = 10
    record_delay: float = 1.0
    checkpoint_every: int = 5
    max_consecutive_failures: int = 3

    def __post_init__(self):
        if self.checkpoint_every < 1:
            raise ValueError("checkpoint_every debe ser >= 1")
        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures debe ser >= 1")

    @property
    def deadline(self) -> float:
        """Segundos disponibles antes de parar (runtime - margen)."""
        return max(0.0, self.max_runtime - self.safety_margin)


@dataclass
class BatchTally:
    """Contadores de un lote, para decidir si rotar."""

    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0
    dropped: int = 0
    parsed: int = 0
    completed: bool = True

    @property
    def productive(self) -> bool:
        return (self.accepted + self.duplicates + self.rejected) > 0 or self.parsed > 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrawlOrchestrator:
    """
    Ejecuta una sesión de crawl acotada por tiempo y número de productos.

    Reglas de rotación:
    - Lote sin registros aceptados, duplicados, rechazados ni errores
      (vacío o no parseable): pasa a la siguiente fuente y reinicia el
      cursor de la fuente agotada.
    - Lote con solo errores: se reintenta el mismo cursor; tras
      max_consecutive_failures seguidos se rota sin reiniciar el cursor.
    - Cualquier otro lote: avanza el cursor de la fuente actual.

    Si se pasa un Deadline, se arranca al empezar la sesión para que los
    clientes HTTP que lo comparten no se alarguen más allá del presupuesto.
    """

    def __init__(
        self,
        fetchers: Mapping[SourceId, SourceFetcher],
        state_store: CrawlStateStore,
        dedup: DeduplicationIndex,
        sink,
        config: Optional[RunConfig] = None,
        validator: Callable[[CanonicalProduct], ValidationResult] = validate_product,
        ring: Sequence[SourceId] = SOURCE_RING,
        persist: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _utcnow,
        deadline: Optional[Deadline] = None,
    ):
        missing = [source.value for source in ring if source not in fetchers]
        if missing:
            raise ValueError(f"Faltan fetchers para: {', '.join(missing)}")

        self.fetchers = fetchers
        self.state_store = state_store
        self.dedup = dedup
        self.sink = sink
        self.config = config or RunConfig()
        self.validator = validator
        self.ring = tuple(ring)
        self.persist = persist
        self.clock = clock
        self.sleep = sleep
        self.now = now
        self.deadline = deadline

    def run(self, ctx: Optional[RunContext] = None) -> Dict[str, Any]:
        """
        Ejecuta una sesión completa.

        Returns:
            Resumen {processed, duplicates, errors, rejected, dropped,
            perSourceCounts, sessionId, durationSeconds}.

        Raises:
            StateLoadError: Si no se puede cargar el estado (no se procesa nada).
            StateSaveError: Si falla el guardado final.
        """
        ctx = ctx or RunContext()
        ctx.started_at = self.clock()
        if self.deadline is not None:
            self.deadline.start(self.config.deadline)

        state = self.state_store.load()
        if state.current_source not in self.ring:
            logger.warning(
                f"Fuente desconocida '{state.current_source}', se vuelve a "
                f"{self.ring[0].value}"
            )
            state.current_source = self.ring[0]

        logger.info(
            f"Sesión {ctx.session_id}: máx {self.config.max_products} productos, "
            f"{self.config.deadline:.0f}s de presupuesto"
        )

        try:
            self._loop(state, ctx)
        except Exception as exc:
            logger.error(f"Error inesperado en el crawl: {exc}")
            state.last_error = f"{self.now().isoformat(timespec='seconds')} {exc}"
            if self.persist:
                try:
                    self.state_store.save(state)
                except StateSaveError as save_exc:
                    logger.error(f"No se pudo guardar el estado de error: {save_exc}")
            raise

        state.last_run_at = self.now()
        if self.persist:
            self._save_final(state)
        else:
            logger.info("Modo dry-run: no se guarda el estado")

        return ctx.summary(self.clock() - ctx.started_at)

    def _save_final(self, state: CrawlState) -> None:
        """
        Guardado final del estado de la sesión.

        Si falla, se anota el error en el mismo estado (con la rotación y
        los cursores de esta sesión) y se intenta guardar una vez más.

        Raises:
            StateSaveError: Si el guardado final falla, aunque el segundo
                intento haya dejado el progreso persistido.
        """
        try:
            self.state_store.save(state)
            logger.info("Estado final guardado")
        except StateSaveError as exc:
            logger.error(f"Guardado final fallido: {exc}")
            state.last_error = f"{self.now().isoformat(timespec='seconds')} {exc}"
            try:
                self.state_store.save(state)
                logger.info("Estado de la sesión guardado con el error")
            except StateSaveError as retry_exc:
                logger.error(f"No se pudo guardar el estado de error: {retry_exc}")
            raise

    def _loop(self, state: CrawlState, ctx: RunContext) -> None:
        failures = 0
        idle_rotations = 0

        while self._has_budget(ctx):
            source = state.current_source
            fetcher = self.fetchers[source]
            cursor = state.cursor_for(source)

            logger.info(
                f"[{source.value}] cursor={cursor} | "
                f"progreso {ctx.accepted}/{self.config.max_products} | "
                f"quedan {self._remaining(ctx):.0f}s"
            )

            batch = self._fetch(fetcher, cursor, ctx)
            tally = self._process_batch(source, fetcher, batch, state, ctx)

            logger.info(
                f"[{source.value}] lote: {tally.accepted} aceptados, "
                f"{tally.duplicates} duplicados, {tally.rejected} rechazados, "
                f"{tally.errors} errores, {tally.dropped} descartados"
            )

            if not tally.completed:
                logger.info("Presupuesto agotado a mitad de lote; el cursor no avanza")
                break

            if tally.productive:
                state.per_source_cursor[source] = batch.next_cursor
                failures = 0
                idle_rotations = 0
            elif tally.errors:
                failures += 1
                if failures >= self.config.max_consecutive_failures:
                    logger.warning(
                        f"[{source.value}] {failures} lotes fallidos seguidos, "
                        f"se pasa a la siguiente fuente"
                    )
                    self._rotate(state, reset_cursor=False)
                    failures = 0
            else:
                if batch.exhausted:
                    logger.info(f"[{source.value}] Fuente agotada en cursor {cursor}")
                else:
                    logger.info(
                        f"[{source.value}] Ningún registro utilizable en cursor {cursor}"
                    )
                self._rotate(state, reset_cursor=True)
                failures = 0
                idle_rotations += 1
                if idle_rotations >= len(self.ring):
                    logger.info("Todas las fuentes agotadas en esta ejecución")
                    break

            if not batch.records and not self._pace(ctx):
                break

    def _fetch(self, fetcher: SourceFetcher, cursor: int, ctx: RunContext) -> Batch:
        """Descarga un lote; un fallo completo cuenta como un error."""
        try:
            batch = fetcher.fetch_batch(cursor)
        except Exception as exc:
            logger.error(f"[{fetcher.SOURCE.value}] Error al descargar cursor {cursor}: {exc}")
            batch = Batch(records=[], next_cursor=cursor, errors=1)

        ctx.errors += batch.errors
        return batch

    def _process_batch(
        self,
        source: SourceId,
        fetcher: SourceFetcher,
        batch: Batch,
        state: CrawlState,
        ctx: RunContext,
    ) -> BatchTally:
        tally = BatchTally(errors=batch.errors)

        for raw in batch.records:
            if not self._has_budget(ctx):
                tally.completed = False
                break
            if ctx.records_seen and not self._pace(ctx):
                tally.completed = False
                break

            ctx.records_seen += 1
            self._process_record(source, fetcher, raw, state, ctx, tally)

        return tally

    def _process_record(
        self,
        source: SourceId,
        fetcher: SourceFetcher,
        raw: RawProduct,
        state: CrawlState,
        ctx: RunContext,
        tally: BatchTally,
    ) -> None:
        """normalizar -> deduplicar -> validar -> enviar, para un registro."""
        try:
            product = fetcher.normalize(raw)
        except Exception as exc:
            logger.warning(f"[{source.value}] Error procesando {raw.raw_id}: {exc}")
            ctx.errors += 1
            tally.errors += 1
            return

        if product is None:
            logger.debug(f"[{source.value}] Descartado sin EAN válido: {raw.raw_id}")
            ctx.dropped += 1
            tally.dropped += 1
            return

        tally.parsed += 1
        state.last_seen_key[source] = product.ean

        try:
            duplicate = self.dedup.is_duplicate(product.ean, ctx)
        except CatalogLookupError as exc:
            logger.error(str(exc))
            ctx.errors += 1
            tally.errors += 1
            return

        if duplicate:
            logger.info(f"Duplicado: {product.ean}")
            ctx.duplicates += 1
            tally.duplicates += 1
            return

        result = self.validator(product)
        if not result.is_valid:
            logger.info(
                f"Validación fallida para {product.ean}: {', '.join(result.reasons)}"
            )
            ctx.rejected += 1
            tally.rejected += 1
            return

        try:
            self.sink.submit(product, ctx)
        except SinkWriteError as exc:
            logger.error(str(exc))
            ctx.errors += 1
            tally.errors += 1
            return

        self.dedup.remember(product.ean, ctx)
        ctx.accepted += 1
        ctx.per_source_counts[source] = ctx.per_source_counts.get(source, 0) + 1
        tally.accepted += 1
        state.total_processed += 1

        if ctx.accepted % self.config.checkpoint_every == 0:
            self._checkpoint(state)

    def _rotate(self, state: CrawlState, reset_cursor: bool) -> None:
        current = state.current_source
        position = self.ring.index(current)
        state.current_source = self.ring[(position + 1) % len(self.ring)]

        if reset_cursor:
            state.per_source_cursor[current] = getattr(
                self.fetchers[current], "initial_cursor", INITIAL_CURSOR
            )
            state.last_seen_key.pop(current, None)

        logger.info(f"Rotación: {current.value} -> {state.current_source.value}")
        self._checkpoint(state)

    def _checkpoint(self, state: CrawlState) -> None:
        """Guardado intermedio; si falla se reintenta en el siguiente."""
        if not self.persist:
            return
        try:
            self.state_store.save(state)
            logger.info("Checkpoint guardado")
        except StateSaveError as exc:
            logger.warning(f"Checkpoint fallido, se reintentará: {exc}")

    def _elapsed(self, ctx: RunContext) -> float:
        return self.clock() - ctx.started_at

    def _remaining(self, ctx: RunContext) -> float:
        return self.config.deadline - self._elapsed(ctx)

    def _has_budget(self, ctx: RunContext) -> bool:
        if ctx.accepted >= self.config.max_products:
            return False
        return self._elapsed(ctx) < self.config.deadline

    def _pace(self, ctx: RunContext) -> bool:
        """
        Aplica la pausa de cortesía entre registros.

        Returns:
            False si la pausa sobrepasaría el presupuesto de tiempo.
        """
        delay = self.config.record_delay
        if delay <= 0:
            return True
        if self._elapsed(ctx) + delay >= self.config.deadline:
            return False
        self.sleep(delay)
        return True
