"""
Persistencia del estado del crawl.

Un único documento por despliegue (clave fija) que permite reanudar
el recorrido de las fuentes entre ejecuciones cortas.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .exceptions import RunLockedError, StateLoadError, StateSaveError
from .models import INITIAL_CURSOR, CrawlState, SourceId

logger = logging.getLogger(__name__)

STATE_KEY = "crawler_state_v1"


class CrawlStateStore:
    """
    Carga y guarda el CrawlState.

    El backend debe ofrecer fetch_crawl_state, upsert_crawl_state,
    try_acquire_run_lock y release_run_lock (ver database.py).
    """

    def __init__(self, backend, state_key: str = STATE_KEY):
        self.backend = backend
        self.state_key = state_key
        self._lease_held = False

    def acquire_lease(self) -> None:
        """
        Toma el lease de ejecución antes de load().

        Raises:
            RunLockedError: Si otra ejecución lo tiene.
            StateLoadError: Si el almacén no responde.
        """
        try:
            acquired = self.backend.try_acquire_run_lock(self.state_key)
        except Exception as exc:
            raise StateLoadError(f"No se pudo pedir el lease: {exc}") from exc

        if not acquired:
            raise RunLockedError(
                f"Otra ejecución tiene el lease de '{self.state_key}'"
            )
        self._lease_held = True
        logger.debug(f"Lease adquirido: {self.state_key}")

    def release_lease(self) -> None:
        if not self._lease_held:
            return
        try:
            self.backend.release_run_lock(self.state_key)
        except Exception as exc:
            logger.warning(f"No se pudo liberar el lease: {exc}")
        self._lease_held = False

    def load(self) -> CrawlState:
        """
        Carga el estado. Si no existe, devuelve uno por defecto.

        Raises:
            StateLoadError: Si el almacén no responde.
        """
        try:
            row = self.backend.fetch_crawl_state(self.state_key)
        except Exception as exc:
            raise StateLoadError(f"No se pudo cargar el estado: {exc}") from exc

        if not row:
            logger.info("No hay estado previo, se crea uno nuevo")
            return CrawlState()

        state = CrawlState.from_record(row)
        logger.info(
            f"Estado cargado: fuente={state.current_source.value} "
            f"cursor={state.cursor_for(state.current_source)} "
            f"total={state.total_processed}"
        )
        if state.last_error:
            logger.warning(f"Último error registrado: {state.last_error}")
        return state

    def save(self, state: CrawlState) -> None:
        """
        Upsert idempotente del documento de estado.

        Raises:
            StateSaveError: Si no se pudo escribir.
        """
        try:
            self.backend.upsert_crawl_state(self.state_key, state.to_record())
        except Exception as exc:
            raise StateSaveError(f"No se pudo guardar el estado: {exc}") from exc
        logger.debug("Estado guardado")

    def reset_source(self, source: SourceId) -> CrawlState:
        """Reinicia el cursor y la última clave vista de una fuente."""
        state = self.load()
        state.per_source_cursor[source] = INITIAL_CURSOR
        state.last_seen_key.pop(source, None)
        self.save(state)
        logger.info(f"Fuente reiniciada: {source.value}")
        return state

    def record_error(self, message: str, state: Optional[CrawlState] = None) -> bool:
        """
        Guarda lastError para inspección en la siguiente ejecución.

        Best-effort: si el almacén tampoco responde, solo se registra en log.
        """
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            if state is None:
                state = self.load()
            state.last_error = f"{stamp} {message}"
            self.save(state)
            return True
        except (StateLoadError, StateSaveError) as exc:
            logger.error(f"No se pudo registrar el error en el estado: {exc}")
            return False

    def history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Submissions recientes agrupadas por sesión de crawl.

        Returns:
            Lista de sesiones {sessionId, count, firstProduct, lastProduct,
            products}, de la más reciente a la más antigua.

        Raises:
            StateLoadError: Si el almacén no responde.
        """
        try:
            rows = self.backend.recent_submissions(limit)
        except Exception as exc:
            raise StateLoadError(f"No se pudo leer el historial: {exc}") from exc

        sessions: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            session_id = row.get("run_session_id") or "unknown"
            submitted_at = row.get("submitted_at")
            session = sessions.setdefault(
                session_id,
                {
                    "sessionId": session_id,
                    "count": 0,
                    "firstProduct": submitted_at,
                    "lastProduct": submitted_at,
                    "products": [],
                },
            )
            session["count"] += 1
            if submitted_at is not None:
                if session["firstProduct"] is None or submitted_at < session["firstProduct"]:
                    session["firstProduct"] = submitted_at
                if session["lastProduct"] is None or submitted_at > session["lastProduct"]:
                    session["lastProduct"] = submitted_at
            session["products"].append(
                {
                    "ean": row.get("ean"),
                    "name": row.get("name"),
                    "source": row.get("source_id"),
                }
            )

        return list(sessions.values())
