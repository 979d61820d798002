"""
Envío de productos aceptados a la cola de moderación.

Cada producto se escribe una sola vez como submission PENDING
con la fuente y la sesión de crawl que lo produjo.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List

from .exceptions import SinkWriteError
from .models import CanonicalProduct, RunContext, Submission

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionSink:
    """Escribe submissions mediante backend.insert_submission(record)."""

    def __init__(self, backend, now: Callable[[], datetime] = _utcnow):
        self.backend = backend
        self.now = now

    def submit(self, product: CanonicalProduct, ctx: RunContext) -> Submission:
        """
        Envía un producto a moderación.

        Raises:
            SinkWriteError: Si la escritura falla. No se reintenta en
                esta ejecución.
        """
        submission = Submission.from_product(product, ctx.session_id, self.now())
        try:
            self.backend.insert_submission(submission.to_record())
        except Exception as exc:
            raise SinkWriteError(f"Error al guardar {product.ean}: {exc}") from exc

        logger.info(f"Producto enviado a moderación: {product}")
        return submission


class DryRunSink:
    """Sink que no escribe nada; conserva las submissions en memoria."""

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self.now = now
        self.submissions: List[Submission] = []

    def submit(self, product: CanonicalProduct, ctx: RunContext) -> Submission:
        submission = Submission.from_product(product, ctx.session_id, self.now())
        self.submissions.append(submission)
        logger.info(f"[dry-run] Se enviaría: {product}")
        return submission
