"""
Índice de deduplicación por EAN.

Dos niveles: el catálogo durable (envíos de ejecuciones anteriores)
y el cache de la ejecución actual, que vive en el RunContext.
"""

from __future__ import annotations

import logging

from .exceptions import CatalogLookupError
from .models import RunContext

logger = logging.getLogger(__name__)


class DeduplicationIndex:
    """
    Comprueba si un EAN ya está en el catálogo o se aceptó en esta ejecución.

    El backend solo necesita ean_exists(ean) -> bool.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    def is_duplicate(self, ean: str, ctx: RunContext) -> bool:
        """
        Catálogo durable primero, luego el cache de la ejecución.

        Raises:
            CatalogLookupError: Si falla la consulta al catálogo.
        """
        try:
            if self.catalog.ean_exists(ean):
                logger.debug(f"EAN en catálogo: {ean}")
                return True
        except Exception as exc:
            raise CatalogLookupError(f"Error consultando EAN {ean}: {exc}") from exc

        if ean in ctx.seen_eans:
            logger.debug(f"EAN ya aceptado en esta ejecución: {ean}")
            return True

        return False

    def remember(self, ean: str, ctx: RunContext) -> None:
        """
        Marca un EAN como aceptado en esta ejecución.

        Debe llamarse justo después de enviar el producto, antes de
        comprobar el siguiente registro.
        """
        ctx.seen_eans.add(ean)
