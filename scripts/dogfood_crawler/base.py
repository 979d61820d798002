"""
Contrato común de las fuentes de productos.

Cada fuente implementa este protocolo sin heredar de una clase base:
su lógica de descarga y parseo es independiente y no comparte estado.
"""

from __future__ import annotations

from typing import Optional, Protocol

from .models import Batch, CanonicalProduct, RawProduct, SourceId


class SourceFetcher(Protocol):
    """
    Fuente de productos.

    fetch_batch() obtiene el siguiente lote crudo para un cursor y
    normalize() lo transforma al formato canónico. El orquestador solo
    conoce este contrato, no el transporte (API JSON o HTML).
    """

    SOURCE: SourceId
    initial_cursor: int

    def fetch_batch(self, cursor: int) -> Batch:
        """
        Descarga el lote de registros crudos para un cursor.

        Los errores transitorios se cuentan en Batch.errors.
        exhausted=True significa "nada más en este cursor por ahora".
        """
        ...

    def normalize(self, raw_product: RawProduct) -> Optional[CanonicalProduct]:
        """
        Transforma un registro crudo al formato canónico.

        Returns:
            Producto normalizado o None si no tiene un EAN válido.

        Raises:
            FetchError: Si hace falta descargar algo y falla.
        """
        ...
