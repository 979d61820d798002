"""
Excepciones del crawler.

Las fatales (carga/guardado de estado, lease) abortan la ejecución;
el resto se cuentan por registro y el bucle continúa.
"""

from __future__ import annotations


class CrawlerError(Exception):
    """Error base del crawler."""


class FetchError(CrawlerError):
    """Fallo transitorio al descargar de una fuente (timeout, 5xx, red)."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class StateLoadError(CrawlerError):
    """No se pudo leer el estado del crawl. Fatal."""


class StateSaveError(CrawlerError):
    """No se pudo guardar el estado del crawl."""


class RunLockedError(CrawlerError):
    """Otra ejecución tiene el lease del estado."""


class SinkWriteError(CrawlerError):
    """No se pudo escribir una submission en la cola de moderación."""


class CatalogLookupError(CrawlerError):
    """Falló la consulta de EAN contra el catálogo."""


class DeadlineExceededError(FetchError):
    """No queda tiempo de ejecución para otra petición."""

    def __init__(self, url: str):
        super().__init__(url, "sin tiempo restante")
