"""
Fuente Fressnapf.

Catálogo HTML: la página de listado da las URLs de detalle y cada
detalle se descarga una vez al normalizar. El cursor es currentPage.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..exceptions import DeadlineExceededError, FetchError
from ..http_client import HttpClient
from ..models import Batch, CanonicalProduct, RawProduct, SourceId
from ..parsing import absolute_url, make_soup, parse_product_page

logger = logging.getLogger(__name__)


class FressnapfFetcher:
    """Fetcher para la tienda online de Fressnapf."""

    SOURCE = SourceId.FRESSNAPF

    BASE_URL = "https://www.fressnapf.de"
    CATEGORY_PATHS = (
        "/c/hund/hundefutter/trockenfutter/",
        "/c/hund/hundefutter/nassfutter/",
    )

    HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "Accept": "text/html,application/xhtml+xml",
        "Accept-Language": "de-DE,de;q=0.9",
    }

    BRAND_SELECTOR = '[itemprop="brand"], [data-testid="product-brand"], .product-brand'

    initial_cursor = 1

    def __init__(self, http_client: Optional[HttpClient] = None, page_size: int = 10):
        """
        Inicializa el fetcher.

        Args:
            http_client: Cliente HTTP. Si no se proporciona, se crea uno
                con headers de navegador.
            page_size: Máximo de productos por lote (repartido entre categorías).
        """
        self.http = http_client or HttpClient(headers=self.HEADERS)
        self.page_size = page_size

    def fetch_batch(self, cursor: int) -> Batch:
        """Descarga los listados de todas las categorías para una página."""
        per_category = max(1, -(-self.page_size // len(self.CATEGORY_PATHS)))
        records: List[RawProduct] = []
        seen = set()
        errors = 0

        for path in self.CATEGORY_PATHS:
            url = f"{self.BASE_URL}{path}"
            try:
                html = self.http.get_text(url, params={"currentPage": cursor})
            except DeadlineExceededError:
                errors += 1
                break
            except FetchError as exc:
                logger.warning(f"No se pudo descargar el listado {url}: {exc}")
                errors += 1
                continue

            links = self._product_links(html)[:per_category]
            logger.debug(f"Fressnapf {path} página {cursor}: {len(links)} enlaces")

            for link in links:
                if link in seen:
                    continue
                seen.add(link)
                records.append(RawProduct(raw_id=link, raw_data={"url": link, "category": path}))

        return Batch(
            records=records,
            next_cursor=cursor + 1,
            exhausted=not records and errors == 0,
            errors=errors,
        )

    def normalize(self, raw_product: RawProduct) -> Optional[CanonicalProduct]:
        """
        Descarga la página de detalle y la transforma al formato canónico.

        Raises:
            FetchError: Si la página de detalle no se pudo descargar.
        """
        url = raw_product.get("url") or raw_product.raw_id
        html = self.http.get_text(url)
        return self.parse_detail(html, url)

    def parse_detail(self, html: str, url: str) -> Optional[CanonicalProduct]:
        """Parsea una página de detalle. Sin EAN devuelve None."""
        return parse_product_page(
            html, url, self.SOURCE, self.BASE_URL, self.BRAND_SELECTOR
        )

    def _product_links(self, html: str) -> List[str]:
        """Enlaces de producto (rutas /p/) del listado, sin repetir."""
        soup = make_soup(html)
        links: List[str] = []
        for anchor in soup.select('a[href*="/p/"]'):
            link = absolute_url(self.BASE_URL, anchor.get("href"))
            if not link:
                continue
            link = link.split("?")[0].split("#")[0]
            if link.startswith(self.BASE_URL) and link not in links:
                links.append(link)
        return links
