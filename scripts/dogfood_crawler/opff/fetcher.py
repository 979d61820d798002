"""
Fuente Open Pet Food Facts.

API JSON paginada y abierta. Cada página de la categoría de comida
para perros es un lote; el cursor es el número de página.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import FetchError
from ..http_client import HttpClient
from ..models import Batch, CanonicalProduct, Nutrients, RawProduct, SourceId
from ..parsing import (
    clean_ean,
    clean_text,
    extract_additives,
    extract_analytical_nutrients,
    merge_nutrients,
    parse_percentage,
)

logger = logging.getLogger(__name__)


class OpenPetFoodFactsFetcher:
    """Fetcher para la API de Open Pet Food Facts."""

    SOURCE = SourceId.OPFF

    BASE_URL = "https://world.openpetfoodfacts.org"
    CATEGORY = "en:dog-food"
    FIELDS = (
        "code,product_name,brands,nutriments,image_url,image_front_url,"
        "image_small_url,ingredients_text,ingredients_text_en,"
        "ingredients_text_de,ingredients_text_fr"
    )

    # Variantes de claves en "nutriments", en orden de preferencia
    NUTRIMENT_KEYS = {
        "protein": ("crude-protein_100g", "crude-protein", "proteins_100g", "proteins", "protein_100g", "protein"),
        "fat": ("crude-fat_100g", "crude-fat", "fat_100g", "fat", "fats_100g", "total-fat_100g"),
        "crudeFiber": ("crude-fibre_100g", "crude-fiber_100g", "crude-fibre", "fiber_100g", "fiber", "fibers_100g"),
        "rawAsh": ("crude-ash_100g", "crude-ash", "ash_100g", "ash", "minerals_100g"),
        "moisture": ("moisture_100g", "moisture", "water_100g", "water", "humidity_100g"),
    }

    INGREDIENT_TEXT_KEYS = (
        "ingredients_text",
        "ingredients_text_en",
        "ingredients_text_de",
        "ingredients_text_fr",
    )

    initial_cursor = 1

    def __init__(self, http_client: Optional[HttpClient] = None, page_size: int = 20):
        """
        Inicializa el fetcher.

        Args:
            http_client: Cliente HTTP. Si no se proporciona, se crea uno.
            page_size: Productos por página de la API.
        """
        self.http = http_client or HttpClient()
        self.page_size = page_size

    def fetch_batch(self, cursor: int) -> Batch:
        """
        Descarga una página de la categoría.

        Los productos sin código de barras se descartan aquí, antes de
        normalizar.
        """
        url = f"{self.BASE_URL}/category/{self.CATEGORY}.json"
        params = {"page": cursor, "page_size": self.page_size, "fields": self.FIELDS}

        try:
            data = self.http.get_json(url, params=params)
        except FetchError as exc:
            logger.warning(f"No se pudo descargar la página {cursor} de OPFF: {exc}")
            return Batch(records=[], next_cursor=cursor, errors=1)

        if not isinstance(data, dict):
            logger.warning(f"Respuesta inesperada de OPFF en página {cursor}")
            return Batch(records=[], next_cursor=cursor + 1, exhausted=True)

        items = data.get("products") or []
        records: List[RawProduct] = []
        seen = set()

        for item in items:
            code = str(item.get("code") or "").strip()
            if not code or code in seen:
                continue
            seen.add(code)
            records.append(RawProduct(raw_id=code, raw_data=item))

        total = _to_int(data.get("count"))
        logger.info(f"OPFF página {cursor}: {len(records)} productos (total {total})")

        return Batch(
            records=records,
            next_cursor=cursor + 1,
            exhausted=not records,
        )

    def normalize(self, raw_product: RawProduct) -> Optional[CanonicalProduct]:
        """Transforma un producto de OPFF al formato canónico."""
        item = raw_product.raw_data
        ean = clean_ean(item.get("code") or raw_product.raw_id)
        if not ean:
            return None

        nutrients = self._nutrients_from_nutriments(item.get("nutriments") or {})
        texts = [item.get(key) for key in self.INGREDIENT_TEXT_KEYS if item.get(key)]

        # Completar con los componentes analíticos del texto de ingredientes
        for text in texts:
            if all(value is not None for _, value in nutrients.items()):
                break
            nutrients = merge_nutrients(nutrients, extract_analytical_nutrients(text))

        additives = None
        for text in texts:
            additives = extract_additives(text)
            if additives:
                break

        return CanonicalProduct(
            ean=ean,
            brand=self._first_brand(item.get("brands")) or "",
            name=clean_text(item.get("product_name")) or "",
            source_id=self.SOURCE,
            nutrients=nutrients,
            additives=additives,
            image_url=(
                item.get("image_url")
                or item.get("image_front_url")
                or item.get("image_small_url")
            ),
            source_url=f"{self.BASE_URL}/product/{ean}",
        )

    def _nutrients_from_nutriments(self, nutriments: Dict[str, Any]) -> Nutrients:
        nutrients = Nutrients()
        for name, keys in self.NUTRIMENT_KEYS.items():
            for key in keys:
                value = parse_percentage(nutriments.get(key))
                if value is not None:
                    setattr(nutrients, name, value)
                    break
        return nutrients

    @staticmethod
    def _first_brand(brands: Any) -> Optional[str]:
        """OPFF devuelve las marcas separadas por comas; se usa la primera."""
        text = clean_text(brands)
        if not text:
            return None
        return clean_text(text.split(",")[0])


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
