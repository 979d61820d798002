"""
Utilidades de parseo compartidas por las fuentes.

Funciones puras: EAN, porcentajes, componentes analíticos,
aditivos, JSON-LD y la ficha completa de una página de producto.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .models import CanonicalProduct, Nutrients, SourceId

logger = logging.getLogger(__name__)

EAN_RE = re.compile(r"^\d{8,14}$")
NUMBER = r"(\d+(?:[.,]\d+)?)"

# Cabeceras del bloque de componentes analíticos (EN/DE/FR/IT)
ANALYTICAL_HEADINGS = re.compile(
    r"analytical\s+constituents?|analytische\s+bestandteile|"
    r"composants\s+analytiques?|analisi\s+garantita|"
    r"nutritional\s+analysis|guaranteed\s+analysis",
    re.IGNORECASE,
)

ADDITIVES_HEADING = re.compile(
    r"(?:ernährungsphysiologische\s+)?zusatzstoffe|"
    r"(?:nutritional\s+)?additives|additifs",
    re.IGNORECASE,
)

NUTRIENT_PATTERNS: Dict[str, List[re.Pattern]] = {
    "protein": [
        re.compile(r"(?:roh|crude\s+)?protein[e]?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"(?:rohes?\s+)?eiweiß\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"protéines?\s*(?:brutes?)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
    ],
    "fat": [
        re.compile(r"(?:roh)?fett(?:gehalt)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"(?:crude\s+)?fat\s*(?:content)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"öle?\s+und\s+fette?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"matières?\s+grasses?\s*(?:brutes?)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
    ],
    "crudeFiber": [
        re.compile(r"(?:roh)?faser[n]?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"(?:crude\s+)?fib(?:er|re)s?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"ballaststoffe?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
    ],
    "rawAsh": [
        re.compile(r"(?:roh)?asche\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"(?:crude\s+)?ash\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"cendres?\s*(?:brutes?)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"mineralstoffe?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
    ],
    "moisture": [
        re.compile(r"feucht(?:igkeit|e)(?:gehalt)?\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"wassergehalt\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"moisture\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
        re.compile(r"humidité\s*[:=]?\s*" + NUMBER + r"\s*%", re.I),
    ],
}

# Orden de búsqueda del EAN en el HTML crudo
EAN_HTML_PATTERNS = [
    re.compile(r'"gtin\d*"\s*:\s*"(\d{8,14})"', re.I),
    re.compile(r'"ean"\s*:\s*"(\d{8,14})"', re.I),
    re.compile(r'data-(?:ean|gtin)="(\d{8,14})"', re.I),
    re.compile(r"\b(?:EAN|GTIN)(?:-?13)?[:\s]+(\d{8,14})\b", re.I),
]

JSONLD_EAN_KEYS = ("gtin13", "gtin", "gtin14", "gtin12", "gtin8", "ean")


def clean_text(text: Any) -> Optional[str]:
    """Quita espacios sobrantes. Strings vacías a None."""
    if text is None:
        return None
    cleaned = re.sub(r"\s+", " ", str(text)).strip()
    return cleaned or None


def clean_ean(value: Any) -> Optional[str]:
    """
    Normaliza un EAN candidato.

    Returns:
        String de 8 a 14 dígitos o None si no tiene forma de EAN.
    """
    if value is None:
        return None
    candidate = re.sub(r"[\s-]+", "", str(value))
    if EAN_RE.match(candidate):
        return candidate
    return None


def parse_percentage(value: Any) -> Optional[float]:
    """Convierte "24,5 %" / "24.5" / 24.5 a float. Inválido a None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.search(NUMBER, str(value))
    if not match:
        return None
    try:
        return float(match.group(1).replace(",", "."))
    except ValueError:
        return None


def extract_analytical_nutrients(text: Optional[str], length: int = 600) -> Nutrients:
    """
    Busca el bloque de componentes analíticos y extrae sus nutrientes.

    La cabecera puede aparecer varias veces (pestañas, menús); se usa
    la primera aparición seguida de algún valor.
    """
    if not text:
        return Nutrients()
    for match in ANALYTICAL_HEADINGS.finditer(text):
        nutrients = extract_nutrients(text[match.end():match.end() + length])
        if not nutrients.is_empty():
            return nutrients
    return Nutrients()


def extract_nutrients(text: Optional[str]) -> Nutrients:
    """
    Extrae los nutrientes de un texto de componentes analíticos.

    Los nutrientes no encontrados quedan en None.
    """
    nutrients = Nutrients()
    if not text:
        return nutrients

    for name, patterns in NUTRIENT_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                setattr(nutrients, name, parse_percentage(match.group(1)))
                break

    return nutrients


def merge_nutrients(primary: Nutrients, fallback: Nutrients) -> Nutrients:
    """Completa los huecos de primary con los valores de fallback."""
    merged = Nutrients()
    for name, value in primary.items():
        setattr(merged, name, value if value is not None else getattr(fallback, name))
    return merged


def extract_additives(text: Optional[str], length: int = 600) -> Optional[Dict[str, str]]:
    """
    Extrae los aditivos declarados como {nombre: cantidad}.

    Ejemplo: "Zusatzstoffe je kg: Vitamin A 15.000 IE, Zink 100 mg."
    -> {"Vitamin A": "15.000 IE", "Zink": "100 mg"}
    """
    if not text:
        return None
    match = ADDITIVES_HEADING.search(text)
    if not match:
        return None

    section = text[match.end():match.end() + length]
    # Termina en el primer punto seguido de espacio (no en "15.000")
    section = re.split(r"\.(?:\s|$)", section, maxsplit=1)[0]
    section = re.sub(r"^\s*(?:(?:je|pro|per)\s+kg|/\s*kg)\s*", "", section, flags=re.I)
    section = section.lstrip(" :")

    additives: Dict[str, str] = {}
    for part in re.split(r",\s+|;", section):
        part = clean_text(part)
        if not part:
            continue
        item = re.match(r"^(.*?)\s+(\d[\d.,]*\s*.*)$", part)
        if item:
            additives[item.group(1).strip(" :")] = item.group(2).strip()
        else:
            additives[part.strip(" :")] = ""

    return additives or None


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def iter_jsonld(soup: BeautifulSoup) -> Iterator[Dict[str, Any]]:
    """Recorre los objetos JSON-LD de la página (incluye @graph y listas)."""
    for tag in soup.find_all("script", {"type": "application/ld+json"}):
        try:
            data = json.loads(tag.string or tag.get_text() or "")
        except ValueError:
            continue
        stack = data if isinstance(data, list) else [data]
        while stack:
            item = stack.pop(0)
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if "@graph" in item:
                    stack.extend(item["@graph"] if isinstance(item["@graph"], list) else [item["@graph"]])
                yield item


def product_jsonld(soup: BeautifulSoup) -> Dict[str, Any]:
    """Devuelve el primer objeto JSON-LD de tipo Product o {}."""
    for item in iter_jsonld(soup):
        kind = item.get("@type")
        kinds = kind if isinstance(kind, list) else [kind]
        if "Product" in kinds:
            return item
    return {}


def find_ean(html: str, soup: BeautifulSoup) -> Optional[str]:
    """
    Busca un EAN en la página de detalle.

    Primero en JSON-LD, luego en atributos/datos embebidos y texto.
    """
    product = product_jsonld(soup)
    for key in JSONLD_EAN_KEYS:
        ean = clean_ean(product.get(key))
        if ean:
            return ean

    for pattern in EAN_HTML_PATTERNS:
        match = pattern.search(html)
        if match:
            ean = clean_ean(match.group(1))
            if ean:
                return ean

    sku = clean_ean(product.get("sku"))
    if sku:
        return sku

    return None


def jsonld_brand(product: Dict[str, Any]) -> Optional[str]:
    brand = product.get("brand")
    if isinstance(brand, dict):
        return clean_text(brand.get("name"))
    if isinstance(brand, list) and brand:
        first = brand[0]
        return clean_text(first.get("name") if isinstance(first, dict) else first)
    return clean_text(brand)


def jsonld_image(product: Dict[str, Any]) -> Optional[str]:
    image = product.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url") or image.get("contentUrl")
    return clean_text(image)


def absolute_url(base_url: str, url: Optional[str]) -> Optional[str]:
    """Asegura que la URL sea absoluta."""
    if not url:
        return None
    url = str(url).strip()
    if url.startswith("//"):
        return f"https:{url}"
    return urljoin(base_url, url)


def page_text(soup: BeautifulSoup) -> str:
    """Texto visible de la página, con las celdas separadas por espacios."""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def parse_product_page(
    html: str,
    url: str,
    source_id: SourceId,
    base_url: str,
    brand_selector: str,
) -> Optional[CanonicalProduct]:
    """
    Parsea una página de detalle de tienda al formato canónico.

    Marca, nombre e imagen salen del JSON-LD Product; si faltan se usan
    el selector de marca de la tienda, el <h1> y og:image. Los nutrientes
    y aditivos se extraen del texto visible.

    Returns:
        CanonicalProduct, o None si la página no trae un EAN válido.
    """
    soup = make_soup(html)

    ean = find_ean(html, soup)
    if not ean:
        logger.debug(f"Sin EAN en {url}")
        return None

    product = product_jsonld(soup)

    brand = jsonld_brand(product)
    if not brand:
        tag = soup.select_one(brand_selector)
        brand = clean_text(tag.get_text()) if tag else None

    name = clean_text(product.get("name"))
    if not name:
        h1 = soup.find("h1")
        name = clean_text(h1.get_text()) if h1 else None

    image_url = jsonld_image(product)
    if not image_url:
        meta = soup.find("meta", {"property": "og:image"})
        image_url = meta.get("content") if meta else None

    text = page_text(soup)

    return CanonicalProduct(
        ean=ean,
        brand=brand or "",
        name=name or "",
        source_id=source_id,
        nutrients=extract_analytical_nutrients(text),
        additives=extract_additives(text),
        image_url=absolute_url(base_url, image_url),
        source_url=url,
    )
