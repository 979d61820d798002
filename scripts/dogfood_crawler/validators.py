"""
Validación de productos antes de enviarlos a moderación.

Solo comprueba corrección estructural, nunca completitud nutricional:
un producto sin ningún nutriente declarado se acepta.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import CanonicalProduct, ValidationResult

logger = logging.getLogger(__name__)

EAN_FORMAT = re.compile(r"^\d{8,14}$")

MAX_BRAND_LENGTH = 100
MAX_NAME_LENGTH = 255
MAX_NUTRIENT_SUM = 100.0


def validate_product(product: CanonicalProduct) -> ValidationResult:
    """
    Valida un producto canónico.

    Reglas (se acumulan todas las violaciones):
    - EAN obligatorio, de 8 a 14 dígitos, checksum válido si tiene 13
    - Marca y nombre no vacíos tras recortar espacios
    - Cada nutriente presente en [0, 100] y su suma <= 100
    - URL de imagen http(s) si existe

    Args:
        product: Producto a validar.

    Returns:
        ValidationResult con todas las razones de rechazo.
    """
    reasons = []

    ean = (product.ean or "").strip()
    if not ean:
        reasons.append("ean-missing")
    elif not EAN_FORMAT.match(ean):
        reasons.append("ean-invalid")
    elif len(ean) == 13 and not _valid_ean13(ean):
        reasons.append("ean-checksum")

    brand = _clean_string(product.brand)
    if brand is None:
        reasons.append("brand-empty")
    elif len(brand) > MAX_BRAND_LENGTH:
        reasons.append("brand-too-long")

    name = _clean_string(product.name)
    if name is None:
        reasons.append("name-empty")
    elif len(name) > MAX_NAME_LENGTH:
        reasons.append("name-too-long")

    present = product.nutrients.present()
    for nutrient, value in present.items():
        if not 0 <= value <= 100:
            reasons.append(f"{nutrient}-out-of-range")

    if sum(present.values()) > MAX_NUTRIENT_SUM:
        reasons.append("nutrients-sum-exceeds-100")

    if product.image_url and not product.image_url.startswith(("http://", "https://")):
        reasons.append("image-url-invalid")

    if not reasons and not present:
        logger.info(f"Producto sin nutrientes aceptado como borrador: {product.ean}")

    return ValidationResult(is_valid=not reasons, reasons=reasons)


def _valid_ean13(ean: str) -> bool:
    """Comprueba el dígito de control GS1 de un EAN-13."""
    total = sum(
        int(digit) * (3 if index % 2 else 1)
        for index, digit in enumerate(ean[:12])
    )
    return (10 - total % 10) % 10 == int(ean[12])


def _clean_string(value: Optional[str]) -> Optional[str]:
    """Convierte strings vacías a None."""
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned if cleaned else None
