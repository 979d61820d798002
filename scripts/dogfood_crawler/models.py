"""
Modelos de datos para el pipeline de ingesta.

Define el contrato común entre fetchers, validador, deduplicación,
sink y orquestador.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple


class SourceId(str, Enum):
    """Fuentes de productos soportadas."""

    OPFF = "opff"
    FRESSNAPF = "fressnapf"
    ZOOPLUS = "zooplus"


# Orden fijo del anillo de rotación
SOURCE_RING: Tuple[SourceId, ...] = (
    SourceId.OPFF,
    SourceId.FRESSNAPF,
    SourceId.ZOOPLUS,
)

INITIAL_CURSOR = 1

# Nombres de nutrientes tal como se escriben en la cola de moderación
NUTRIENT_FIELDS: Tuple[str, ...] = (
    "protein",
    "fat",
    "crudeFiber",
    "rawAsh",
    "moisture",
)


@dataclass
class Nutrients:
    """Análisis de nutrientes en porcentaje. None = no declarado."""

    protein: Optional[float] = None
    fat: Optional[float] = None
    crudeFiber: Optional[float] = None
    rawAsh: Optional[float] = None
    moisture: Optional[float] = None

    def items(self) -> List[Tuple[str, Optional[float]]]:
        return [(name, getattr(self, name)) for name in NUTRIENT_FIELDS]

    def present(self) -> Dict[str, float]:
        """Solo los nutrientes declarados."""
        return {name: value for name, value in self.items() if value is not None}

    def is_empty(self) -> bool:
        return not self.present()

    def to_dict(self) -> Dict[str, Optional[float]]:
        return dict(self.items())


@dataclass
class RawProduct:
    """
    Datos crudos de un producto tal como vienen de la fuente.

    En la API es el JSON del producto; en los sitios HTML es la URL
    de la página de detalle pendiente de descargar.
    """

    raw_id: str
    raw_data: Dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        """Acceso conveniente a raw_data."""
        return self.raw_data.get(key, default)


@dataclass
class Batch:
    """
    Resultado de fetch_batch para un cursor.

    exhausted indica que la fuente no tiene más páginas. El orquestador
    decide la rotación por el resultado del lote y usa esta marca para
    distinguir en el log una fuente agotada de un lote inservible.
    """

    records: List[RawProduct]
    next_cursor: int
    exhausted: bool = False
    errors: int = 0


@dataclass
class CanonicalProduct:
    """Producto normalizado, independiente de la fuente."""

    ean: str
    brand: str
    name: str
    source_id: SourceId
    nutrients: Nutrients = field(default_factory=Nutrients)
    additives: Optional[Dict[str, str]] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.ean} - {self.brand} {self.name}"


@dataclass
class ValidationResult:
    """Resultado de validación. Nunca se persiste."""

    is_valid: bool
    reasons: List[str] = field(default_factory=list)


def _default_cursors() -> Dict[SourceId, int]:
    return {source: INITIAL_CURSOR for source in SOURCE_RING}


@dataclass
class CrawlState:
    """Progreso durable del crawl. Una instancia lógica por despliegue."""

    current_source: SourceId = SourceId.OPFF
    per_source_cursor: Dict[SourceId, int] = field(default_factory=_default_cursors)
    last_seen_key: Dict[SourceId, str] = field(default_factory=dict)
    total_processed: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def cursor_for(self, source: SourceId) -> int:
        return self.per_source_cursor.get(source, INITIAL_CURSOR)

    def to_record(self) -> Dict[str, Any]:
        """Convierte a las columnas de la tabla crawl_state."""
        return {
            "current_source": self.current_source.value,
            "per_source_cursor": {
                source.value: cursor
                for source, cursor in self.per_source_cursor.items()
            },
            "last_seen_key": {
                source.value: key for source, key in self.last_seen_key.items()
            },
            "total_processed": self.total_processed,
            "last_run_at": self.last_run_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "CrawlState":
        """
        Construye el estado desde una fila guardada.

        Fuentes desconocidas se ignoran y las que falten toman
        el cursor inicial.
        """
        state = cls()

        current = _parse_source(row.get("current_source"))
        if current is not None:
            state.current_source = current

        for key, cursor in (row.get("per_source_cursor") or {}).items():
            source = _parse_source(key)
            if source is None:
                continue
            try:
                state.per_source_cursor[source] = int(cursor)
            except (TypeError, ValueError):
                state.per_source_cursor[source] = INITIAL_CURSOR

        for key, value in (row.get("last_seen_key") or {}).items():
            source = _parse_source(key)
            if source is not None and value:
                state.last_seen_key[source] = str(value)

        state.total_processed = int(row.get("total_processed") or 0)
        state.last_run_at = row.get("last_run_at")
        state.last_error = row.get("last_error")
        return state


def _parse_source(value: Any) -> Optional[SourceId]:
    try:
        return SourceId(value)
    except ValueError:
        return None


@dataclass
class Submission:
    """Documento de la cola de moderación. Se escribe una sola vez."""

    ean: str
    brand: str
    name: str
    nutrients: Nutrients
    source_id: SourceId
    run_session_id: str
    submitted_at: datetime
    additives: Optional[Dict[str, str]] = None
    image_url: Optional[str] = None
    status: str = "PENDING"

    @classmethod
    def from_product(
        cls,
        product: CanonicalProduct,
        run_session_id: str,
        submitted_at: datetime,
    ) -> "Submission":
        return cls(
            ean=product.ean,
            brand=product.brand,
            name=product.name,
            nutrients=product.nutrients,
            source_id=product.source_id,
            run_session_id=run_session_id,
            submitted_at=submitted_at,
            additives=product.additives,
            image_url=product.image_url,
        )

    def to_record(self) -> Dict[str, Any]:
        """Convierte a las columnas de food_submissions."""
        return {
            "ean": self.ean,
            "brand": self.brand,
            "name": self.name,
            "protein": self.nutrients.protein,
            "fat": self.nutrients.fat,
            "crude_fiber": self.nutrients.crudeFiber,
            "raw_ash": self.nutrients.rawAsh,
            "moisture": self.nutrients.moisture,
            "additives": self.additives,
            "image_url": self.image_url,
            "status": self.status,
            "submitted_at": self.submitted_at,
            "source_id": self.source_id.value,
            "run_session_id": self.run_session_id,
        }


@dataclass
class RunContext:
    """
    Estado de una ejecución: contadores y cache de EANs aceptados.

    Se pasa explícitamente a cada etapa; dos ejecuciones nunca
    comparten contexto.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = 0.0
    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0
    dropped: int = 0
    records_seen: int = 0
    per_source_counts: Dict[SourceId, int] = field(
        default_factory=lambda: {source: 0 for source in SOURCE_RING}
    )
    seen_eans: Set[str] = field(default_factory=set)

    def summary(self, duration: Optional[float] = None) -> Dict[str, Any]:
        """Resumen de la ejecución."""
        data: Dict[str, Any] = {
            "sessionId": self.session_id,
            "processed": self.accepted,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "rejected": self.rejected,
            "dropped": self.dropped,
            "perSourceCounts": {
                source.value: count
                for source, count in self.per_source_counts.items()
            },
        }
        if duration is not None:
            data["durationSeconds"] = round(duration, 1)
        return data
