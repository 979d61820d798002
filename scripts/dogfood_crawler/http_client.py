"""
Cliente HTTP robusto con retry y backoff.

Proporciona una capa de abstracción sobre requests con:
- Timeout configurable por petición
- Reintentos con backoff exponencial (timeouts, errores de red, 5xx)
- Manejo de rate limiting (429)
- Límite de tiempo compartido con el orquestador
- FetchError cuando se agotan los reintentos
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from .exceptions import DeadlineExceededError, FetchError

logger = logging.getLogger(__name__)


class Deadline:
    """
    Instante límite de una ejecución.

    El orquestador lo arranca al empezar la sesión y los clientes HTTP
    lo consultan antes de cada intento y de cada espera de backoff.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at: Optional[float] = None

    def start(self, seconds: float) -> None:
        self.expires_at = self.clock() + seconds

    def remaining(self) -> Optional[float]:
        """Segundos restantes, o None si no se ha arrancado."""
        if self.expires_at is None:
            return None
        return self.expires_at - self.clock()


class HttpClient:
    """Cliente HTTP con retry y backoff."""

    DEFAULT_HEADERS = {
        "User-Agent": "SnackTrack-DogFood-Crawler/1.0",
        "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
        "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
    }

    def __init__(
        self,
        timeout: float = 30,
        max_retries: int = 3,
        backoff: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        deadline: Optional[Deadline] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Inicializa el cliente HTTP.

        Args:
            timeout: Timeout por request en segundos.
            max_retries: Número máximo de intentos.
            backoff: Base en segundos del backoff exponencial.
            headers: Headers adicionales para las peticiones.
            deadline: Límite de la ejecución. Ninguna petición ni espera
                se alarga más allá de él.
            sleep: Función de espera para el backoff (time.sleep por defecto).
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self.deadline = deadline
        self.sleep = sleep or time.sleep
        self.session = requests.Session()
        self.session.headers.update(self.DEFAULT_HEADERS)
        if headers:
            self.session.headers.update(headers)

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        GET que devuelve el cuerpo JSON.

        Raises:
            FetchError: Si falla tras los reintentos o la respuesta no es JSON.
        """
        response = self._get(url, params)
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(url, f"respuesta no es JSON: {exc}") from exc

    def get_text(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        GET que devuelve el cuerpo como texto (HTML).

        Raises:
            FetchError: Si falla tras los reintentos.
        """
        return self._get(url, params).text

    def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
    ) -> requests.Response:
        last_reason = "sin respuesta"
        attempts = 0

        for attempt in range(self.max_retries):
            timeout = self._request_timeout(url)
            attempts = attempt + 1
            try:
                logger.debug(f"GET {url} (intento {attempts}/{self.max_retries})")
                response = self.session.get(url, params=params, timeout=timeout)

                # Rate limiting
                if response.status_code == 429:
                    last_reason = "rate limited (429)"
                    wait_time = self.backoff * 2 ** (attempt + 1)
                    logger.warning(f"Rate limited (429). Esperando {wait_time}s...")
                    if not self._wait(attempt, wait_time):
                        break
                    continue

                # Otros errores de servidor
                if response.status_code >= 500:
                    last_reason = f"error de servidor ({response.status_code})"
                    wait_time = self.backoff * 2 ** attempt
                    logger.warning(
                        f"Error de servidor ({response.status_code}). "
                        f"Reintentando en {wait_time}s..."
                    )
                    if not self._wait(attempt, wait_time):
                        break
                    continue

                # 4xx no se reintenta
                if response.status_code >= 400:
                    raise FetchError(url, f"HTTP {response.status_code}")

                return response

            except requests.Timeout:
                last_reason = "timeout"
                logger.warning(f"Timeout en {url} (intento {attempts})")
                if not self._wait(attempt, self.backoff * 2 ** attempt):
                    break

            except requests.RequestException as e:
                last_reason = str(e)
                logger.error(f"Error en GET {url}: {e}")
                if not self._wait(attempt, self.backoff * 2 ** attempt):
                    break

        logger.error(f"Falló después de {attempts} intentos: {url}")
        raise FetchError(url, last_reason)

    def _request_timeout(self, url: str) -> float:
        """Timeout del siguiente intento, recortado al tiempo restante."""
        remaining = self.deadline.remaining() if self.deadline else None
        if remaining is None:
            return self.timeout
        if remaining <= 0:
            logger.warning(f"Sin tiempo restante, no se pide {url}")
            raise DeadlineExceededError(url)
        return min(self.timeout, remaining)

    def _wait(self, attempt: int, seconds: float) -> bool:
        """
        Espera antes del siguiente intento.

        Returns:
            False si no quedan intentos o la espera agotaría el tiempo.
        """
        if attempt >= self.max_retries - 1:
            return False
        remaining = self.deadline.remaining() if self.deadline else None
        if remaining is not None and remaining <= seconds:
            logger.warning("Sin tiempo para otro reintento")
            return False
        self.sleep(seconds)
        return True
