import copy
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import requests

from dogfood_crawler.dedup import DeduplicationIndex
from dogfood_crawler.exceptions import FetchError
from dogfood_crawler.models import (
    Batch,
    CanonicalProduct,
    Nutrients,
    RawProduct,
    SourceId,
)
from dogfood_crawler.orchestrator import CrawlOrchestrator, RunConfig
from dogfood_crawler.sink import SubmissionSink
from dogfood_crawler.state import CrawlStateStore

A, B, C = SourceId.OPFF, SourceId.FRESSNAPF, SourceId.ZOOPLUS


def read_fixture(name: str) -> str:
    p = Path(__file__).parent / "fixtures" / name
    return p.read_text(encoding="utf-8")


def ean13(prefix12: str) -> str:
    """Completa 12 dígitos con el dígito de control GS1."""
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(prefix12))
    return prefix12 + str((10 - total % 10) % 10)


class EanFactory:
    def __init__(self, start: int = 1):
        self.next = start

    def __call__(self) -> str:
        ean = ean13(f"400{self.next:09d}")
        self.next += 1
        return ean


class InMemoryBackend:
    """Backend falso con la misma interfaz que database.py."""

    def __init__(self):
        self.state_rows: Dict[str, dict] = {}
        self.submissions: List[dict] = []
        self.locks = set()
        self.save_calls = 0
        self.fail_load = False
        self.fail_save = False
        self.fail_saves_remaining = 0
        self.fail_lookup = False
        self.fail_insert = False
        self.fail_lock = False

    # crawl_state
    def fetch_crawl_state(self, state_key):
        if self.fail_load:
            raise ConnectionError("database unavailable")
        row = self.state_rows.get(state_key)
        return copy.deepcopy(row) if row else None

    def upsert_crawl_state(self, state_key, record):
        self.save_calls += 1
        if self.fail_save:
            raise ConnectionError("write refused")
        if self.fail_saves_remaining > 0:
            self.fail_saves_remaining -= 1
            raise ConnectionError("write refused")
        self.state_rows[state_key] = copy.deepcopy(record)

    def try_acquire_run_lock(self, key):
        if self.fail_lock:
            raise ConnectionError("database unavailable")
        if key in self.locks:
            return False
        self.locks.add(key)
        return True

    def release_run_lock(self, key):
        self.locks.discard(key)

    # food_submissions
    def ean_exists(self, ean):
        if self.fail_lookup:
            raise ConnectionError("lookup timeout")
        return any(row["ean"] == ean for row in self.submissions)

    def insert_submission(self, record):
        if self.fail_insert:
            raise ConnectionError("insert refused")
        self.submissions.append(dict(record))
        return len(self.submissions)

    def recent_submissions(self, limit=10):
        rows = sorted(self.submissions, key=lambda r: r["submitted_at"], reverse=True)
        return rows[:limit]


class FakeClock:
    """Reloj monotónico falso; sleep() avanza el tiempo."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def product_record(ean: str, **fields) -> RawProduct:
    data = {"ean": ean, "brand": "Acme", "name": "Adult Chicken"}
    data.update(fields)
    return RawProduct(raw_id=ean, raw_data=data)


class ScriptedFetcher:
    """
    Fetcher falso.

    pages: {cursor: [RawProduct]} para contenido fijo por cursor.
    sizes: iterador compartido de tamaños de lote, consumido por llamada.
    fail_cursors: cursores cuyo fetch lanza FetchError.
    """

    initial_cursor = 1

    def __init__(
        self,
        source: SourceId,
        pages: Optional[Dict[int, List[RawProduct]]] = None,
        sizes=None,
        make_ean=None,
        calls: Optional[list] = None,
        clock: Optional[FakeClock] = None,
        fetch_cost: float = 0.0,
        fail_cursors=(),
        exhausted_cursors=(),
    ):
        self.SOURCE = source
        self.pages = pages or {}
        self.sizes = sizes
        self.make_ean = make_ean
        self.calls = calls if calls is not None else []
        self.clock = clock
        self.fetch_cost = fetch_cost
        self.fail_cursors = set(fail_cursors)
        self.exhausted_cursors = set(exhausted_cursors)

    def fetch_batch(self, cursor: int) -> Batch:
        self.calls.append((self.SOURCE, cursor))
        if self.clock is not None:
            self.clock.advance(self.fetch_cost)
        if cursor in self.fail_cursors:
            raise FetchError(f"https://{self.SOURCE.value}.test/{cursor}", "timeout")
        if cursor in self.exhausted_cursors:
            return Batch(records=[], next_cursor=cursor + 1, exhausted=True)

        if self.sizes is not None:
            size = next(self.sizes, 0)
            records = [product_record(self.make_ean()) for _ in range(size)]
        else:
            records = list(self.pages.get(cursor, []))
        return Batch(records=records, next_cursor=cursor + 1, exhausted=not records)

    def normalize(self, raw: RawProduct) -> Optional[CanonicalProduct]:
        data = raw.raw_data
        if data.get("raise"):
            raise data["raise"]
        if data.get("drop"):
            return None
        return CanonicalProduct(
            ean=data["ean"],
            brand=data["brand"],
            name=data["name"],
            source_id=self.SOURCE,
            nutrients=Nutrients(**data.get("nutrients", {})),
            additives=data.get("additives"),
            image_url=data.get("image_url"),
        )


class StalledSession:
    """Sesión cuyo GET agota el timeout entero y termina en requests.Timeout."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls = []
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        self.clock.advance(timeout)
        raise requests.Timeout()


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeHttp:
    """Sustituto de HttpClient: respuestas por URL (valor, callable o excepción)."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def _respond(self, url, params):
        self.calls.append((url, params))
        if url not in self.responses:
            raise FetchError(url, "HTTP 404")
        value = self.responses[url]
        if callable(value):
            value = value(params)
        if isinstance(value, Exception):
            raise value
        return value

    def get_json(self, url, params=None):
        return self._respond(url, params)

    def get_text(self, url, params=None):
        return self._respond(url, params)


def make_orchestrator(fetchers, backend, clock, sink=None, **config):
    settings = dict(
        max_runtime=300,
        safety_margin=30,
        max_products=100,
        record_delay=0.5,
        checkpoint_every=5,
        max_consecutive_failures=3,
    )
    settings.update(config)
    return CrawlOrchestrator(
        fetchers={fetcher.SOURCE: fetcher for fetcher in fetchers},
        state_store=CrawlStateStore(backend),
        dedup=DeduplicationIndex(backend),
        sink=sink or SubmissionSink(backend),
        config=RunConfig(**settings),
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_ean():
    return EanFactory()
