from datetime import datetime, timezone

import pytest

from dogfood_crawler.exceptions import RunLockedError, StateLoadError, StateSaveError
from dogfood_crawler.models import CrawlState, SourceId
from dogfood_crawler.state import STATE_KEY, CrawlStateStore


def test_load_without_row_returns_defaults(backend):
    state = CrawlStateStore(backend).load()
    assert state.current_source == SourceId.OPFF
    assert state.per_source_cursor == {source: 1 for source in SourceId}
    assert state.total_processed == 0
    assert state.last_error is None


def test_save_and_reload(backend):
    store = CrawlStateStore(backend)
    state = CrawlState(current_source=SourceId.ZOOPLUS, total_processed=42)
    state.per_source_cursor[SourceId.FRESSNAPF] = 7
    state.last_seen_key[SourceId.FRESSNAPF] = "4007721837132"
    state.last_run_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    store.save(state)

    assert backend.state_rows[STATE_KEY]["per_source_cursor"]["fressnapf"] == 7
    loaded = store.load()
    assert loaded.current_source == SourceId.ZOOPLUS
    assert loaded.cursor_for(SourceId.FRESSNAPF) == 7
    assert loaded.last_seen_key == {SourceId.FRESSNAPF: "4007721837132"}
    assert loaded.total_processed == 42
    assert loaded.last_run_at == state.last_run_at


def test_unknown_sources_in_row_are_ignored(backend):
    backend.state_rows[STATE_KEY] = {
        "current_source": "petsathome",
        "per_source_cursor": {"petsathome": 9, "zooplus": "3"},
        "last_seen_key": {"petsathome": "x"},
    }
    state = CrawlStateStore(backend).load()
    assert state.current_source == SourceId.OPFF
    assert state.per_source_cursor[SourceId.ZOOPLUS] == 3
    assert state.last_seen_key == {}


def test_load_failure(backend):
    backend.fail_load = True
    with pytest.raises(StateLoadError):
        CrawlStateStore(backend).load()


def test_save_failure(backend):
    backend.fail_save = True
    with pytest.raises(StateSaveError):
        CrawlStateStore(backend).save(CrawlState())


def test_lease_is_exclusive(backend):
    first = CrawlStateStore(backend)
    second = CrawlStateStore(backend)
    first.acquire_lease()
    with pytest.raises(RunLockedError):
        second.acquire_lease()
    first.release_lease()
    second.acquire_lease()
    second.release_lease()
    assert backend.locks == set()


def test_lease_backend_failure_is_load_error(backend):
    backend.fail_lock = True
    with pytest.raises(StateLoadError):
        CrawlStateStore(backend).acquire_lease()


def test_reset_source(backend):
    store = CrawlStateStore(backend)
    state = CrawlState()
    state.per_source_cursor[SourceId.ZOOPLUS] = 12
    state.per_source_cursor[SourceId.OPFF] = 5
    state.last_seen_key[SourceId.ZOOPLUS] = "4007721837132"
    store.save(state)

    store.reset_source(SourceId.ZOOPLUS)

    loaded = store.load()
    assert loaded.cursor_for(SourceId.ZOOPLUS) == 1
    assert loaded.cursor_for(SourceId.OPFF) == 5
    assert SourceId.ZOOPLUS not in loaded.last_seen_key


def test_record_error(backend):
    store = CrawlStateStore(backend)
    assert store.record_error("state save failed")
    assert store.load().last_error.endswith("state save failed")


def test_record_error_is_best_effort(backend):
    backend.fail_load = True
    assert CrawlStateStore(backend).record_error("boom") is False


def test_history_groups_by_session(backend):
    def row(ean, session, minute):
        return {
            "ean": ean,
            "name": "Adult",
            "source_id": "opff",
            "run_session_id": session,
            "submitted_at": datetime(2026, 3, 1, 12, minute, tzinfo=timezone.utc),
        }

    backend.submissions = [
        row("4007721837132", "s1", 0),
        row("4007721837133", "s1", 5),
        row("4260358512341", "s2", 30),
    ]

    sessions = CrawlStateStore(backend).history(limit=10)

    assert [s["sessionId"] for s in sessions] == ["s2", "s1"]
    assert sessions[1]["count"] == 2
    assert sessions[1]["firstProduct"].minute == 0
    assert sessions[1]["lastProduct"].minute == 5
