import json

import main
from conftest import A, B, C, InMemoryBackend, ScriptedFetcher, make_orchestrator, product_record
from dogfood_crawler.state import STATE_KEY, CrawlStateStore


def empty_fetchers():
    return [ScriptedFetcher(A), ScriptedFetcher(B), ScriptedFetcher(C)]


def test_successful_run_exits_zero(backend, clock, make_ean, capsys):
    fetchers = [ScriptedFetcher(A, {1: [product_record(make_ean())]}), ScriptedFetcher(B), ScriptedFetcher(C)]
    orchestrator = make_orchestrator(fetchers, backend, clock)

    code = main.execute_run(orchestrator, orchestrator.state_store)

    assert code == 0
    assert backend.locks == set()
    summary = json.loads(capsys.readouterr().out)
    assert summary["processed"] == 1


def test_locked_run_exits_one(backend, clock):
    backend.locks.add(STATE_KEY)
    fetchers = empty_fetchers()
    orchestrator = make_orchestrator(fetchers, backend, clock)

    assert main.execute_run(orchestrator, orchestrator.state_store) == 1
    assert all(f.calls == [] for f in fetchers)
    assert backend.locks == {STATE_KEY}


def test_state_load_failure_exits_one(backend, clock):
    backend.fail_load = True
    fetchers = empty_fetchers()
    orchestrator = make_orchestrator(fetchers, backend, clock)

    assert main.execute_run(orchestrator, orchestrator.state_store) == 1
    assert all(f.calls == [] for f in fetchers)
    assert backend.locks == set()


def test_final_save_failure_exits_one_and_records_error(backend, clock):
    # Tres checkpoints de rotación y el guardado final; el reintento entra
    backend.fail_saves_remaining = 4
    orchestrator = make_orchestrator(empty_fetchers(), backend, clock)

    assert main.execute_run(orchestrator, orchestrator.state_store) == 1
    assert "write refused" in CrawlStateStore(backend).load().last_error


def test_final_save_failure_keeps_session_progress(backend, clock, make_ean):
    # Falla el checkpoint de la rotación A -> B y el guardado final
    backend.fail_saves_remaining = 2
    fetchers = [
        ScriptedFetcher(A),
        ScriptedFetcher(B, {1: [product_record(make_ean())]}),
        ScriptedFetcher(C),
    ]
    orchestrator = make_orchestrator(fetchers, backend, clock, max_products=1)

    assert main.execute_run(orchestrator, orchestrator.state_store) == 1

    stored = CrawlStateStore(backend).load()
    assert stored.current_source == B
    assert stored.per_source_cursor[B] == 2
    assert stored.total_processed == 1
    assert "write refused" in stored.last_error
    assert len(backend.submissions) == 1
    assert backend.locks == set()


class ClosableBackend(InMemoryBackend):
    def close_connection(self):
        self.closed = True


def test_dry_run_writes_nothing(monkeypatch, make_ean):
    backend = ClosableBackend()
    monkeypatch.setattr(main, "database", backend)
    monkeypatch.setattr(
        main,
        "build_fetchers",
        lambda settings, deadline=None: {
            A: ScriptedFetcher(A, {1: [product_record(make_ean())]}),
            B: ScriptedFetcher(B),
            C: ScriptedFetcher(C),
        },
    )
    monkeypatch.setenv("CRAWLER_RECORD_DELAY", "0")
    args = main.build_parser().parse_args(["run", "--dry-run", "--max-products", "1"])

    assert args.func(args) == 0
    assert backend.submissions == []
    assert backend.state_rows == {}
    assert backend.closed


def test_parser_commands():
    parser = main.build_parser()

    args = parser.parse_args(["run", "--max-runtime", "120", "-v"])
    assert args.func is main.cmd_run
    assert args.max_runtime == 120.0
    assert args.verbose

    args = parser.parse_args(["state", "reset-source", "zooplus"])
    assert args.func is main.cmd_state_reset_source
    assert args.source == "zooplus"

    args = parser.parse_args(["history"])
    assert args.limit == 10
