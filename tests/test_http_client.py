import pytest
import requests

from conftest import FakeClock, FakeResponse
from dogfood_crawler.exceptions import DeadlineExceededError, FetchError
from dogfood_crawler.http_client import Deadline, HttpClient


class FakeSession:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("dogfood_crawler.http_client.time.sleep", lambda seconds: None)


def make_client(outcomes, max_retries=3):
    client = HttpClient(timeout=5, max_retries=max_retries)
    client.session = FakeSession(outcomes)
    return client


def test_retries_server_errors_then_succeeds():
    client = make_client([FakeResponse(503), FakeResponse(200, payload={"products": []})])
    assert client.get_json("https://api.test/x.json") == {"products": []}
    assert len(client.session.calls) == 2
    assert client.session.calls[0][2] == 5


def test_rate_limit_is_retried():
    client = make_client([FakeResponse(429), FakeResponse(200, text="<html></html>")])
    assert client.get_text("https://shop.test/") == "<html></html>"


def test_client_error_fails_without_retry():
    client = make_client([FakeResponse(404), FakeResponse(200)])
    with pytest.raises(FetchError) as exc_info:
        client.get_text("https://shop.test/missing")
    assert exc_info.value.reason == "HTTP 404"
    assert len(client.session.calls) == 1


def test_timeouts_exhaust_retries():
    client = make_client([requests.Timeout(), requests.Timeout()], max_retries=2)
    with pytest.raises(FetchError) as exc_info:
        client.get_json("https://api.test/slow.json")
    assert exc_info.value.reason == "timeout"


def test_invalid_json_is_fetch_error():
    client = make_client([FakeResponse(200, payload=None)])
    with pytest.raises(FetchError):
        client.get_json("https://api.test/html-instead.json")


def make_timed_client(outcomes, clock, seconds):
    deadline = Deadline(clock)
    deadline.start(seconds)
    client = HttpClient(timeout=5, max_retries=3, deadline=deadline, sleep=clock.sleep)
    client.session = FakeSession(outcomes)
    return client


def test_no_request_once_deadline_has_passed():
    clock = FakeClock()
    client = make_timed_client([FakeResponse(200, text="ok")], clock, seconds=10)
    clock.advance(10)

    with pytest.raises(DeadlineExceededError):
        client.get_text("https://shop.test/")
    assert client.session.calls == []


def test_request_timeout_is_capped_to_remaining_time():
    clock = FakeClock()
    client = make_timed_client([FakeResponse(200, text="ok")], clock, seconds=10)
    clock.advance(8)

    assert client.get_text("https://shop.test/") == "ok"
    assert client.session.calls[0][2] == 2


def test_backoff_that_would_pass_deadline_stops_retrying():
    clock = FakeClock()
    client = make_timed_client([FakeResponse(503), FakeResponse(200, text="ok")], clock, seconds=1)

    with pytest.raises(FetchError) as exc_info:
        client.get_text("https://shop.test/")
    assert exc_info.value.reason == "error de servidor (503)"
    assert len(client.session.calls) == 1
    assert clock.sleeps == []


def test_deadline_not_started_keeps_full_timeout():
    clock = FakeClock()
    client = HttpClient(timeout=5, deadline=Deadline(clock))
    client.session = FakeSession([FakeResponse(200, text="ok")])

    client.get_text("https://shop.test/")
    assert client.session.calls[0][2] == 5
