import threading
import time

import pytest
import requests

from edgar_fundamentals.services.errors import (
    SecEdgarError,
    SecHttpError,
    SecMalformedResponseError,
    SecRateLimitedError,
    SecTransientError,
    is_rate_limit_error,
)
from edgar_fundamentals.services.sec_edgar_client import (
    PacingGate,
    SecClientConfig,
    SecEdgarClient,
    normalize_cik,
)


class _Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class _Session:
    """Replays canned responses and records every GET."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        with self._lock:
            self.calls.append({"url": url, "headers": headers, "timeout": timeout, "at": time.monotonic()})
            item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _config(**overrides):
    base = dict(user_agent="edgar-tests test@example.com", spacing_seconds=0.0, retry_max=3, backoff_base_seconds=60.0)
    base.update(overrides)
    return SecClientConfig(**base)


def test_normalize_cik_pads_to_ten_digits():
    assert normalize_cik(320193) == "0000320193"
    assert normalize_cik("CIK0000320193") == "0000320193"
    assert normalize_cik("") is None
    assert normalize_cik(None) is None


def test_client_requires_user_agent():
    with pytest.raises(SecEdgarError):
        SecEdgarClient(SecClientConfig(user_agent=""), session=_Session([_Resp(200, {})]))


def test_requests_carry_identity_header_and_timeout():
    session = _Session([_Resp(200, {"name": "Apple Inc."})])
    client = SecEdgarClient(_config(timeout_seconds=12.0), session=session)

    out = client.get_company_submissions(320193)

    assert out == {"name": "Apple Inc."}
    call = session.calls[0]
    assert call["url"].endswith("/submissions/CIK0000320193.json")
    assert call["headers"]["User-Agent"] == "edgar-tests test@example.com"
    assert call["timeout"] == 12.0


def test_retries_rate_limit_then_succeeds_with_exponential_backoff():
    session = _Session([_Resp(429, text="slow down"), _Resp(503), _Resp(200, {"ok": True})])
    sleeps = []
    client = SecEdgarClient(_config(), session=session, sleep=sleeps.append)

    assert client.request_json("https://data.sec.gov/x.json") == {"ok": True}
    assert len(session.calls) == 3
    assert sleeps == [60.0, 120.0]


def test_rate_limit_exhausted_is_surfaced_as_rate_limited():
    session = _Session([_Resp(429, text="Your request has been temporarily blocked")])
    client = SecEdgarClient(_config(retry_max=2), session=session, sleep=lambda s: None)

    with pytest.raises(SecRateLimitedError) as exc:
        client.request_json("https://data.sec.gov/x.json")

    assert exc.value.status == 429
    assert len(session.calls) == 2
    assert is_rate_limit_error(exc.value)


def test_other_http_errors_are_not_retried():
    session = _Session([_Resp(404, text="Not Found")])
    sleeps = []
    client = SecEdgarClient(_config(), session=session, sleep=sleeps.append)

    with pytest.raises(SecHttpError) as exc:
        client.request_json("https://data.sec.gov/missing.json")

    assert exc.value.status == 404
    assert "Not Found" in exc.value.body_snippet
    assert len(session.calls) == 1
    assert sleeps == []
    assert not is_rate_limit_error(exc.value)


def test_blocked_body_counts_as_rate_limit_even_with_403():
    err = SecHttpError(403, "https://data.sec.gov/x.json", "Request Rate Threshold Exceeded; temporarily blocked")
    assert is_rate_limit_error(err)


def test_network_errors_retry_then_raise_transient():
    session = _Session([requests.ConnectionError("reset")])
    client = SecEdgarClient(_config(retry_max=3), session=session, sleep=lambda s: None)

    with pytest.raises(SecTransientError):
        client.request_json("https://data.sec.gov/x.json")
    assert len(session.calls) == 3

    session = _Session([requests.exceptions.ChunkedEncodingError("connection broken mid-body")])
    client = SecEdgarClient(_config(retry_max=2), session=session, sleep=lambda s: None)
    with pytest.raises(SecTransientError):
        client.request_json("https://data.sec.gov/x.json")
    assert len(session.calls) == 2


def test_truncated_body_is_retried_until_success():
    session = _Session([requests.exceptions.ChunkedEncodingError("incomplete read"), _Resp(200, {"ok": True})])
    sleeps = []
    client = SecEdgarClient(_config(), session=session, sleep=sleeps.append)

    assert client.request_json("https://data.sec.gov/x.json") == {"ok": True}
    assert len(session.calls) == 2
    assert sleeps == [60.0]


def test_non_json_and_non_object_payloads_are_malformed():
    client = SecEdgarClient(_config(), session=_Session([_Resp(200, None, text="<html>")]))
    with pytest.raises(SecMalformedResponseError):
        client.request_json("https://data.sec.gov/x.json")

    client = SecEdgarClient(_config(), session=_Session([_Resp(200, [1, 2, 3])]))
    with pytest.raises(SecMalformedResponseError):
        client.request_json("https://data.sec.gov/x.json")


def test_shared_gate_spaces_concurrent_requests():
    spacing = 0.05
    gate = PacingGate(spacing, max_in_flight=1)
    session = _Session([_Resp(200, {"ok": True})])
    clients = [SecEdgarClient(_config(), gate=gate, session=session) for _ in range(3)]

    threads = [
        threading.Thread(target=clients[i % 3].request_json, args=(f"https://data.sec.gov/{i}.json",))
        for i in range(6)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    starts = sorted(c["at"] for c in session.calls)
    assert len(starts) == 6
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    # Small tolerance for timer granularity.
    assert min(gaps) >= spacing * 0.9


def test_gate_advances_clock_on_every_attempt():
    now = [100.0]
    slept = []

    def fake_sleep(s):
        slept.append(s)
        now[0] += s

    gate = PacingGate(0.4, clock=lambda: now[0], sleep=fake_sleep)
    for _ in range(3):
        with gate.slot():
            pass

    assert slept == pytest.approx([0.4, 0.4])
