"""Shared fixtures and pytest configuration for the partner-bot test-suite."""

from __future__ import annotations

import threading
from types import SimpleNamespace
from typing import Any, Callable

import jwt
import pytest
import requests

from partner_bot.cache.base import CacheService
from partner_bot.cache.memory import InMemoryCacheStore

NOW = 1_700_000_000
CUSTOMER_OID = "11111111-aaaa-bbbb-cccc-000000000001"


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they stub all
    external calls and are safe for CI.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --------------------------------------------------------------------------- #
# Time                                                                        #
# --------------------------------------------------------------------------- #
class MutableClock:
    """Clock the test can move forward."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


# --------------------------------------------------------------------------- #
# Cache                                                                       #
# --------------------------------------------------------------------------- #
class CountingStore(InMemoryCacheStore):
    """In-memory store that records every call."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls: list[tuple[str, str]] = []

    def get(self, partition, key):  # noqa: ANN001
        self.calls.append(("get", key))
        return super().get(partition, key)

    def set(self, partition, key, value, ttl_seconds=None):  # noqa: ANN001
        self.calls.append(("set", key))
        super().set(partition, key, value, ttl_seconds)

    def delete(self, partition, key):  # noqa: ANN001
        self.calls.append(("delete", key))
        super().delete(partition, key)

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)


@pytest.fixture
def store(clock: MutableClock) -> CountingStore:
    return CountingStore(clock=clock)


@pytest.fixture
def cache(store: CountingStore) -> CacheService:
    return CacheService(store)


# --------------------------------------------------------------------------- #
# HTTP stubs                                                                  #
# --------------------------------------------------------------------------- #
def _fake_response(status_code: int = 200, payload: Any = None) -> SimpleNamespace:
    """Minimal stand-in for ``requests.Response``."""
    resp = SimpleNamespace()
    resp.ok = 200 <= status_code < 400
    resp.status_code = status_code
    resp.text = str(payload)
    resp.json = lambda: payload
    return resp


def _make_id_token(**claims: Any) -> str:
    """Signed with a throw-away HMAC key; the client never verifies id tokens."""
    return jwt.encode(claims, "test-signing-key-of-sufficient-length", algorithm="HS256")


def _token_payload(
    access_token: str = "access-1",
    *,
    expires_on: int | None = NOW + 3600,
    refresh_token: str | None = "refresh-1",
    oid: str | None = CUSTOMER_OID,
    tid: str | None = "tenant-customer",
    given_name: str = "Ada",
) -> dict[str, Any]:
    payload: dict[str, Any] = {"access_token": access_token, "token_type": "Bearer"}
    if expires_on is not None:
        payload["expires_on"] = str(expires_on)
    if refresh_token:
        payload["refresh_token"] = refresh_token
    if oid:
        payload["id_token"] = _make_id_token(
            oid=oid,
            tid=tid,
            given_name=given_name,
            family_name="Lovelace",
            upn="ada@example.test",
        )
    return payload


@pytest.fixture
def fake_response() -> Callable[..., SimpleNamespace]:
    return _fake_response


@pytest.fixture
def make_id_token() -> Callable[..., str]:
    return _make_id_token


@pytest.fixture
def token_payload() -> Callable[..., dict[str, Any]]:
    return _token_payload


class FakeAuthority:
    """Records token-endpoint posts and answers from a queue of responses.

    The last queued response is repeated for every further request.  When
    ``gate`` is set, each request blocks until the gate opens.
    """

    def __init__(self, *responses: SimpleNamespace) -> None:
        self.responses = list(responses)
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.entered = threading.Event()
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def __call__(self, url: str, *, data: dict, timeout: Any) -> SimpleNamespace:  # noqa: ARG002
        with self._lock:
            self.requests.append((url, dict(data)))
        self.entered.set()
        if self.gate is not None and not self.gate.wait(5):
            raise AssertionError("gate never opened")
        with self._lock:
            if not self.responses:
                raise AssertionError(f"unexpected token request to {url}")
            if len(self.responses) == 1:
                return self.responses[0]
            return self.responses.pop(0)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def grants(self) -> list[str]:
        return [data["grant_type"] for _, data in self.requests]

    def last_form(self) -> dict[str, str]:
        return self.requests[-1][1]


@pytest.fixture
def authority(monkeypatch: pytest.MonkeyPatch) -> Callable[..., FakeAuthority]:
    """Install a :class:`FakeAuthority` as ``requests.post``."""

    def _install(*responses: SimpleNamespace) -> FakeAuthority:
        fake = FakeAuthority(*responses)
        monkeypatch.setattr(requests, "post", fake)
        return fake

    return _install
