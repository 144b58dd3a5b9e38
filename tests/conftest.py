"""
Pytest configuration and shared fixtures.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import pytest

from brandsync.hubspot import PageResult, RemoteClient
from brandsync.logger import StructuredLogger, reset_logger
from brandsync.ratelimit import TokenBucket
from brandsync.retry import RetryPolicy
from brandsync.storage import MemoryStore


class FakeClock:
    """Manually advanced clock; ``sleep`` advances it."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    """Just enough of ``requests.Response`` for the client."""

    def __init__(self, status_code: int = 200, payload: Any = None, headers=None, text: Optional[str] = None):
        self.status_code = status_code
        self.headers = headers or {}
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    ``responses`` is either a list consumed in order (items may be
    exceptions to raise) or a handler ``fn(call) -> FakeResponse``.
    """

    def __init__(self, responses=None):
        self.responses = responses if callable(responses) else list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.headers: Dict[str, str] = {}

    def request(self, method, url, json=None, params=None, timeout=None):
        call = {"method": method, "url": url, "json": json, "params": params, "timeout": timeout}
        self.calls.append(call)
        if callable(self.responses):
            item = self.responses(call)
        else:
            if not self.responses:
                raise AssertionError(f"Unexpected request: {method} {url}")
            item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _tokens(text: str) -> List[str]:
    return re.findall(r"[\w'&]+", (text or "").lower())


class FakeCrmClient:
    """
    In-memory stand-in for ``RemoteClient`` used by resolver and sync tests.

    ``search`` understands EQ and CONTAINS_TOKEN filters on string
    properties; unfiltered searches return records in list order (treated
    as most recently modified first).
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records = list(records or [])
        self.searches: List[Dict[str, Any]] = []
        self.fetched_ids: List[str] = []
        self.pages_fetched = 1
        self.complete = True
        self.fail_search = False
        self.token_search = True

    @staticmethod
    def _matches(record, flt) -> bool:
        value = (record.get("properties") or {}).get(flt["propertyName"])
        if not isinstance(value, str):
            return False
        if flt["operator"] == "EQ":
            return value.strip().lower() == str(flt["value"]).strip().lower()
        if flt["operator"] == "CONTAINS_TOKEN":
            wanted = _tokens(flt["value"])
            have = set(_tokens(value))
            return bool(wanted) and all(w in have for w in wanted)
        return False

    def search(self, object_type, filter_groups=None, properties=None, sorts=None, after=None, limit=100, query=None):
        self.searches.append({"object_type": object_type, "filter_groups": filter_groups, "sorts": sorts, "limit": limit})
        if self.fail_search:
            return {"results": [], "paging": None}
        if not filter_groups:
            return {"results": self.records[:limit], "paging": None}
        if not self.token_search:
            return {"results": [], "paging": None}
        results = [
            r for r in self.records
            if any(all(self._matches(r, f) for f in group["filters"]) for group in filter_groups)
        ]
        return {"results": results[:limit], "paging": None}

    def search_all(self, object_type, filter_groups=None, properties=None, sorts=None,
                   page_size=100, max_pages=20, page_delay=0.15, sleep=None):
        self.searches.append({"object_type": object_type, "filter_groups": filter_groups, "sorts": sorts})
        if not self.complete:
            return PageResult([], self.pages_fetched, complete=False)
        return PageResult(list(self.records), self.pages_fetched, complete=True)

    def get_by_id(self, object_type, record_id, properties=None):
        self.fetched_ids.append(str(record_id))
        for record in self.records:
            if str(record["id"]) == str(record_id):
                return record
        return None

    def record_url(self, object_type, record_id):
        return f"https://app.example.com/record/{object_type}/{record_id}"


@pytest.fixture(autouse=True)
def _reset_global_logger():
    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def quiet_logger() -> StructuredLogger:
    """Logger with no handlers attached (no console, no files)."""
    return StructuredLogger(name="brandsync-test", level="DEBUG", enable_file=False, enable_console=False)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(fake_clock) -> MemoryStore:
    return MemoryStore(clock=fake_clock)


@pytest.fixture
def make_client(quiet_logger) -> Callable[..., RemoteClient]:
    """Factory: ``make_client(responses, **kwargs) -> (client, session, sleeps)``."""

    def factory(responses=None, **kwargs):
        session = FakeSession(responses)
        sleeps: List[float] = []
        kwargs.setdefault("limiter", TokenBucket(capacity=1000, rate=1000.0))
        kwargs.setdefault("retry_policy", RetryPolicy(sleep=sleeps.append))
        client = RemoteClient(api_key="test-token", session=session, logger=quiet_logger, **kwargs)
        return client, session, sleeps

    return factory


@pytest.fixture
def crm() -> FakeCrmClient:
    return FakeCrmClient()


def brand(record_id: str, **props) -> Dict[str, Any]:
    """Raw brand record with member-qualifying defaults."""
    base = {
        "brand_name": f"Brand {record_id}",
        "client_status": "Active",
        "new_product_main_category": "Automotive",
        "main_category": "Automotive",
        "hubspot_owner_id": "42",
        "partnership_count": "3",
    }
    base.update(props)
    return {"id": record_id, "properties": base}


def partnership(record_id: str, name: str, **props) -> Dict[str, Any]:
    base = {"partnership_name": name}
    base.update(props)
    return {"id": record_id, "properties": base}


@pytest.fixture
def make_brand() -> Callable[..., Dict[str, Any]]:
    return brand


@pytest.fixture
def make_partnership() -> Callable[..., Dict[str, Any]]:
    return partnership


@pytest.fixture
def response():
    """Factory for fake HTTP responses."""
    return FakeResponse
