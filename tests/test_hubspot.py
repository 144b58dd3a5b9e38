"""
Tests for the rate-limited CRM client.
"""

import pytest
import requests

from brandsync.errors import AuthenticationError, RateLimitedError, TransientRemoteError
from brandsync.hubspot import RemoteClient, Request, error_for_response


def page(ids, after=None):
    payload = {"results": [{"id": str(i), "properties": {"brand_name": f"B{i}"}} for i in ids]}
    if after:
        payload["paging"] = {"next": {"after": after}}
    return payload


class TestErrorClassification:
    """Test response -> error mapping."""

    def test_success_is_none(self, response):
        assert error_for_response(response(200, {})) is None

    def test_401(self, response):
        assert isinstance(error_for_response(response(401, {"message": "bad"})), AuthenticationError)

    def test_429_with_hint(self, response):
        error = error_for_response(response(429, {}, headers={"Retry-After": "3"}))
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 3.0

    def test_429_garbage_hint(self, response):
        error = error_for_response(response(429, {}, headers={"Retry-After": "soon"}))
        assert error.retry_after is None

    @pytest.mark.parametrize("status", [400, 404, 500, 502, 503])
    def test_other_errors_transient(self, response, status):
        error = error_for_response(response(status, {}))
        assert isinstance(error, TransientRemoteError)
        assert error.status == status


class TestExecute:
    """Test retry and degradation behaviour of execute/search."""

    def test_sets_auth_header(self, make_client):
        client, session, _ = make_client([])
        assert session.headers["Authorization"] == "Bearer test-token"

    def test_search_request_shape(self, make_client, response):
        client, session, _ = make_client([response(200, page([1, 2]))])
        result = client.search(
            "2-26628489",
            filter_groups=[{"filters": [{"propertyName": "client_status", "operator": "EQ", "value": "Active"}]}],
            properties=["brand_name"],
            limit=50,
        )

        assert [r["id"] for r in result["results"]] == ["1", "2"]
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://api.hubapi.com/crm/v3/objects/2-26628489/search"
        assert call["json"]["limit"] == 50
        assert call["json"]["properties"] == ["brand_name"]
        assert call["timeout"] == 15.0

    def test_limit_capped_at_page_max(self, make_client, response):
        client, session, _ = make_client([response(200, page([]))])
        client.search("x", limit=500)
        assert session.calls[0]["json"]["limit"] == 100

    def test_401_not_retried_and_read_degrades(self, make_client, response, quiet_logger):
        client, session, sleeps = make_client([response(401, {"message": "expired"})])
        result = client.search("2-26628489")

        assert result == {"results": [], "paging": None}
        assert len(session.calls) == 1
        assert sleeps == []
        assert quiet_logger.metrics["errors_by_type"]["AuthenticationError"] == 1

    def test_429_honours_retry_after(self, make_client, response):
        client, session, sleeps = make_client([
            response(429, {}, headers={"Retry-After": "2"}),
            response(200, page([7])),
        ])
        result = client.search("x")

        assert [r["id"] for r in result["results"]] == ["7"]
        assert sleeps == [2.0]

    def test_429_exhausts_then_degrades(self, make_client, response):
        client, session, sleeps = make_client([response(429, {}) for _ in range(3)])
        result = client.search("x")

        assert result["results"] == []
        assert len(session.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_500_retried_once(self, make_client, response):
        client, session, sleeps = make_client([response(500, {}), response(500, {})])
        assert client.search("x")["results"] == []
        assert len(session.calls) == 2
        assert sleeps == [1.0]

    def test_timeout_is_transient(self, make_client, response):
        client, session, sleeps = make_client([
            requests.exceptions.Timeout("slow"),
            response(200, page([1])),
        ])
        assert len(client.search("x")["results"]) == 1
        assert len(session.calls) == 2

    def test_connection_error_degrades(self, make_client):
        client, session, _ = make_client([
            requests.exceptions.ConnectionError("down"),
            requests.exceptions.ConnectionError("down"),
        ])
        assert client.search("x") == {"results": [], "paging": None}

    def test_invalid_json_is_transient(self, make_client, response):
        client, session, _ = make_client([response(200, text="<html>"), response(200, text="<html>")])
        assert client.search("x")["results"] == []
        assert len(session.calls) == 2

    def test_mutating_call_raises(self, make_client, response):
        client, session, _ = make_client([response(401, {})])
        with pytest.raises(AuthenticationError):
            client.execute(Request("POST", "/webhooks/v3/1/subscriptions", json={}), mutating=True)

    def test_each_attempt_draws_a_credit(self, make_client, response, quiet_logger):
        client, session, _ = make_client([response(500, {}), response(200, page([1]))])
        client.search("x")
        assert quiet_logger.metrics["api_calls"] == 2
        assert quiet_logger.metrics["remote_attempted"] == 1


class TestGetById:
    """Test single-record fetch."""

    def test_properties_joined(self, make_client, response):
        client, session, _ = make_client([response(200, {"id": "5", "properties": {"a": 1}})])
        record = client.get_by_id("2-26628489", "5", ["a", "b"])

        assert record["id"] == "5"
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["url"].endswith("/crm/v3/objects/2-26628489/5")
        assert session.calls[0]["params"] == {"properties": "a,b"}

    def test_missing_record_is_none(self, make_client, response):
        client, _, _ = make_client([response(404, {}), response(404, {})])
        assert client.get_by_id("x", "5") is None


class TestSearchAll:
    """Test pagination."""

    def test_follows_cursors(self, make_client, response):
        client, session, _ = make_client([
            response(200, page([1, 2], after="c1")),
            response(200, page([3, 4], after="c2")),
            response(200, page([5])),
        ])
        delays = []
        result = client.search_all("x", page_size=2, sleep=delays.append)

        assert result.complete
        assert result.pages_fetched == 3
        assert [r["id"] for r in result.records] == ["1", "2", "3", "4", "5"]
        assert delays == [0.15, 0.15]
        assert session.calls[1]["json"]["after"] == "c1"

    def test_dedupes_across_pages(self, make_client, response):
        client, _, _ = make_client([
            response(200, page([1, 2], after="c1")),
            response(200, page([2, 3])),
        ])
        result = client.search_all("x", sleep=lambda s: None)
        assert [r["id"] for r in result.records] == ["1", "2", "3"]

    def test_stops_on_all_duplicate_page(self, make_client, response):
        client, session, _ = make_client([
            response(200, page([1, 2], after="c1")),
            response(200, page([1, 2], after="c2")),
        ])
        result = client.search_all("x", sleep=lambda s: None)
        assert result.pages_fetched == 2
        assert len(session.calls) == 2
        assert result.complete

    def test_stops_on_repeated_cursor(self, make_client, response):
        client, session, _ = make_client([
            response(200, page([1], after="c1")),
            response(200, page([2], after="c1")),
        ])
        result = client.search_all("x", sleep=lambda s: None)
        assert len(session.calls) == 2
        assert len(result.records) == 2

    def test_max_pages(self, make_client, response):
        client, session, _ = make_client([response(200, page([i], after=f"c{i}")) for i in range(5)])
        result = client.search_all("x", max_pages=3, sleep=lambda s: None)
        assert result.pages_fetched == 3
        assert len(session.calls) == 3
        assert not result.complete
        assert result.truncated

    def test_last_page_at_cap_is_complete(self, make_client, response):
        client, _, _ = make_client([
            response(200, page([1], after="c1")),
            response(200, page([2])),
        ])
        result = client.search_all("x", max_pages=2, sleep=lambda s: None)
        assert result.complete
        assert not result.truncated

    def test_failed_page_marks_incomplete(self, make_client, response):
        client, _, _ = make_client([
            response(200, page([1], after="c1")),
            response(500, {}),
            response(500, {}),
        ])
        result = client.search_all("x", sleep=lambda s: None)
        assert not result.complete
        assert result.pages_fetched == 1


class TestBrandPool:
    """Test concurrent bucket fetches."""

    def test_buckets_keep_order_and_limits(self, make_client, response):
        def handler(call):
            status = call["json"]["filterGroups"][0]["filters"][0]["value"]
            ids = {"Active": [1, 2, 3], "Inactive": [4, 5], "Pending": [6, 1]}[status]
            return response(200, page(ids))

        client, session, _ = make_client(handler)
        records = client.fetch_brand_pool("b", [("Active", 2), ("Inactive", 5), ("Pending", 5)])

        assert [r["id"] for r in records] == ["1", "2", "4", "5", "6"]
        assert len(session.calls) == 3


class TestRecordUrl:
    def test_without_portal(self, make_client):
        client, _, _ = make_client([])
        assert client.record_url("2-26628489", "1") is None

    def test_with_portal(self, make_client):
        client, _, _ = make_client([], portal_id="123")
        assert client.record_url("2-26628489", "1") == "https://app.hubspot.com/contacts/123/record/2-26628489/1"
