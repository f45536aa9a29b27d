"""
Unit tests for the aurora grid reader.

Covers:
    - parse_grid_payload: happy path, feed timestamps, malformed documents
    - HttpGridSource: success, non-2xx status, transport errors, invalid JSON

HTTP is exercised through ``httpx.MockTransport`` so no network access is
needed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from worker.aurora.reader import (
    DEFAULT_FEED_URL,
    MAX_SAMPLE_VALUE,
    FetchError,
    HttpGridSource,
    create_grid_source,
    parse_grid_payload,
)

# ---------------------------------------------------------------------------
# Fixtures & Helpers
# ---------------------------------------------------------------------------


def _payload(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "Observation Time": "2026-10-18T11:05:00Z",
        "Forecast Time": "2026-10-18T11:40:00Z",
        "Data Format": "[Longitude, Latitude, Aurora]",
        "coordinates": [[0, -90, 0], [212, 65, 42], [359, 90, 3]],
    }
    doc.update(overrides)
    return doc


def _source(handler: Any, **kwargs: Any) -> HttpGridSource:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpGridSource(client=client, **kwargs)


# ---------------------------------------------------------------------------
# parse_grid_payload
# ---------------------------------------------------------------------------


class TestParseGridPayload:
    def test_parses_samples_in_order(self) -> None:
        grid = parse_grid_payload(_payload())
        assert len(grid) == 3
        assert [s.value for s in grid] == [0, 42, 3]
        assert grid[1].longitude == 212.0
        assert grid[1].latitude == 65.0

    def test_parses_feed_times(self) -> None:
        grid = parse_grid_payload(_payload())
        assert grid.observation_time == datetime(
            2026, 10, 18, 11, 5, tzinfo=timezone.utc
        )
        assert grid.forecast_time == datetime(
            2026, 10, 18, 11, 40, tzinfo=timezone.utc
        )

    def test_naive_time_assumed_utc(self) -> None:
        grid = parse_grid_payload(_payload(**{"Observation Time": "2026-10-18T11:05:00"}))
        assert grid.observation_time is not None
        assert grid.observation_time.tzinfo == timezone.utc

    def test_bad_time_is_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING"):
            grid = parse_grid_payload(_payload(**{"Forecast Time": "yesterday"}))
        assert grid.forecast_time is None
        assert len(grid) == 3
        assert "unparseable" in caplog.text

    def test_missing_times_are_none(self) -> None:
        grid = parse_grid_payload({"coordinates": [[1, 2, 3]]})
        assert grid.observation_time is None
        assert grid.forecast_time is None

    def test_integral_float_value_accepted(self) -> None:
        grid = parse_grid_payload({"coordinates": [[1.5, 2.5, 7.0]]})
        assert grid[0].value == 7

    def test_largest_storable_value_accepted(self) -> None:
        grid = parse_grid_payload({"coordinates": [[0, 0, MAX_SAMPLE_VALUE]]})
        assert int(grid.values[0]) == MAX_SAMPLE_VALUE

    def test_custom_samples_field(self) -> None:
        grid = parse_grid_payload({"points": [[1, 2, 3]]}, samples_field="points")
        assert len(grid) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "not an object",
            {},
            {"coordinates": None},
            {"coordinates": {"0": [1, 2, 3]}},
            {"coordinates": []},
        ],
    )
    def test_unusable_document(self, payload: Any) -> None:
        with pytest.raises(FetchError):
            parse_grid_payload(payload)

    @pytest.mark.parametrize(
        "entry",
        [
            [1, 2],
            [1, 2, 3, 4],
            "1,2,3",
            [1, "2", 3],
            [1, 2, None],
            [True, 2, 3],
            [float("nan"), 2, 3],
            [1, float("inf"), 3],
            [1, 91, 3],
            [1, -90.5, 3],
            [1, 2, -1],
            [1, 2, 3.5],
            [1, 2, float("inf")],
            [1, 2, 2**63],
            [1, 2, 1e20],
            [10**400, 2, 3],
        ],
    )
    def test_malformed_entry_rejects_whole_grid(self, entry: Any) -> None:
        with pytest.raises(FetchError):
            parse_grid_payload({"coordinates": [[0, 0, 1], entry]})


# ---------------------------------------------------------------------------
# HttpGridSource
# ---------------------------------------------------------------------------


class TestHttpGridSource:
    def test_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload())

        grid = _source(handler).fetch()

        assert len(grid) == 3
        assert len(seen) == 1
        assert str(seen[0].url) == DEFAULT_FEED_URL

    def test_custom_url_and_field(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/grid.json"
            return httpx.Response(200, json={"samples": [[1, 2, 3]]})

        grid = _source(
            handler, url="https://example.test/grid.json", samples_field="samples"
        ).fetch()
        assert grid[0].value == 3

    def test_http_500(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream down")

        with pytest.raises(FetchError, match="HTTP 500") as exc_info:
            _source(handler).fetch()
        assert isinstance(exc_info.value.cause, httpx.HTTPStatusError)

    def test_http_404(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(FetchError, match="HTTP 404"):
            _source(handler).fetch()

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(FetchError, match="ReadTimeout") as exc_info:
            _source(handler).fetch()
        assert isinstance(exc_info.value.cause, httpx.TimeoutException)

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(FetchError, match="request failed"):
            _source(handler).fetch()

    def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(FetchError, match="invalid JSON"):
            _source(handler).fetch()

    def test_empty_collection(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"coordinates": []})

        with pytest.raises(FetchError, match="empty"):
            _source(handler).fetch()

    def test_oversized_value_is_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text='{"coordinates": [[0, 0, 1e20]]}')

        with pytest.raises(FetchError, match="out of range"):
            _source(handler).fetch()


class TestCreateGridSource:
    def test_builds_http_source_with_timeout(self) -> None:
        source = create_grid_source(
            url="https://example.test/feed.json", timeout_seconds=5.0
        )
        assert isinstance(source, HttpGridSource)
        assert source._url == "https://example.test/feed.json"
        assert source._client.timeout.read == 5.0
