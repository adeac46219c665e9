"""Tests for the Google Fit adapter — bucket normalization and HTTP handling."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone

import httpx
import pytest

from src.fitsync.adapters.google_fit import GoogleFitAdapter
from src.fitsync.base import NormalizedSample
from src.fitsync.errors import (
    MalformedResponse,
    ProviderRateLimited,
    ProviderTransientError,
    ProviderUnauthorized,
    ReauthorizationRequired,
)
from src.fitsync.tests.conftest import mock_http_client

DAY_21_MS = 1_771_632_000_000  # 2026-02-21T00:00:00Z


@pytest.fixture
def google_adapter() -> GoogleFitAdapter:
    """Google Fit adapter with test credentials and no real HTTP client."""
    return GoogleFitAdapter(client_id="test_client_id", client_secret="test_client_secret")


def _bucket(steps: object = None, weight: object = None, **start: object) -> dict:
    datasets: list[dict] = []
    if steps is not None:
        datasets.append({
            "dataSourceId": "derived:com.google.step_count.delta:com.google.android.gms:aggregated",
            "point": [{"value": [{"intVal": steps}]}],
        })
    if weight is not None:
        datasets.append({
            "dataSourceId": "derived:com.google.weight.summary:com.google.android.gms:aggregated",
            "point": [{"value": [{"fpVal": weight}]}],
        })
    return {**(start or {"startTimeMillis": str(DAY_21_MS)}), "dataset": datasets}


# ---------------------------------------------------------------------------
# Bucket normalization
# ---------------------------------------------------------------------------


class TestGoogleFitNormalization:
    def test_normalize_fixture_buckets(
        self, google_adapter: GoogleFitAdapter, google_fit_aggregate_raw: dict
    ) -> None:
        samples, skipped = google_adapter.normalize_buckets(google_fit_aggregate_raw["bucket"])
        assert skipped == 0
        assert samples == [
            NormalizedSample(date(2026, 2, 21), 8421, 180.56, "google_fit"),
            NormalizedSample(date(2026, 2, 22), 12034, None, "google_fit"),
        ]

    def test_bucket_without_step_dataset_has_zero_steps(
        self, google_adapter: GoogleFitAdapter
    ) -> None:
        sample = google_adapter.normalize_bucket(_bucket(weight=80.0))
        assert sample.steps == 0
        assert sample.weight_lbs == 176.37

    def test_weight_in_pounds_kept(self, google_adapter: GoogleFitAdapter) -> None:
        sample = google_adapter.normalize_bucket(_bucket(steps=100, weight=185.2))
        assert sample.weight_lbs == 185.2

    def test_last_fp_value_of_last_point_wins(self, google_adapter: GoogleFitAdapter) -> None:
        raw = _bucket(steps=100)
        raw["dataset"].append({
            "dataTypeName": "com.google.weight",
            "point": [
                {"value": [{"fpVal": 90.0}]},
                {"value": [{"fpVal": 81.0}, {"fpVal": 80.0}]},
            ],
        })
        assert google_adapter.normalize_bucket(raw).weight_lbs == 176.37

    def test_zero_first_point_falls_back_to_last(self, google_adapter: GoogleFitAdapter) -> None:
        raw = _bucket()
        raw["dataset"].append({
            "dataTypeName": "com.google.step_count.delta",
            "point": [{"value": [{"intVal": 0}]}, {"value": [{"intVal": 4321}]}],
        })
        assert google_adapter.normalize_bucket(raw).steps == 4321

    def test_numeric_string_steps_accepted(self, google_adapter: GoogleFitAdapter) -> None:
        assert google_adapter.normalize_bucket(_bucket(steps="7000")).steps == 7000

    def test_non_integer_steps_rejected(self, google_adapter: GoogleFitAdapter) -> None:
        with pytest.raises(MalformedResponse):
            google_adapter.normalize_bucket(_bucket(steps="lots"))

    def test_nanos_start_time_in_nanoseconds(self, google_adapter: GoogleFitAdapter) -> None:
        raw = _bucket(steps=1, startTimeMillisNanos=str(DAY_21_MS * 1_000_000))
        assert google_adapter.normalize_bucket(raw).date == date(2026, 2, 21)

    def test_nanos_field_holding_milliseconds(self, google_adapter: GoogleFitAdapter) -> None:
        raw = _bucket(steps=1, startTimeMillisNanos=DAY_21_MS)
        assert google_adapter.normalize_bucket(raw).date == date(2026, 2, 21)

    @pytest.mark.parametrize(
        "start",
        [{}, {"startTimeMillis": "soon"}, {"startTimeMillis": "0"}, {"startTimeMillis": "4102444800001"}],
    )
    def test_unusable_start_time_rejected(
        self, google_adapter: GoogleFitAdapter, start: dict
    ) -> None:
        with pytest.raises(MalformedResponse):
            google_adapter.normalize_bucket({**start, "dataset": []})

    def test_malformed_bucket_skipped_rest_kept(self, google_adapter: GoogleFitAdapter) -> None:
        samples, skipped = google_adapter.normalize_buckets(
            [_bucket(steps=500), {"startTimeMillis": "bad"}]
        )
        assert skipped == 1
        assert [s.steps for s in samples] == [500]

    @pytest.mark.parametrize(
        "weight_dataset",
        [
            {"dataTypeName": "com.google.weight", "point": [None]},
            {"dataTypeName": "com.google.weight", "point": ["oops"]},
            {"dataTypeName": "com.google.weight", "point": [{"value": [None]}]},
            {"dataTypeName": "com.google.weight", "point": [{"value": {"fpVal": 80.0}}]},
            {"dataTypeName": "com.google.weight", "point": {"value": [{"fpVal": 80.0}]}},
        ],
    )
    def test_mis_shaped_weight_dataset_skipped(
        self, google_adapter: GoogleFitAdapter, weight_dataset: dict
    ) -> None:
        bad = _bucket(steps=100)
        bad["dataset"].append(weight_dataset)

        samples, skipped = google_adapter.normalize_buckets([bad, _bucket(steps=500)])

        assert skipped == 1
        assert [s.steps for s in samples] == [500]

    @pytest.mark.parametrize(
        "points",
        [
            {"value": [{"intVal": 100}]},
            [None],
            [{"value": "100"}],
            [{"value": [7]}],
        ],
    )
    def test_mis_shaped_step_points_skipped(
        self, google_adapter: GoogleFitAdapter, points: object
    ) -> None:
        bad = _bucket()
        bad["dataset"].append({"dataTypeName": "com.google.step_count.delta", "point": points})

        samples, skipped = google_adapter.normalize_buckets([bad, _bucket(steps=500)])

        assert skipped == 1
        assert [s.steps for s in samples] == [500]


# ---------------------------------------------------------------------------
# HTTP (mocked transport)
# ---------------------------------------------------------------------------


class TestGoogleFitHTTP:
    @pytest.mark.asyncio
    async def test_aggregate_request_shape(self, google_fit_aggregate_raw: dict) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=google_fit_aggregate_raw)

        adapter = GoogleFitAdapter(http_client=mock_http_client(handler))
        start = datetime(2026, 2, 21, tzinfo=timezone.utc)
        end = datetime(2026, 2, 23, tzinfo=timezone.utc)
        samples, skipped = await adapter.fetch_samples("tok", start, end)

        assert len(samples) == 2 and skipped == 0
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url).endswith("/dataset:aggregate")
        assert request.headers["Authorization"] == "Bearer tok"
        body = json.loads(request.content)
        assert body["bucketByTime"] == {"durationMillis": 86_400_000}
        assert body["startTimeMillis"] == DAY_21_MS
        assert body["endTimeMillis"] == DAY_21_MS + 2 * 86_400_000
        assert {"dataTypeName": "com.google.weight"} in body["aggregateBy"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "body", "error"),
        [
            (401, "", ProviderUnauthorized),
            (429, "", ProviderRateLimited),
            (403, '{"error": {"status": "RATE_LIMIT_EXCEEDED"}}', ProviderRateLimited),
            (403, "forbidden", ProviderTransientError),
            (503, "unavailable", ProviderTransientError),
        ],
    )
    async def test_error_status_mapping(self, status: int, body: str, error: type) -> None:
        adapter = GoogleFitAdapter(
            http_client=mock_http_client(lambda request: httpx.Response(status, text=body))
        )
        with pytest.raises(error):
            await adapter.fetch_aggregate(
                "tok", datetime(2026, 2, 21, tzinfo=timezone.utc),
                datetime(2026, 2, 22, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        adapter = GoogleFitAdapter(http_client=mock_http_client(handler))
        with pytest.raises(ProviderTransientError, match="timed out"):
            await adapter.fetch_aggregate(
                "tok", datetime(2026, 2, 21, tzinfo=timezone.utc),
                datetime(2026, 2, 22, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self) -> None:
        adapter = GoogleFitAdapter(
            http_client=mock_http_client(lambda request: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(MalformedResponse):
            await adapter.fetch_aggregate(
                "tok", datetime(2026, 2, 21, tzinfo=timezone.utc),
                datetime(2026, 2, 22, tzinfo=timezone.utc),
            )

    @pytest.mark.asyncio
    async def test_refresh_token_exchange(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"access_token": "new", "expires_in": 3599, "scope": "a b"}
            )

        adapter = GoogleFitAdapter(
            client_id="cid", client_secret="secret", http_client=mock_http_client(handler)
        )
        credential = await adapter.refresh_token("refresh-1")

        assert credential.token == "new"
        assert credential.refresh_token is None
        assert credential.scope == ["a", "b"]
        form = seen[0].content.decode()
        assert "grant_type=refresh_token" in form
        assert "client_id=cid" in form

    @pytest.mark.asyncio
    async def test_invalid_grant_requires_reauthorization(self) -> None:
        adapter = GoogleFitAdapter(
            http_client=mock_http_client(
                lambda request: httpx.Response(400, json={"error": "invalid_grant"})
            )
        )
        with pytest.raises(ReauthorizationRequired):
            await adapter.refresh_token("revoked")
