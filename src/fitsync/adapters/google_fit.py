"""Google Fit REST API adapter.

API base: https://www.googleapis.com/fitness/v1/users/me

Endpoints used:
    POST /dataset:aggregate   — daily buckets of step_count.delta and weight
    POST oauth2.googleapis.com/token — refresh_token grant

Environment variables:
    GOOGLE_CLIENT_ID      — OAuth2 client ID
    GOOGLE_CLIENT_SECRET  — OAuth2 client secret
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timezone

import httpx

from src.fitsync.base import AccessCredential, FitnessProviderAdapter, NormalizedSample
from src.fitsync.errors import MalformedResponse
from src.fitsync.units import DEFAULT_KG_THRESHOLD, normalize_provider_weight

logger = logging.getLogger("fitsync.adapters.google_fit")

_GOOGLE_FIT_API_BASE = "https://www.googleapis.com/fitness/v1/users/me"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

_STEP_TYPES = ("com.google.step_count.delta", "com.google.step_count.summary")
_WEIGHT_TYPE = "com.google.weight"

# Year 2200 in epoch milliseconds; larger "nanos" values are real nanoseconds.
_NANOS_CUTOFF = 7_258_118_400_000
# Year 2100 in epoch milliseconds; later bucket starts are rejected.
_MAX_BUCKET_MS = 4_102_444_800_000

DAY_MS = 86_400_000


class GoogleFitAdapter(FitnessProviderAdapter):
    """Google Fit aggregate-query adapter.

    One POST per range returns one bucket per day.  Steps arrive as integer
    ``intVal`` points, weight as kilogram ``fpVal`` points, although some
    third-party sources write pounds, hence the magnitude heuristic.
    """

    SOURCE_ID = "google_fit"
    DISPLAY_NAME = "Google Fit"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        api_base: str | None = None,
        token_url: str | None = None,
        bucket_duration_ms: int = DAY_MS,
        kg_threshold: float = DEFAULT_KG_THRESHOLD,
    ) -> None:
        super().__init__(http_client=http_client, timeout_seconds=timeout_seconds)
        self._client_id = client_id or os.environ.get("GOOGLE_CLIENT_ID", "")
        self._client_secret = client_secret or os.environ.get("GOOGLE_CLIENT_SECRET", "")
        self._api_base = (api_base or _GOOGLE_FIT_API_BASE).rstrip("/")
        self._token_url = token_url or _GOOGLE_TOKEN_URL
        self._bucket_ms = bucket_duration_ms
        self._kg_threshold = kg_threshold

    # ------------------------------------------------------------------
    # FitnessProviderAdapter interface
    # ------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> AccessCredential:
        logger.info("Google Fit: refreshing access token")
        return await self._exchange_refresh_token(
            self._token_url,
            refresh_token,
            data={"client_id": self._client_id, "client_secret": self._client_secret},
        )

    async def fetch_aggregate(
        self, token: str, start: datetime, end: datetime
    ) -> list[dict]:
        body = {
            "aggregateBy": [
                {"dataTypeName": "com.google.step_count.delta"},
                {"dataTypeName": _WEIGHT_TYPE},
            ],
            "bucketByTime": {"durationMillis": self._bucket_ms},
            "startTimeMillis": _epoch_ms(start),
            "endTimeMillis": _epoch_ms(end),
        }
        response = await self._send(
            "POST",
            f"{self._api_base}/dataset:aggregate",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        self._check_response(response)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise MalformedResponse("Google Fit aggregate response is not an object",
                                    source=self.SOURCE_ID)
        buckets = payload.get("bucket") or []
        if not isinstance(buckets, list):
            raise MalformedResponse("Google Fit 'bucket' is not a list", source=self.SOURCE_ID)
        logger.debug("Google Fit: %d buckets for %s..%s", len(buckets), start, end)
        return buckets

    def normalize_bucket(self, raw: dict) -> NormalizedSample:
        if not isinstance(raw, dict):
            raise MalformedResponse("bucket is not an object", source=self.SOURCE_ID)
        day = self._bucket_date(raw)

        datasets = raw.get("dataset")
        if not isinstance(datasets, list):
            raise MalformedResponse(f"bucket {day} has no dataset", source=self.SOURCE_ID)

        steps = self._extract_steps(datasets, day)
        weight = self._extract_weight(datasets, day)

        return NormalizedSample(date=day, steps=steps, weight_lbs=weight, source=self.SOURCE_ID)

    # ------------------------------------------------------------------
    # Bucket parsing
    # ------------------------------------------------------------------

    def _bucket_date(self, raw: dict) -> date:
        """UTC calendar day of the bucket start."""
        millis: int | None = None
        if raw.get("startTimeMillis") is not None:
            millis = self._safe_int(raw["startTimeMillis"])
        elif raw.get("startTimeMillisNanos") is not None:
            value = self._safe_int(raw["startTimeMillisNanos"])
            if value is not None:
                millis = value // 1_000_000 if value > _NANOS_CUTOFF else value

        if millis is None or millis <= 0 or millis > _MAX_BUCKET_MS:
            raise MalformedResponse(
                f"bucket has an unusable start time: {raw.get('startTimeMillis')!r} / "
                f"{raw.get('startTimeMillisNanos')!r}",
                source=self.SOURCE_ID,
            )
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date()

    def _extract_steps(self, datasets: list, day: date) -> int:
        dataset = next((d for d in datasets if _is_step_dataset(d)), None)
        if dataset is None:
            return 0
        points = self._list_field(dataset, "point", day)
        if not points:
            return 0

        steps = self._first_int_val(points[0], day)
        if not steps and len(points) > 1:
            steps = self._first_int_val(points[-1], day)
        if steps is None:
            return 0
        if isinstance(steps, bool) or not isinstance(steps, int):
            coerced = self._safe_int(steps)
            if coerced is None or str(coerced) != str(steps).strip():
                raise MalformedResponse(
                    f"bucket {day} has a non-integer step value {steps!r}",
                    source=self.SOURCE_ID,
                )
            steps = coerced
        return max(steps, 0)

    def _extract_weight(self, datasets: list, day: date) -> float | None:
        dataset = next((d for d in datasets if _is_weight_dataset(d)), None)
        if dataset is None:
            return None
        points = self._list_field(dataset, "point", day)
        if not points:
            return None
        values = self._list_field(self._object(points[-1], day), "value", day)
        if not values:
            return None
        fp = self._object(values[-1], day).get("fpVal")
        if isinstance(fp, bool) or not isinstance(fp, (int, float)) or fp <= 0:
            return None
        return normalize_provider_weight(fp, self._kg_threshold)

    def _first_int_val(self, point: object, day: date) -> object:
        values = self._list_field(self._object(point, day), "value", day)
        if not values:
            return None
        return self._object(values[0], day).get("intVal")

    def _object(self, value: object, day: date) -> dict:
        if not isinstance(value, dict):
            raise MalformedResponse(
                f"bucket {day} has a {type(value).__name__} where an object was expected",
                source=self.SOURCE_ID,
            )
        return value

    def _list_field(self, obj: dict, key: str, day: date) -> list:
        value = obj.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise MalformedResponse(f"bucket {day} has a non-list {key!r}", source=self.SOURCE_ID)
        return value


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _matches(value: object, names: tuple[str, ...]) -> bool:
    return isinstance(value, str) and any(name in value for name in names)


def _is_step_dataset(dataset: dict) -> bool:
    if not isinstance(dataset, dict):
        return False
    if dataset.get("dataTypeName") in _STEP_TYPES:
        return True
    if _matches(dataset.get("dataSourceId"), ("step_count.delta", "step_count.summary")):
        return True
    points = dataset.get("point") or []
    return (
        isinstance(points, list)
        and bool(points)
        and isinstance(points[0], dict)
        and points[0].get("dataTypeName") in _STEP_TYPES
    )


def _is_weight_dataset(dataset: dict) -> bool:
    if not isinstance(dataset, dict):
        return False
    return dataset.get("dataTypeName") == _WEIGHT_TYPE or _matches(
        dataset.get("dataSourceId"), ("weight",)
    )
