"""Fitbit Web API adapter.

API base: https://api.fitbit.com/1/user/-

Endpoints used:
    /activities/steps/date/{start}/{end}.json   — daily step time series
    /body/log/weight/date/{start}/{end}.json    — weight log entries
    POST https://api.fitbit.com/oauth2/token    — refresh_token grant (Basic auth)

Environment variables:
    FITBIT_CLIENT_ID      — OAuth2 client ID
    FITBIT_CLIENT_SECRET  — OAuth2 client secret

Fitbit has no aggregate endpoint, so ``fetch_aggregate`` issues the two
time-series requests concurrently and folds them into one raw bucket per day
shaped like ``{"date": "YYYY-MM-DD", "steps": "1234", "weight": [...]}``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import date, datetime, timedelta

import httpx

from src.fitsync.base import (
    AccessCredential,
    FitnessProviderAdapter,
    NormalizedSample,
    utc_date,
)
from src.fitsync.errors import MalformedResponse
from src.fitsync.units import kg_to_lbs, round_lbs

logger = logging.getLogger("fitsync.adapters.fitbit")

_FITBIT_API_BASE = "https://api.fitbit.com/1/user/-"
_FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"

# Units under which Fitbit reports weight in kilograms.
_KG_UNITS = ("kg", "en_GB")


class FitbitAdapter(FitnessProviderAdapter):
    """Fitbit time-series adapter.

    Requests are sent with ``Accept-Language: en_US`` so weight comes back in
    pounds.  Entries that still declare a metric unit are converted.
    """

    SOURCE_ID = "fitbit"
    DISPLAY_NAME = "Fitbit"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        api_base: str | None = None,
        token_url: str | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout_seconds=timeout_seconds)
        self._client_id = client_id or os.environ.get("FITBIT_CLIENT_ID", "")
        self._client_secret = client_secret or os.environ.get("FITBIT_CLIENT_SECRET", "")
        self._api_base = (api_base or _FITBIT_API_BASE).rstrip("/")
        self._token_url = token_url or _FITBIT_TOKEN_URL

    # ------------------------------------------------------------------
    # FitnessProviderAdapter interface
    # ------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> AccessCredential:
        logger.info("Fitbit: refreshing access token")
        return await self._exchange_refresh_token(
            self._token_url,
            refresh_token,
            auth=(self._client_id, self._client_secret),
        )

    async def fetch_aggregate(
        self, token: str, start: datetime, end: datetime
    ) -> list[dict]:
        first = utc_date(start)
        # ``end`` is exclusive; a range ending at midnight stops the day before.
        last = max(first, utc_date(end - timedelta(microseconds=1)))
        span = f"{first.isoformat()}/{last.isoformat()}.json"

        steps_payload, weight_payload = await asyncio.gather(
            self._get(f"{self._api_base}/activities/steps/date/{span}", token),
            self._get(f"{self._api_base}/body/log/weight/date/{span}", token),
        )
        return self._merge(steps_payload, weight_payload)

    def normalize_bucket(self, raw: dict) -> NormalizedSample:
        if not isinstance(raw, dict):
            raise MalformedResponse("bucket is not an object", source=self.SOURCE_ID)
        try:
            day = date.fromisoformat(str(raw.get("date", ""))[:10])
        except ValueError as exc:
            raise MalformedResponse(
                f"bucket has an unusable date {raw.get('date')!r}", source=self.SOURCE_ID
            ) from exc

        steps = 0
        if raw.get("steps") not in (None, ""):
            parsed = self._safe_int(raw["steps"])
            if parsed is None:
                raise MalformedResponse(
                    f"bucket {day} has a non-integer step value {raw['steps']!r}",
                    source=self.SOURCE_ID,
                )
            steps = max(parsed, 0)

        return NormalizedSample(
            date=day,
            steps=steps,
            weight_lbs=self._latest_weight(raw.get("weight") or []),
            source=self.SOURCE_ID,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get(self, url: str, access_token: str) -> dict:
        """Authenticated GET.  A 404 means "nothing logged" and yields ``{}``."""
        response = await self._send(
            "GET",
            url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept-Language": "en_US",
            },
        )
        if response.status_code == 404:
            return {}
        self._check_response(response)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise MalformedResponse("Fitbit response is not an object", source=self.SOURCE_ID)
        return payload

    @staticmethod
    def _merge(steps_payload: dict, weight_payload: dict) -> list[dict]:
        buckets: dict[str, dict] = {}

        for entry in steps_payload.get("activities-steps") or []:
            if not isinstance(entry, dict) or not entry.get("dateTime"):
                continue
            key = str(entry["dateTime"])[:10]
            buckets.setdefault(key, {"date": key, "weight": []})["steps"] = entry.get("value")

        for entry in weight_payload.get("weight") or []:
            if not isinstance(entry, dict) or not entry.get("date"):
                continue
            key = str(entry["date"])[:10]
            buckets.setdefault(key, {"date": key, "weight": []})["weight"].append(entry)

        return [buckets[key] for key in sorted(buckets)]

    def _latest_weight(self, entries: list) -> float | None:
        """Latest entry of the day (by ``time``) wins."""
        usable = [
            e for e in entries
            if isinstance(e, dict) and (e.get("weight") is not None or e.get("value") is not None)
        ]
        if not usable:
            return None
        latest = max(usable, key=lambda e: str(e.get("time") or "00:00:00"))
        raw_value = latest.get("weight")
        if raw_value is None:
            raw_value = latest.get("value")
        value = self._safe_float(raw_value)
        if value is None or value <= 0:
            return None
        if latest.get("unit") in _KG_UNITS:
            return kg_to_lbs(value)
        return round_lbs(value)
