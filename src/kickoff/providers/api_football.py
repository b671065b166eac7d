from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from kickoff.config import Settings
from kickoff.domain import FINISHED_STATUSES
from kickoff.errors import ProviderError
from kickoff.providers.ratelimit import RateLimiter, retry_request

log = logging.getLogger(__name__)


@dataclass
class AFClient:
    base: str
    key: str
    timeout: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = None
    limiter: RateLimiter = field(default_factory=lambda: RateLimiter(max_calls=300, period_seconds=60))

    def _headers(self) -> Dict[str, str]:
        return {"x-apisports-key": self.key}

    async def _once(self, url: str, params: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport) as c:
            return await c.get(url, params=params)

    async def get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = self.base.rstrip("/") + path
        # Retry on 429, mild backoff
        for attempt in range(1, 6):
            await self.limiter.wait()
            try:
                r = await retry_request(lambda: self._once(url, params), label="api-football")
            except httpx.HTTPError as e:
                raise ProviderError(f"API-Football {path}: {e}") from e

            if r.status_code == 429:
                wait_s = min(60, 3 * attempt)
                log.warning("API-Football rate limited on %s, waiting %ss", path, wait_s)
                await asyncio.sleep(wait_s)
                continue

            if r.status_code >= 400:
                raise ProviderError(f"API-Football {path} returned HTTP {r.status_code}")

            try:
                data = r.json()
            except ValueError as e:
                raise ProviderError(f"API-Football {path} returned a non-JSON body") from e
            if not isinstance(data, dict):
                raise ProviderError(f"API-Football {path} returned {type(data).__name__}, expected an object")
            errors = data.get("errors")
            if errors:
                raise ProviderError(f"API-Football {path} errors: {errors}")
            return data

        raise ProviderError("API-Football: too many 429 retries")

    async def team_statistics(self, team_id: int, league_id: int, season: int) -> Optional[Dict[str, Any]]:
        data = await self.get("/teams/statistics", {"team": team_id, "league": league_id, "season": season})
        resp = data.get("response")
        return resp or None

    async def team_details(self, team_id: int) -> Optional[Dict[str, Any]]:
        data = await self.get("/teams", {"id": team_id})
        resp = data.get("response") or []
        return resp[0] if resp else None

    async def finished_fixtures(self, league_id: int, season: int) -> List[Dict[str, Any]]:
        data = await self.get(
            "/fixtures",
            {"league": league_id, "season": season, "status": "-".join(FINISHED_STATUSES)},
        )
        return data.get("response") or []


def client_from_settings(s: Settings) -> Optional[AFClient]:
    """None when no key is configured; on-demand refresh is then skipped."""
    if not s.api_football_key:
        return None
    return AFClient(base=s.api_football_base, key=s.api_football_key)
