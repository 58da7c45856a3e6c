import asyncio
from typing import Optional

from ._http import HttpClient
from .types import HealthStatus


class HealthAPI:
    """Accessed via ``client.health``."""

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def ping(self, *, signal: Optional[asyncio.Event] = None) -> HealthStatus:
        """GET /v1/health/ping"""
        resp = await self._http.request("GET", "/v1/health/ping", signal=signal, retryable=True)
        data = resp.data or {}
        return HealthStatus(ok=bool(data.get("ok", False)), time=data.get("time"))
