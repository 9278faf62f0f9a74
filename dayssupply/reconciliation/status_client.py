"""Async client for ``GET /api/pro-status``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/pro-status"


@dataclass(frozen=True)
class ProStatus:
    is_entitled: bool
    status: str
    reason: str | None = None
    days_remaining: int | None = None

    @classmethod
    def unknown(cls, reason: str | None = None) -> ProStatus:
        return cls(is_entitled=False, status="unknown", reason=reason)


class ProStatusClient:
    """Query entitlement for one bearer token; every failure reads as not entitled."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    async def fetch(self) -> ProStatus:
        headers = {"Accept": "application/json", "Cache-Control": "no-store"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(f"{self._base_url}{STATUS_PATH}", headers=headers)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("reconciliation.status.fetch_failed", extra={"error": str(exc)})
            return ProStatus.unknown("request_failed")
        return _parse(payload)


def _parse(payload: Any) -> ProStatus:
    if not isinstance(payload, dict):
        return ProStatus.unknown("invalid_body")
    status = payload.get("status")
    days = payload.get("days_remaining")
    return ProStatus(
        is_entitled=payload.get("is_entitled") is True,
        status=status if isinstance(status, str) and status else "unknown",
        reason=payload.get("reason") if isinstance(payload.get("reason"), str) else None,
        days_remaining=days if isinstance(days, int) and not isinstance(days, bool) else None,
    )
