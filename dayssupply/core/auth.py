"""Bearer-token identity resolution against Supabase Auth."""
# ruff: noqa: UP007

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from fastapi import Depends, Header, HTTPException

from dayssupply.config import Settings, settings
from dayssupply.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class IdentityProviderError(RuntimeError):
    """Raised when the identity provider cannot be reached or answers with a server error."""

    def __init__(self, message: str, code: str = "503_IDENTITY_UNAVAILABLE") -> None:
        super().__init__(message)
        self.code = code


class IdentityProvider(Protocol):
    async def resolve(self, token: str) -> AuthenticatedUser | None:
        """Return the user behind ``token``, or None when the token is not accepted."""
        ...


class SupabaseAuthClient(IdentityProvider):
    """Looks a session token up via ``GET {SUPABASE_URL}/auth/v1/user``."""

    def __init__(
        self, config: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._settings = config or settings
        self._transport = transport

    async def resolve(self, token: str) -> AuthenticatedUser | None:
        base_url = self._settings.supabase_url
        anon_key = self._settings.supabase_anon_key
        if not base_url or not anon_key:
            logger.warning("auth.supabase.not_configured")
            return None

        headers = {"apikey": anon_key, "Authorization": f"Bearer {token}"}
        async with httpx.AsyncClient(
            timeout=self._settings.supabase_timeout_seconds, transport=self._transport
        ) as client:
            try:
                response = await client.get(f"{base_url.rstrip('/')}/auth/v1/user", headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("auth.supabase.request_failed", extra={"error": str(exc)})
                metrics.increment("auth.supabase.unavailable")
                raise IdentityProviderError("Identity provider unavailable") from exc

        if response.status_code in (401, 403, 404):
            logger.info("auth.supabase.token_rejected", extra={"status_code": response.status_code})
            return None
        if response.status_code >= 400:
            logger.warning(
                "auth.supabase.error_status", extra={"status_code": response.status_code}
            )
            metrics.increment("auth.supabase.unavailable")
            raise IdentityProviderError(f"Identity provider returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityProviderError("Identity provider returned invalid JSON") from exc
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            logger.warning("auth.supabase.user_missing_id")
            return None
        email = payload.get("email")
        return AuthenticatedUser(id=user_id, email=email if isinstance(email, str) else None)


_PROVIDER_INSTANCE: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    """Singleton accessor used by API routes."""
    global _PROVIDER_INSTANCE  # noqa: PLW0603
    if _PROVIDER_INSTANCE is None:
        _PROVIDER_INSTANCE = SupabaseAuthClient()
    return _PROVIDER_INSTANCE


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


async def require_user(
    authorization: str | None = Header(default=None),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> AuthenticatedUser:
    token = bearer_token(authorization)
    if token is None:
        logger.warning("auth.session.missing_header")
        raise HTTPException(status_code=401, detail="Missing or invalid authorization")
    try:
        user = await provider.resolve(token)
    except IdentityProviderError as exc:
        raise HTTPException(
            status_code=503, detail="Authentication temporarily unavailable"
        ) from exc
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user


def mask_email(email: str | None) -> str:
    if not email:
        return "*"
    domain = email.split("@")[-1] if "@" in email else ""
    return f"*@{domain}" if domain else "*"
