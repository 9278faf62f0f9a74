import httpx
import pytest

from dayssupply.config import Settings
from dayssupply.core.auth import (
    IdentityProviderError,
    SupabaseAuthClient,
    bearer_token,
    mask_email,
)


def _settings() -> Settings:
    return Settings(supabase_url="https://proj.supabase.test/", supabase_anon_key="anon-key")


def _client(handler, config: Settings | None = None) -> SupabaseAuthClient:
    return SupabaseAuthClient(config or _settings(), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_resolve_returns_user_for_valid_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "user-1", "email": "pharm@clinic.example"})

    user = await _client(handler).resolve("jwt-token")

    assert user.id == "user-1"
    assert user.email == "pharm@clinic.example"
    assert str(seen[0].url) == "https://proj.supabase.test/auth/v1/user"
    assert seen[0].headers["apikey"] == "anon-key"
    assert seen[0].headers["Authorization"] == "Bearer jwt-token"


@pytest.mark.asyncio
async def test_rejected_token_resolves_to_none():
    user = await _client(lambda request: httpx.Response(401)).resolve("expired")
    assert user is None


@pytest.mark.asyncio
async def test_provider_outage_raises():
    with pytest.raises(IdentityProviderError):
        await _client(lambda request: httpx.Response(503)).resolve("token")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(IdentityProviderError):
        await _client(handler).resolve("token")


@pytest.mark.asyncio
async def test_unconfigured_provider_rejects_everything():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = _client(handler, Settings(supabase_url=None, supabase_anon_key=None))
    assert await client.resolve("token") is None


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("Basic abc", None),
        ("Bearer ", None),
        ("bearer abc", "abc"),
        ("Bearer  spaced ", "spaced"),
    ],
)
def test_bearer_token_parsing(header, expected):
    assert bearer_token(header) == expected


def test_mask_email_keeps_domain_only():
    assert mask_email("alice@example.com") == "*@example.com"
    assert mask_email("no-at-sign") == "*"
    assert mask_email(None) == "*"
