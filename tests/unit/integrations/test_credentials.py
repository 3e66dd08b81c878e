# tests/unit/integrations/test_credentials.py
import asyncio
from datetime import timedelta

import pytest

from app.core.enums import Provider
from app.core.exceptions import CredentialError
from app.integrations.base import AccessToken
from app.integrations.credentials import CachingCredentialProvider, env_token_refresher


@pytest.mark.asyncio
async def test_tokens_are_cached_until_near_expiry(clock):
    issued = []

    async def refresher(tenant_id, provider):
        issued.append((tenant_id, provider))
        return AccessToken(token=f"tok-{len(issued)}", expires_at=clock() + timedelta(hours=1))

    provider = CachingCredentialProvider(refresher, refresh_margin=timedelta(minutes=5), clock=clock)

    first = await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)
    again = await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)
    assert first.token == again.token == "tok-1"

    clock.advance(minutes=56)
    renewed = await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)
    assert renewed.token == "tok-2"

    await provider.get_valid_token("acme", Provider.GOOGLE_BUSINESS)
    await provider.get_valid_token("globex", Provider.GOOGLE_MERCHANT)
    assert len(issued) == 4


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(clock):
    calls = []

    async def refresher(tenant_id, provider):
        calls.append(tenant_id)
        await asyncio.sleep(0.01)
        return AccessToken(token="shared")

    provider = CachingCredentialProvider(refresher, refresh_margin=timedelta(0), clock=clock)
    tokens = await asyncio.gather(*[provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT) for _ in range(5)])

    assert {t.token for t in tokens} == {"shared"}
    assert calls == ["acme"]


@pytest.mark.asyncio
async def test_refresh_failure_becomes_credential_error(clock):
    async def refresher(tenant_id, provider):
        raise RuntimeError("invalid_grant")

    provider = CachingCredentialProvider(refresher, refresh_margin=timedelta(0), clock=clock)

    with pytest.raises(CredentialError) as exc_info:
        await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)

    assert "invalid_grant" in str(exc_info.value)
    assert exc_info.value.error_code == "auth"


@pytest.mark.asyncio
async def test_invalidate_forces_refresh(clock):
    count = {"n": 0}

    async def refresher(tenant_id, provider):
        count["n"] += 1
        return AccessToken(token=f"tok-{count['n']}")

    provider = CachingCredentialProvider(refresher, refresh_margin=timedelta(0), clock=clock)
    await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)
    provider.invalidate("acme", Provider.GOOGLE_MERCHANT)

    assert (await provider.get_valid_token("acme", Provider.GOOGLE_MERCHANT)).token == "tok-2"


@pytest.mark.asyncio
async def test_env_token_refresher(monkeypatch):
    monkeypatch.setenv("GOOGLE_MERCHANT_ACCESS_TOKEN", "default-token")
    monkeypatch.setenv("GOOGLE_MERCHANT_ACCESS_TOKEN__ACME_CO", "acme-token")
    monkeypatch.delenv("GOOGLE_BUSINESS_ACCESS_TOKEN", raising=False)

    assert (await env_token_refresher("acme-co", Provider.GOOGLE_MERCHANT)).token == "acme-token"
    assert (await env_token_refresher("globex", Provider.GOOGLE_MERCHANT)).token == "default-token"
    with pytest.raises(CredentialError):
        await env_token_refresher("acme-co", Provider.GOOGLE_BUSINESS)
