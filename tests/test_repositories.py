import uuid

import httpx
import pytest

from scriptstream.client.http_client import HttpClient
from scriptstream.client.repositories import AuthApi, GenerationApi
from scriptstream.client.token_store import InMemoryTokenStore
from scriptstream.server.main import app
from scriptstream.server.store import backend
from scriptstream.shared.errors import ApiError
from scriptstream.shared.models import RetryPolicy


def _http(store=None) -> HttpClient:
    """An HttpClient wired straight into the dev server app, no sockets involved."""
    return HttpClient(
        store or InMemoryTokenStore(),
        base_url="http://scriptstream.test",
        retry_policy=RetryPolicy(max_retries=0),
        transport=httpx.ASGITransport(app=app),
    )


def _email() -> str:
    return f"{uuid.uuid4().hex[:8]}@example.com"


@pytest.mark.asyncio
async def test_login_stores_tokens_and_profile_uses_them():
    store = InMemoryTokenStore()
    email = _email()

    async with _http(store) as http:
        session = await AuthApi(http).login(email, "pw")
        profile = await AuthApi(http).profile()

    assert store.access_token == session.access_token
    assert store.refresh_token == session.refresh_token
    assert profile.email == email


@pytest.mark.asyncio
async def test_expired_access_token_is_refreshed_transparently():
    store = InMemoryTokenStore()

    async with _http(store) as http:
        await AuthApi(http).login(_email(), "pw")
        old_access = store.access_token
        backend.expire_access_tokens()

        profile = await AuthApi(http).profile()

    assert profile.id
    assert http.refresher.refresh_count == 1
    assert store.access_token != old_access


@pytest.mark.asyncio
async def test_generation_repository_round_trip():
    async with _http() as http:
        await AuthApi(http).login(_email(), "pw")
        api = GenerationApi(http)

        created = await api.create("meal prep", "instagram", niche="fitness", target_audience="students")
        fetched = await api.get(created.id)
        mine = await api.user_generations()
        recent = await api.recent(limit=1)

    assert created.status == "pending"
    assert fetched.id == created.id
    assert fetched.target_audience == "students"
    assert [g.id for g in mine] == [created.id]
    assert [g.id for g in recent] == [created.id]


@pytest.mark.asyncio
async def test_demo_needs_no_session():
    async with _http() as http:
        samples = await GenerationApi(http).demo("Trail Mix", "food", "hikers")

    assert len(samples) == 3
    assert all(s.is_demo for s in samples)


@pytest.mark.asyncio
async def test_missing_generation_raises_api_error():
    async with _http() as http:
        await AuthApi(http).login(_email(), "pw")
        with pytest.raises(ApiError) as exc_info:
            await GenerationApi(http).get("gen_nope")

    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "Not Found"


@pytest.mark.asyncio
async def test_logout_clears_tokens_and_revokes_session():
    store = InMemoryTokenStore()

    async with _http(store) as http:
        await AuthApi(http).login(_email(), "pw")
        refresh_token = store.refresh_token
        await AuthApi(http).logout()

    assert store.get() is None
    assert refresh_token not in backend.refresh_tokens
