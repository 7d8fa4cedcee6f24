"""
MODULE OVERVIEW:
Thin typed wrappers over HttpClient for the auth and generation endpoints.

WHAT IS HAPPENING HERE:
These classes only map endpoints to pydantic models. Retries, refresh and error
typing all happen inside HttpClient, so a caller here gets either a model or an
exception from shared.errors.
"""
from typing import Any

from loguru import logger

from scriptstream.client.http_client import HttpClient
from scriptstream.shared.errors import ApiError, NetworkError
from scriptstream.shared.models import AuthSession, AuthUser, Generation, TokenPair


def _unwrap(payload: Any) -> Any:
    # The backend answers either with the bare object or with {success, data}
    if isinstance(payload, dict) and "data" in payload and "success" in payload:
        return payload["data"]
    return payload


class AuthApi:
    def __init__(self, http: HttpClient):
        self.http = http

    async def login(self, email: str, password: str) -> AuthSession:
        payload = await self.http.post("/auth/login", json={"email": email, "password": password})
        session = AuthSession.model_validate(_unwrap(payload))
        self.http.token_store.set(TokenPair(access_token=session.access_token, refresh_token=session.refresh_token))
        logger.info(f"event=login email={email}")
        return session

    async def logout(self) -> None:
        """Always clears local tokens, even when the server call fails."""
        refresh_token = self.http.token_store.refresh_token
        try:
            if refresh_token:
                await self.http.post("/auth/logout", json={"refresh_token": refresh_token})
        except (ApiError, NetworkError) as e:
            logger.warning(f"event=logout_remote_failed reason='{e}'")
        finally:
            self.http.token_store.clear()

    async def profile(self) -> AuthUser:
        return AuthUser.model_validate(_unwrap(await self.http.get("/auth/profile")))


class GenerationApi:
    def __init__(self, http: HttpClient):
        self.http = http

    async def create(
        self,
        topic: str,
        platform: str,
        niche: str | None = None,
        target_audience: str | None = None,
    ) -> Generation:
        body = {"topic": topic, "platform": platform}
        if niche:
            body["niche"] = niche
        if target_audience:
            body["targetAudience"] = target_audience
        return Generation.model_validate(_unwrap(await self.http.post("/generation", json=body)))

    async def user_generations(self, limit: int | None = None) -> list[Generation]:
        params = {"limit": limit} if limit else None
        items = _unwrap(await self.http.get("/generation", params=params))
        return [Generation.model_validate(item) for item in items]

    async def recent(self, limit: int = 10) -> list[Generation]:
        items = _unwrap(await self.http.get("/generation/recent", params={"limit": limit}))
        return [Generation.model_validate(item) for item in items]

    async def get(self, generation_id: str) -> Generation:
        return Generation.model_validate(_unwrap(await self.http.get(f"/generation/{generation_id}")))

    async def demo(self, product_name: str, niche: str, target_audience: str) -> list[Generation]:
        body = {"productName": product_name, "niche": niche, "targetAudience": target_audience}
        items = _unwrap(await self.http.post("/generation/demo", json=body))
        return [Generation.model_validate(item) for item in items]
