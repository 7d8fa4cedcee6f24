"""
MODULE OVERVIEW:
Single-flight access-token refresh.

WHAT IS HAPPENING HERE:
When several requests hit a 401 at the same moment they all call `refresh()`.
The first call starts one exchange as an asyncio Task; every later caller
awaits that same Task until it finishes. The Task is shielded, so a caller
being cancelled does not abort the exchange for everyone else.

The exchange is a bare httpx call with its own timeout. It never goes through
HttpClient, so a 401 from the refresh endpoint cannot trigger another refresh.
"""
import asyncio

import httpx
from loguru import logger
from pydantic import ValidationError

from scriptstream.client.token_store import TokenStore
from scriptstream.shared.config import settings
from scriptstream.shared.models import TokenPair


class TokenRefreshCoordinator:
    def __init__(
        self,
        token_store: TokenStore,
        base_url: str | None = None,
        refresh_endpoint: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token_store = token_store
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.refresh_endpoint = refresh_endpoint or settings.REFRESH_ENDPOINT
        self.timeout_s = timeout_s if timeout_s is not None else settings.REFRESH_TIMEOUT_S
        self._transport = transport
        self._inflight: asyncio.Task | None = None
        self.refresh_count = 0

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None

    async def refresh(self) -> str | None:
        """Returns the new access token, or None if the session could not be renewed."""
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run())
        else:
            logger.debug("event=refresh_join reason=already_in_flight")
        return await asyncio.shield(self._inflight)

    async def _run(self) -> str | None:
        try:
            return await self._exchange()
        finally:
            self._inflight = None

    async def _exchange(self) -> str | None:
        pair = self.token_store.get()
        if pair is None or not pair.refresh_token:
            logger.warning("event=refresh_skipped reason=no_refresh_token")
            self.token_store.clear()
            return None

        self.refresh_count += 1
        logger.info(f"event=refresh_start endpoint={self.refresh_endpoint}")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.refresh_endpoint,
                    json={"refresh_token": pair.refresh_token},
                    headers={"Content-Type": "application/json", "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"event=refresh_failed reason='transport: {e}'")
            self.token_store.clear()
            return None

        if not response.is_success:
            logger.error(f"event=refresh_failed status={response.status_code}")
            self.token_store.clear()
            return None

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"event=refresh_failed reason='unparsable body: {e}'")
            self.token_store.clear()
            return None

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            logger.error("event=refresh_failed reason=missing_access_token")
            self.token_store.clear()
            return None

        # Servers that do not rotate refresh tokens omit the field
        try:
            new_pair = TokenPair(
                access_token=access_token,
                refresh_token=payload.get("refresh_token") or pair.refresh_token,
            )
        except ValidationError as e:
            logger.error(f"event=refresh_failed reason='malformed token pair: {e.error_count()} errors'")
            self.token_store.clear()
            return None
        self.token_store.set(new_pair)
        logger.info("event=refresh_succeeded")
        return access_token
