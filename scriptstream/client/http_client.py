"""
MODULE OVERVIEW:
The authenticated HTTP client.

WHAT IS HAPPENING HERE:
One logical call may become several attempts on the wire:
  1. Transport failures and retryable statuses (408, 429, 5xx) are retried with
     exponential backoff until the RetryPolicy budget is spent.
  2. A 401 on the original attempt asks the TokenRefreshCoordinator for a new
     token and replays the request exactly once. The replay is flagged, so a
     second 401 is raised instead of looping, and it is never backed off:
     whatever it returns is final.
Callers only ever see the final result or a typed error from shared.errors.
"""
import asyncio
import json
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger
from pydantic import ValidationError

from scriptstream.client.token_refresh import TokenRefreshCoordinator
from scriptstream.client.token_store import TokenStore
from scriptstream.shared.config import settings
from scriptstream.shared.errors import ApiError, NetworkError, RequestTimeoutError, ResponseParseError
from scriptstream.shared.models import ApiErrorBody, RetryPolicy

UnauthorizedCallback = Callable[[ApiError], Awaitable[None] | None]


@dataclass(frozen=True)
class RequestAttempt:
    endpoint: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] | None = None
    attempt_index: int = 0

    def next(self) -> "RequestAttempt":
        return replace(self, attempt_index=self.attempt_index + 1)


class HttpClient:
    def __init__(
        self,
        token_store: TokenStore,
        refresher: TokenRefreshCoordinator | None = None,
        base_url: str | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_s: float | None = None,
        on_unauthorized: UnauthorizedCallback | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token_store = token_store
        self.refresher = refresher or TokenRefreshCoordinator(
            token_store, base_url=self.base_url, transport=transport
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.timeout_s = timeout_s if timeout_s is not None else settings.REQUEST_TIMEOUT_S
        self.on_unauthorized = on_unauthorized
        self._sleep = sleep
        # The deadline is enforced per attempt by wait_for, not by httpx
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=None, transport=transport)
        self.attempts_made = 0

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def get(self, endpoint: str, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request(endpoint, method="GET", params=params, headers=headers)

    async def post(self, endpoint: str, json: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request(endpoint, method="POST", json=json, headers=headers)

    async def put(self, endpoint: str, json: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self.request(endpoint, method="PUT", json=json, headers=headers)

    async def delete(self, endpoint: str, headers: dict[str, str] | None = None) -> Any:
        return await self.request(endpoint, method="DELETE", headers=headers)

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        json: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        attempt = RequestAttempt(
            endpoint=endpoint,
            method=method.upper(),
            headers=dict(headers or {}),
            body=json,
            params=params,
        )
        return await self._send(attempt, after_refresh=False)

    def _is_refresh_endpoint(self, endpoint: str) -> bool:
        return endpoint.split("?", 1)[0].rstrip("/") == self.refresher.refresh_endpoint.rstrip("/")

    def _build_headers(self, attempt: RequestAttempt) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Cache-Control": "no-cache, no-store, must-revalidate",
        }
        # Read on every attempt so a replay after refresh carries the new token
        access_token = self.token_store.access_token
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        headers.update(attempt.headers)
        return headers

    async def _dispatch(self, attempt: RequestAttempt) -> httpx.Response:
        self.attempts_made += 1
        try:
            return await asyncio.wait_for(
                self.client.request(
                    attempt.method,
                    attempt.endpoint,
                    json=attempt.body,
                    params=attempt.params,
                    headers=self._build_headers(attempt),
                ),
                timeout=self.timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(attempt.endpoint, self.timeout_s) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{attempt.method} {attempt.endpoint} failed: {e}", attempt.endpoint) from e

    async def _backoff(self, attempt: RequestAttempt, reason: str) -> None:
        delay = self.retry_policy.delay_for(attempt.attempt_index)
        logger.warning(
            f"method={attempt.method} endpoint={attempt.endpoint} event=retry "
            f"attempt={attempt.attempt_index + 1}/{self.retry_policy.max_retries} delay={delay:.2f}s reason='{reason}'"
        )
        await self._sleep(delay)

    async def _send(self, attempt: RequestAttempt, after_refresh: bool) -> Any:
        policy = self.retry_policy
        while True:
            try:
                response = await self._dispatch(attempt)
            except NetworkError as e:
                if not after_refresh and attempt.attempt_index < policy.max_retries:
                    await self._backoff(attempt, str(e))
                    attempt = attempt.next()
                    continue
                logger.error(f"method={attempt.method} endpoint={attempt.endpoint} event=network_error reason='{e}'")
                raise

            status = response.status_code
            if status == 401 and not after_refresh and not self._is_refresh_endpoint(attempt.endpoint):
                return await self._handle_unauthorized(attempt, response)

            if status in policy.retryable_statuses and not after_refresh and attempt.attempt_index < policy.max_retries:
                await self._backoff(attempt, f"HTTP {status}")
                attempt = attempt.next()
                continue

            return self._parse(attempt, response)

    async def _handle_unauthorized(self, attempt: RequestAttempt, response: httpx.Response) -> Any:
        error = self._build_error(response)
        logger.info(f"method={attempt.method} endpoint={attempt.endpoint} event=unauthorized action=refresh")
        new_token = await self.refresher.refresh()
        if new_token:
            # The replay goes out exactly once: no second refresh and no backoff of its own
            return await self._send(attempt, after_refresh=True)

        logger.warning(f"method={attempt.method} endpoint={attempt.endpoint} event=refresh_rejected")
        if self.on_unauthorized is not None:
            try:
                result = self.on_unauthorized(error)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"method={attempt.method} endpoint={attempt.endpoint} event=callback_error reason='{e}'")
        raise error

    def _parse(self, attempt: RequestAttempt, response: httpx.Response) -> Any:
        if not response.is_success:
            raise self._build_error(response)

        if response.status_code == 204 or not response.content:
            return None

        if "json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ResponseParseError(attempt.endpoint, response.status_code, str(e)) from e
        return response.text

    @staticmethod
    def _build_error(response: httpx.Response) -> ApiError:
        status = response.status_code
        code = response.reason_phrase or "Error"
        message = response.text or f"HTTP error! status: {status}"

        if "json" in response.headers.get("content-type", ""):
            try:
                body = ApiErrorBody.model_validate(response.json())
            except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
                body = None
            if body is not None:
                code = body.error or code
                if isinstance(body.message, list):
                    message = "; ".join(body.message)
                elif body.message:
                    message = body.message

        return ApiError(status, code, message)
