"""
MODULE OVERVIEW:
The real-time session used to watch one generation job at a time.

WHAT IS HAPPENING HERE:
We use the `websockets` library. Three async loops share one socket:
  * the runner, which connects, reconnects with exponential backoff and gives up
    into FAILED once the budget is spent,
  * the receive loop, which decodes frames and applies them strictly in order,
  * the heartbeat, which pings every interval and drops the socket when the
    previous ping was never answered.
Inbound handlers never raise. A malformed frame is logged, counted and skipped so
one bad message cannot end a long-lived session.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import websockets
from loguru import logger
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException
from websockets.protocol import State

from scriptstream.client.base_client import BaseConnectionClient
from scriptstream.client.connection_state import ConnectionStateMachine
from scriptstream.client.content_assembler import ContentAssembler
from scriptstream.client.token_refresh import TokenRefreshCoordinator
from scriptstream.client.token_store import TokenStore
from scriptstream.shared import events
from scriptstream.shared.client_utils import is_valid_token_format, make_client_id, utc_now_iso
from scriptstream.shared.config import settings
from scriptstream.shared.errors import CONNECTION_FAILED_MESSAGE, MalformedPayloadError, SocketConnectionError
from scriptstream.shared.models import ConnectionState, ContentChunk, GenerationSnapshot, StageInfo

S = ConnectionState


class GenerationSocketSession(BaseConnectionClient):
    protocol_name: str = "websocket"

    def __init__(
        self,
        token_store: TokenStore,
        server_base_url: str | None = None,
        assembler: ContentAssembler | None = None,
        refresher: TokenRefreshCoordinator | None = None,
        namespace: str | None = None,
        heartbeat_interval_s: float | None = None,
        high_latency_ms: float | None = None,
        reconnect_base_delay_ms: int | None = None,
        max_retries: int | None = None,
        connect_timeout_s: float | None = None,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        client_id: str | None = None,
    ):
        super().__init__(client_id or make_client_id(), server_base_url or settings.API_BASE_URL)
        self.token_store = token_store
        self.refresher = refresher
        self.assembler = assembler or ContentAssembler()
        namespace = namespace or settings.WS_NAMESPACE
        self.ws_url = f"{self.server_base_url.replace('http://', 'ws://').replace('https://', 'wss://')}{namespace}"

        self.heartbeat_interval_s = heartbeat_interval_s if heartbeat_interval_s is not None else settings.WS_HEARTBEAT_INTERVAL_S
        self.high_latency_ms = high_latency_ms if high_latency_ms is not None else settings.WS_HIGH_LATENCY_MS
        self.connect_timeout_s = connect_timeout_s if connect_timeout_s is not None else settings.WS_CONNECT_TIMEOUT_S
        self.machine = ConnectionStateMachine(
            max_retries=max_retries if max_retries is not None else settings.WS_MAX_RECONNECT_ATTEMPTS,
            base_delay_ms=reconnect_base_delay_ms or settings.WS_RECONNECT_BASE_DELAY_MS,
            client_id=self.client_id,
        )
        self._connect = connect
        self._sleep = sleep

        self.current_stage: StageInfo | None = None
        self.generation_id: str | None = None
        self.fatal_error: SocketConnectionError | None = None
        self.connected = asyncio.Event()
        self.connection_id: str | None = None

        self._generation_active = False
        self._ws = None
        self._runner: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._closing = False
        self._close_reason: str | None = None
        self._pending_ping: float | None = None

        self._handlers = {
            events.CONNECTION_STATUS: self._on_connection_status,
            events.GENERATION_STARTED: self._on_generation_started,
            events.GENERATION_STAGE: self._on_stage,
            events.CONTENT_CHUNK: self._on_chunk,
            events.GENERATION_COMPLETED: self._on_completed,
            events.GENERATION_ERROR: self._on_generation_error,
            events.PONG: self._on_pong,
        }

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def is_connected(self) -> bool:
        return self.machine.state is S.CONNECTED

    def snapshot(self) -> GenerationSnapshot:
        return GenerationSnapshot(stage=self.current_stage, sections=self.assembler.snapshot())

    async def _transition(self, target: ConnectionState, reason: str) -> None:
        self.machine.transition(target, reason)
        await self._emit_status(target)

    # ==========================
    # LIFECYCLE
    # ==========================
    async def initialize(self) -> bool:
        if self.state in (S.CONNECTING, S.CONNECTED, S.RECONNECTING):
            logger.debug(f"client_id={self.client_id} event=initialize reason=already_active state={self.state.value}")
            return True

        if not is_valid_token_format(self.token_store.access_token):
            logger.error(f"client_id={self.client_id} protocol=websocket event=initialize_refused reason=invalid_token")
            await self._notify(self.on_error_callback, "Cannot connect: missing or malformed access token.")
            return False

        if self.state is S.FAILED:
            await self._transition(S.DISCONNECTED, "manual retry")
        self._closing = False
        self.fatal_error = None
        await self._transition(S.CONNECTING, "initialize")
        self._runner = asyncio.create_task(self._run())
        return True

    async def wait_until_connected(self, timeout_s: float) -> bool:
        try:
            await asyncio.wait_for(self.connected.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return False
        return True

    async def disconnect(self) -> None:
        self._closing = True
        self._generation_active = False
        ws = self._ws
        if ws is not None:
            self._close_reason = "client disconnect"
            await ws.close()

        runner = self._runner
        self._runner = None
        # disconnect() may be called from a callback running inside the runner itself
        if runner is not None and runner is not asyncio.current_task() and not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)

        if self.state is not S.DISCONNECTED:
            await self._transition(S.DISCONNECTED, "client disconnect")

    async def _run(self) -> None:
        while not self._closing:
            reason = await self._connect_once()
            if self._closing:
                return
            if not await self._schedule_reconnect(reason):
                return

    def _build_url(self, token: str) -> str:
        self.connection_id = make_client_id()
        return f"{self.ws_url}?{urlencode({'token': token, 'clientId': self.connection_id})}"

    async def _connect_once(self) -> str:
        """Runs one connection until it ends. Returns the reason it ended."""
        token = self.token_store.access_token
        if not is_valid_token_format(token):
            return "missing or malformed access token"

        try:
            async with self._connect(
                self._build_url(token), ping_interval=None, open_timeout=self.connect_timeout_s
            ) as ws:
                try:
                    await self._on_open(ws)
                    async for raw in ws:
                        await self._dispatch(raw)
                except ConnectionClosed as e:
                    return self._close_reason or f"transport close ({e})"
                finally:
                    await self._on_close()
                return self._close_reason or "server closed the connection"
        except InvalidStatus as e:
            status = e.response.status_code
            if status in (401, 403) and self.refresher is not None:
                logger.info(f"client_id={self.client_id} protocol=websocket event=handshake_rejected status={status} action=refresh")
                await self.refresher.refresh()
            return f"handshake rejected (HTTP {status})"
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            return f"connection error: {e}"

    async def _on_open(self, ws) -> None:
        if self._closing:
            await ws.close()
            return
        self._ws = ws
        self._close_reason = None
        self._pending_ping = None
        await self._transition(S.CONNECTED, "handshake complete")
        self.stats["connected_at"] = utc_now_iso()
        self.connected.set()
        self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))

        # The server tracks rooms per socket, so an unfinished job must be re-joined after a reconnect.
        # Chunks carry the full accumulated text, so nothing needs clearing.
        if self._generation_active and self.generation_id:
            logger.info(f"client_id={self.client_id} event=rejoin generation_id={self.generation_id}")
            try:
                await self._send(events.JOIN_GENERATION, {"generationId": self.generation_id})
            except SocketConnectionError as e:
                logger.warning(f"client_id={self.client_id} event=rejoin_failed reason='{e}'")

    async def _on_close(self) -> None:
        self.connected.clear()
        self._ws = None
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _schedule_reconnect(self, reason: str) -> bool:
        await self._transition(S.RECONNECTING, reason)

        if self.machine.exhausted:
            attempts = self.machine.attempt
            self.fatal_error = SocketConnectionError(
                f"Gave up after {attempts} reconnect attempts: {reason}", attempts
            )
            await self._transition(S.FAILED, "reconnect budget exhausted")
            logger.error(f"client_id={self.client_id} protocol=websocket event=failed attempts={attempts} reason='{reason}'")
            await self._notify(self.on_error_callback, CONNECTION_FAILED_MESSAGE)
            return False

        delay = self.machine.next_delay()
        self.stats["reconnect_count"] += 1
        logger.warning(
            f"client_id={self.client_id} protocol=websocket event=reconnect "
            f"attempt={self.machine.attempt}/{self.machine.max_retries} delay={delay:.2f}s reason='{reason}'"
        )
        await self._sleep(delay)
        if self._closing:
            return False
        await self._transition(S.CONNECTING, "backoff elapsed")
        return True

    # ==========================
    # HEARTBEAT
    # ==========================
    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_s)
            if self._pending_ping is not None:
                await self._drop(ws, "heartbeat timeout")
                return
            if getattr(ws, "state", None) is not State.OPEN:
                await self._drop(ws, "health check failed")
                return
            self._pending_ping = time.time() * 1000
            try:
                await ws.send(events.encode_message(events.PING, {"timestamp": self._pending_ping}))
            except ConnectionClosed:
                await self._drop(ws, "health check failed")
                return
            self.stats["pings_sent"] += 1

    async def _drop(self, ws, reason: str) -> None:
        self._close_reason = reason
        logger.warning(f"client_id={self.client_id} protocol=websocket event=drop reason='{reason}'")
        await ws.close()

    # ==========================
    # OUTBOUND
    # ==========================
    async def _send(self, event: str, data: dict) -> None:
        ws = self._ws
        if ws is None:
            raise SocketConnectionError(f"Cannot send '{event}': socket is not connected")
        try:
            await ws.send(events.encode_message(event, data))
        except ConnectionClosed as e:
            raise SocketConnectionError(f"Cannot send '{event}': {e}") from e

    async def join_generation(self, generation_id: str, user_id: str | None = None) -> None:
        if not self.is_connected:
            raise SocketConnectionError(f"Cannot join generation {generation_id} while {self.state.value}")
        self.assembler.clear()
        self.current_stage = None
        self.generation_id = generation_id
        self._generation_active = True

        payload = {"generationId": generation_id}
        if user_id:
            payload["userId"] = user_id
        logger.info(f"client_id={self.client_id} event=join generation_id={generation_id}")
        await self._send(events.JOIN_GENERATION, payload)

    async def cancel_generation(self, generation_id: str) -> bool:
        """Advisory only: the server may keep working and the socket stays open."""
        if not self.is_connected:
            logger.warning(f"client_id={self.client_id} event=cancel_skipped generation_id={generation_id} state={self.state.value}")
            return False
        logger.info(f"client_id={self.client_id} event=cancel generation_id={generation_id}")
        await self._send(events.CANCEL_GENERATION, {"generationId": generation_id})
        return True

    # ==========================
    # INBOUND
    # ==========================
    async def _dispatch(self, raw: str | bytes) -> None:
        self.stats["events_received"] += 1
        self.stats["last_event_at"] = utc_now_iso()
        event = "<frame>"
        try:
            message = events.decode_message(raw)
            event = message.event
            handler = self._handlers.get(event)
            if handler is None:
                logger.debug(f"client_id={self.client_id} event=unhandled name={event}")
                return
            generation_id = message.data.get("generationId")
            if generation_id and self.generation_id and generation_id != self.generation_id:
                logger.debug(f"client_id={self.client_id} event=stale name={event} generation_id={generation_id}")
                return
            await handler(message.data)
        except (MalformedPayloadError, ValidationError) as e:
            self.stats["malformed_payloads"] += 1
            logger.warning(f"client_id={self.client_id} event=malformed_payload name={event} reason='{e}'")

    async def _on_connection_status(self, data: dict) -> None:
        logger.debug(f"client_id={self.client_id} event=connection_status status={data.get('status')}")

    async def _on_generation_started(self, data: dict) -> None:
        self.current_stage = StageInfo(stage="analyzing", message="Generation started...", progress=0)
        await self._notify(self.on_stage_callback, self.current_stage)

    async def _on_stage(self, data: dict) -> None:
        self.current_stage = StageInfo.model_validate(data)
        await self._notify(self.on_stage_callback, self.current_stage)

    async def _on_chunk(self, data: dict) -> None:
        chunk = ContentChunk.model_validate(data)
        if not self.assembler.apply(chunk.section, chunk.content, chunk.is_complete):
            logger.debug(f"client_id={self.client_id} event=chunk_ignored section={chunk.section} reason=already_complete")
            return
        await self._notify(self.on_chunk_callback, chunk)

    async def _on_completed(self, data: dict) -> None:
        self._generation_active = False
        self.current_stage = StageInfo(
            stage="completed",
            message=data.get("message") or "Generation completed successfully!",
            progress=100,
        )
        final = data.get("generation", data.get("finalGeneration", data))
        logger.info(f"client_id={self.client_id} event=completed generation_id={self.generation_id}")
        await self._notify(self.on_stage_callback, self.current_stage)
        await self._notify(self.on_completed_callback, final)

    async def _on_generation_error(self, data: dict) -> None:
        self._generation_active = False
        self.current_stage = None
        message = data.get("message") or data.get("error") or "Generation failed."
        logger.warning(f"client_id={self.client_id} event=generation_error generation_id={self.generation_id} reason='{message}'")
        await self._notify(self.on_error_callback, str(message))

    async def _on_pong(self, data: dict) -> None:
        sent_at = data.get("timestamp")
        if not isinstance(sent_at, (int, float)) or isinstance(sent_at, bool):
            raise MalformedPayloadError(events.PONG, "timestamp must be a number")
        rtt_ms = time.time() * 1000 - sent_at
        if self._pending_ping is not None and sent_at >= self._pending_ping:
            self._pending_ping = None
        self.stats["last_rtt_ms"] = round(rtt_ms, 2)
        if rtt_ms > self.high_latency_ms:
            self.stats["high_latency_count"] += 1
            logger.warning(f"client_id={self.client_id} protocol=websocket event=high_latency rtt_ms={rtt_ms:.0f}")
