import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable

from loguru import logger

from scriptstream.shared.client_utils import make_client_stats
from scriptstream.shared.models import ConnectionState

Callback = Callable[..., Any]

class BaseConnectionClient(ABC):
    protocol_name: str = "unknown"

    def __init__(self, client_id: str, server_base_url: str):
        self.client_id = client_id
        self.server_base_url = server_base_url.rstrip('/')

        self.on_status_change_callback: Callback | None = None
        self.on_stage_callback: Callback | None = None
        self.on_chunk_callback: Callback | None = None
        self.on_completed_callback: Callback | None = None
        self.on_error_callback: Callback | None = None

        self.stats = make_client_stats()

    @property
    def events_received(self): return self.stats["events_received"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def malformed_payloads(self): return self.stats["malformed_payloads"]

    def set_callbacks(
        self,
        on_status_change: Callback | None = None,
        on_stage: Callback | None = None,
        on_chunk: Callback | None = None,
        on_completed: Callback | None = None,
        on_error: Callback | None = None,
    ):
        self.on_status_change_callback = on_status_change
        self.on_stage_callback = on_stage
        self.on_chunk_callback = on_chunk
        self.on_completed_callback = on_completed
        self.on_error_callback = on_error

    async def _notify(self, callback: Callback | None, *args) -> None:
        """Awaits one UI callback. A failing callback is logged and never breaks the receive loop."""
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"client_id={self.client_id} protocol={self.protocol_name} event=callback_error reason='{e}'")

    async def _emit_status(self, state: ConnectionState):
        await self._notify(self.on_status_change_callback, state)

    @abstractmethod
    async def initialize(self) -> bool:
        """Starts the connection lifecycle in the background."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()
