# realtime.py
"""
Realtime channel: subscribes to a topic on the store's websocket endpoint and
hands each inserted/updated row to a callback. Reconnects on its own;
delivery is at-least-once, so handlers must be idempotent.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional, Union

import websockets
from pydantic import ValidationError as ModelError

from config import settings
from models import RealtimeEvent

log = logging.getLogger(__name__)

GLOBAL_TOPIC = "*"

Handler = Callable[[RealtimeEvent], Union[None, Awaitable[None]]]


def parse_event(raw) -> Optional[RealtimeEvent]:
    try:
        return RealtimeEvent.model_validate(json.loads(raw))
    except (ValueError, TypeError, ModelError):
        return None


class RealtimeChannel:
    def __init__(self, topic: str, handler: Handler, url: Optional[str] = None, reconnect_secs: Optional[float] = None):
        self.topic = topic
        self.handler = handler
        base = (url or settings["realtime_url"]).rstrip("/")
        self.url = f"{base}/ws/{topic}"
        self.reconnect_secs = reconnect_secs if reconnect_secs is not None else float(settings.get("realtime_reconnect_secs", 3))
        self.connected = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.debug("Unsubscribed from %s", self.topic)

    async def dispatch(self, raw) -> None:
        event = parse_event(raw)
        if event is None:
            log.debug("Skipping malformed frame on %s", self.topic)
            return
        result = self.handler(event)
        if asyncio.iscoroutine(result):
            await result

    async def _run(self) -> None:
        log.debug("Connecting %s", self.url)
        while True:
            try:
                async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
                    self.connected.set()
                    async for msg in ws:
                        await self.dispatch(msg)
                log.info("Channel %s closed; reconnecting", self.topic)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                log.warning("Channel %s error: %s", self.topic, e)
            finally:
                self.connected.clear()
            await asyncio.sleep(self.reconnect_secs)
