"""Broadcast channel abstraction and its Redis pub/sub implementation.

A channel is keyed by a stable conversation id; every subscribed member
receives every message, the sender included. Call sessions receive a
``ChannelFactory`` instead of reaching for a process-wide client, so tests
can hand them an in-process relay.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from artisan_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from redis.asyncio.client import PubSub

logger = get_logger(__name__)

MessageHandler = Callable[[Any], Awaitable[None] | None]


class ChannelStatus(enum.StrEnum):
    """Subscription states reported to the ``subscribe`` callback."""

    JOINING = "JOINING"
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


StatusCallback = Callable[[ChannelStatus], None]


@dataclass
class Subscription:
    """Handle returned by ``subscribe``; tracks the latest channel status."""

    channel: BroadcastChannel
    on_status: StatusCallback | None = None
    status: ChannelStatus = ChannelStatus.JOINING

    @property
    def is_ready(self) -> bool:
        return self.status == ChannelStatus.SUBSCRIBED

    def set_status(self, status: ChannelStatus) -> None:
        self.status = status
        if self.on_status is not None:
            self.on_status(status)


class BroadcastChannel(Protocol):
    name: str

    def on(self, event: str, handler: MessageHandler) -> None: ...

    async def send(self, event: str, payload: dict[str, Any]) -> None: ...

    def subscribe(self, on_status: StatusCallback | None = None) -> Subscription: ...


class ChannelFactory(Protocol):
    def join(self, channel_id: str) -> BroadcastChannel: ...

    async def unsubscribe(self, subscription: Subscription) -> None: ...


async def dispatch(handlers: list[MessageHandler], payload: Any) -> None:
    """Run handlers in order; coroutine handlers are awaited to completion."""
    for handler in list(handlers):
        result = handler(payload)
        if inspect.isawaitable(result):
            await result


# --- Redis implementation ---


class RedisBroadcastChannel:
    """One Redis pub/sub channel. Messages are ``{"event", "payload"}`` JSON."""

    def __init__(self, redis: aioredis.Redis, name: str) -> None:
        self.name = name
        self._redis = redis
        self._handlers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._pubsub: PubSub | None = None
        self._listener: asyncio.Task | None = None
        self._subscription: Subscription | None = None

    def on(self, event: str, handler: MessageHandler) -> None:
        self._handlers[event].append(handler)

    def subscribe(self, on_status: StatusCallback | None = None) -> Subscription:
        """Start listening in the background. Status moves to SUBSCRIBED once joined."""
        if self._subscription is not None:
            return self._subscription
        self._subscription = Subscription(channel=self, on_status=on_status)
        self._listener = asyncio.get_running_loop().create_task(
            self._listen(self._subscription),
            name=f"redis-channel-{self.name}",
        )
        return self._subscription

    @retry(
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, max=1),
        reraise=True,
    )
    async def send(self, event: str, payload: dict[str, Any]) -> None:
        """Publish to every member, this one included."""
        message = json.dumps({"event": event, "payload": payload})
        await self._redis.publish(self.name, message)

    async def close(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.name)
                await self._pubsub.aclose()
            except RedisError as exc:
                logger.warning("channel.close_failed", channel=self.name, error=str(exc))
            self._pubsub = None
        if self._subscription is not None:
            self._subscription.set_status(ChannelStatus.CLOSED)
            self._subscription = None
        self._handlers.clear()
        logger.debug("channel.closed", channel=self.name)

    async def _listen(self, subscription: Subscription) -> None:
        self._pubsub = self._redis.pubsub()
        try:
            await self._pubsub.subscribe(self.name)
            subscription.set_status(ChannelStatus.SUBSCRIBED)
            logger.debug("channel.subscribed", channel=self.name)
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self._handle_raw(message.get("data"))
        except RedisError as exc:
            logger.warning("channel.listener_failed", channel=self.name, error=str(exc))
            subscription.set_status(ChannelStatus.CHANNEL_ERROR)
        except Exception:
            logger.exception("channel.listener_crashed", channel=self.name)
            subscription.set_status(ChannelStatus.CHANNEL_ERROR)

    async def _handle_raw(self, data: Any) -> None:
        try:
            envelope = json.loads(data)
        except (TypeError, ValueError):
            logger.debug("channel.undecodable_message", channel=self.name)
            return
        if not isinstance(envelope, dict) or "event" not in envelope:
            return
        handlers = self._handlers.get(envelope["event"])
        if not handlers:
            return
        try:
            await dispatch(handlers, envelope.get("payload"))
        except Exception:
            # One bad message must not stop the listener for the rest of the channel.
            logger.exception("channel.handler_failed", channel=self.name, event=envelope["event"])


class RedisChannelFactory:
    """Creates Redis-backed channels on a shared client."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    def join(self, channel_id: str) -> RedisBroadcastChannel:
        return RedisBroadcastChannel(self._redis, channel_id)

    async def unsubscribe(self, subscription: Subscription) -> None:
        channel = subscription.channel
        if isinstance(channel, RedisBroadcastChannel):
            await channel.close()
        else:
            subscription.set_status(ChannelStatus.CLOSED)
