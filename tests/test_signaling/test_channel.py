"""Tests for the Redis-backed broadcast channel (against a stub client)."""

from __future__ import annotations

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from artisan_escrow.signaling.channel import (
    ChannelStatus,
    RedisBroadcastChannel,
    RedisChannelFactory,
    Subscription,
)


class StubRedis:
    """Records publishes; fails the first ``failures`` attempts."""

    def __init__(self, failures: int = 0, pubsub: StubPubSub | None = None) -> None:
        self.failures = failures
        self.published: list[tuple[str, str]] = []
        self._pubsub = pubsub

    def pubsub(self) -> StubPubSub | None:
        return self._pubsub

    async def publish(self, channel: str, message: str) -> int:
        if self.failures:
            self.failures -= 1
            raise RedisConnectionError("connection reset")
        self.published.append((channel, message))
        return 1


class TestSend:
    @pytest.mark.asyncio
    async def test_publishes_event_envelope(self) -> None:
        redis = StubRedis()
        channel = RedisChannelFactory(redis).join("call-42")

        await channel.send("call_signal", {"type": "hangup", "from": "a"})

        assert redis.published == [
            ("call-42", json.dumps({"event": "call_signal", "payload": {"type": "hangup", "from": "a"}}))
        ]

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        redis = StubRedis(failures=2)
        channel = RedisBroadcastChannel(redis, "call-42")

        await channel.send("call_signal", {"type": "hangup", "from": "a"})

        assert len(redis.published) == 1

    @pytest.mark.asyncio
    async def test_persistent_failure_is_raised(self) -> None:
        channel = RedisBroadcastChannel(StubRedis(failures=5), "call-42")
        with pytest.raises(RedisConnectionError):
            await channel.send("call_signal", {"type": "hangup", "from": "a"})


class TestDispatch:
    @pytest.mark.asyncio
    async def test_routes_by_event_name(self) -> None:
        channel = RedisBroadcastChannel(StubRedis(), "call-42")
        received: list = []

        async def on_signal(payload: dict) -> None:
            received.append(payload)

        channel.on("call_signal", on_signal)
        channel.on("other", lambda payload: received.append(("other", payload)))

        await channel._handle_raw(json.dumps({"event": "call_signal", "payload": {"type": "hangup"}}))
        await channel._handle_raw(json.dumps({"event": "other", "payload": 1}))
        await channel._handle_raw("garbage")
        await channel._handle_raw(json.dumps(["no", "event"]))

        assert received == [{"type": "hangup"}, ("other", 1)]


class StubPubSub:
    """Yields the queued messages, then raises ``error`` if one is set."""

    def __init__(self, messages: list[dict], error: Exception | None = None) -> None:
        self.messages = messages
        self.error = error

    async def subscribe(self, channel: str) -> None:
        pass

    async def listen(self):  # noqa: ANN201
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error


class TestListener:
    @staticmethod
    def _message(payload: dict) -> dict:
        return {"type": "message", "data": json.dumps({"event": "call_signal", "payload": payload})}

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_the_listener(self) -> None:
        redis = StubRedis(
            pubsub=StubPubSub(
                [{"type": "subscribe", "data": 1}, self._message({"n": 1}), self._message({"n": 2})]
            )
        )
        channel = RedisBroadcastChannel(redis, "call-42")
        received: list = []

        async def on_signal(payload: dict) -> None:
            if payload["n"] == 1:
                raise RuntimeError("handler bug")
            received.append(payload)

        channel.on("call_signal", on_signal)
        subscription = Subscription(channel=channel)
        await channel._listen(subscription)

        assert received == [{"n": 2}]
        assert subscription.status == ChannelStatus.SUBSCRIBED

    @pytest.mark.asyncio
    async def test_unexpected_listener_error_marks_channel(self) -> None:
        redis = StubRedis(pubsub=StubPubSub([], error=RuntimeError("decoder crashed")))
        channel = RedisBroadcastChannel(redis, "call-42")
        subscription = Subscription(channel=channel)

        await channel._listen(subscription)

        assert subscription.status == ChannelStatus.CHANNEL_ERROR


class TestSubscription:
    def test_status_callback(self) -> None:
        seen: list[ChannelStatus] = []
        subscription = Subscription(channel=None, on_status=seen.append)  # type: ignore[arg-type]

        assert not subscription.is_ready
        subscription.set_status(ChannelStatus.SUBSCRIBED)
        assert subscription.is_ready
        subscription.set_status(ChannelStatus.CLOSED)

        assert seen == [ChannelStatus.SUBSCRIBED, ChannelStatus.CLOSED]
