"""
arcrepo.pubsub.message_bus - Publish/Subscribe Channel
========================================================

The channel over which the repository service (and other clients) push
artifact cache invalidations, and over which the Echo/EchoResp enablement
handshake runs.

Messages are map-shaped: plain ``dict[str, Any]`` such as::

    {"action": "InvalidateArtifact", "op": "Commit", "key": "ns:au:url:3"}

Two implementations share the ``MessageBus`` interface:

    ┌────────────────────┐      ┌─────────────────────────────────────┐
    │ InMemoryMessageBus │      │ RedisMessageBus                     │
    │  same-process,     │      │  redis.asyncio pub/sub, JSON bodies │
    │  tests and dev     │      │  background listener task           │
    └────────────────────┘      └─────────────────────────────────────┘

Usage:
    >>> bus = InMemoryMessageBus()
    >>> await bus.connect()
    >>> async def handler(msg: dict) -> None:
    ...     print(msg["action"])
    >>> await bus.subscribe("ArtifactCacheTopic", handler)
    >>> await bus.publish("ArtifactCacheTopic", {"action": "Flush"})
    >>> await bus.disconnect()
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from arcrepo.core.exceptions import MessageBusError


logger = structlog.get_logger()


# =============================================================================
# Type Aliases
# =============================================================================
# Subscribers receive the decoded message map. Delivery never propagates a
# subscriber's exception back to the publisher.
# =============================================================================
Message = dict[str, Any]
MessageCallback = Callable[[Message], Awaitable[None]]


# =============================================================================
# Abstract Base Class: MessageBus
# =============================================================================
class MessageBus(ABC):
    """Abstract publish/subscribe channel carrying map-shaped messages.

    Lifecycle::

        bus = RedisMessageBus("redis://localhost:6379/0")
        await bus.connect()       # may raise MessageBusError
        await bus.subscribe("ArtifactCacheTopic", on_message)
        ...
        await bus.disconnect()    # idempotent
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel.

        Raises:
            MessageBusError: If the backend is unreachable.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel and drop all subscriptions. Idempotent."""
        ...

    @abstractmethod
    async def publish(self, channel: str, message: Message) -> None:
        """Deliver ``message`` to every subscriber of ``channel``.

        Raises:
            MessageBusError: If the bus is not connected or the backend fails.
        """
        ...

    @abstractmethod
    async def subscribe(self, channel: str, callback: MessageCallback) -> None:
        """Register ``callback`` for messages on ``channel``.

        Raises:
            MessageBusError: If the bus is not connected or the backend fails.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        """Remove all callbacks registered for ``channel``."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================
# Single-process delivery by direct callback invocation. Used by tests and by
# applications that run the repository service in-process.
# =============================================================================
class InMemoryMessageBus(MessageBus):
    """In-memory message bus for development and testing.

    Callbacks for a channel run concurrently via ``asyncio.gather``; a failing
    callback is logged and does not affect the publisher or other callbacks.

    Attributes:
        published_count: Messages published since the last ``connect()``.
        published: Every (channel, message) pair published, for assertions.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[MessageCallback]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self._connected: bool = False
        self._published_count: int = 0
        self.published: list[tuple[str, Message]] = []
        self._logger = logger.bind(component="message_bus", impl="in_memory")

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        async with self._lock:
            self._subscriptions.clear()
            self._published_count = 0
            self.published.clear()
            self._connected = True

        self._logger.info("message_bus_connected")

    async def disconnect(self) -> None:
        async with self._lock:
            self._subscriptions.clear()
            self._connected = False

        self._logger.info("message_bus_disconnected")

    async def publish(self, channel: str, message: Message) -> None:
        self._ensure_connected()

        async with self._lock:
            callbacks = list(self._subscriptions.get(channel, []))
            self._published_count += 1
            self.published.append((channel, message))

        # Callbacks run outside the lock so that they may publish in turn.
        if callbacks:
            results = await asyncio.gather(
                *(callback(message) for callback in callbacks),
                return_exceptions=True,
            )
            for index, result in enumerate(results):
                if isinstance(result, Exception):
                    self._logger.error(
                        "subscriber_callback_error",
                        channel=channel,
                        error=str(result),
                        error_type=type(result).__name__,
                        callback_index=index,
                    )

        self._logger.debug(
            "message_published",
            channel=channel,
            action=message.get("action") if isinstance(message, dict) else None,
            subscriber_count=len(callbacks),
        )

    async def subscribe(self, channel: str, callback: MessageCallback) -> None:
        self._ensure_connected()

        async with self._lock:
            self._subscriptions.setdefault(channel, []).append(callback)

        self._logger.debug(
            "channel_subscribed",
            channel=channel,
            total_subscribers=len(self._subscriptions.get(channel, [])),
        )

    async def unsubscribe(self, channel: str) -> None:
        self._ensure_connected()

        async with self._lock:
            removed = self._subscriptions.pop(channel, [])

        self._logger.debug("channel_unsubscribed", channel=channel, removed_callbacks=len(removed))

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise MessageBusError(
                message="Message bus is not connected. Call connect() first.",
                error_code="BUS_NOT_CONNECTED",
            )


# =============================================================================
# Redis Implementation
# =============================================================================
# Each channel maps to a Redis pub/sub channel of the same name. Messages are
# JSON objects. A single listener task reads from the PubSub connection and
# dispatches to local callbacks; payloads that are not JSON objects are logged
# and dropped before they reach any callback.
# =============================================================================
class RedisMessageBus(MessageBus):
    """Redis-backed message bus for cross-process cache invalidation.

    Args:
        redis_url: ``redis://[:password@]host[:port][/db]``
        socket_timeout: Socket timeout for Redis commands, in seconds.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        socket_timeout: Optional[float] = 5.0,
    ) -> None:
        self._redis_url = redis_url
        self._socket_timeout = socket_timeout
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub: Optional[aioredis.client.PubSub] = None
        self._subscriptions: dict[str, list[MessageCallback]] = {}
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._connected: bool = False
        self._published_count: int = 0
        self._logger = logger.bind(component="message_bus", impl="redis", redis_url=redis_url)

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        if self._redis is not None:
            # Left over from a connection the listener found broken.
            await self.disconnect()
        client = aioredis.from_url(
            self._redis_url,
            socket_timeout=self._socket_timeout,
            decode_responses=False,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            await client.aclose()
            raise MessageBusError(
                message=f"Could not connect to Redis: {exc}",
                error_code="CONNECT_FAILED",
                details={"redis_url": self._redis_url},
            ) from exc

        self._redis = client
        # PubSub reads block indefinitely; socket_timeout applies to commands.
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._connected = True
        self._logger.info("message_bus_connected")

    async def disconnect(self) -> None:
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except (RedisError, OSError) as exc:
                self._logger.warning("pubsub_close_error", error=str(exc))
            self._pubsub = None

        if self._redis is not None:
            try:
                await self._redis.aclose()
            except (RedisError, OSError) as exc:
                self._logger.warning("redis_close_error", error=str(exc))
            self._redis = None

        self._subscriptions.clear()
        if self._connected:
            self._connected = False
            self._logger.info("message_bus_disconnected")

    async def publish(self, channel: str, message: Message) -> None:
        self._ensure_connected()
        try:
            await self._redis.publish(channel, json.dumps(message))
        except (RedisError, OSError) as exc:
            raise MessageBusError(
                message=f"Failed to publish to {channel}: {exc}",
                error_code="PUBLISH_FAILED",
                details={"channel": channel},
            ) from exc
        self._published_count += 1

    async def subscribe(self, channel: str, callback: MessageCallback) -> None:
        self._ensure_connected()
        first = channel not in self._subscriptions
        self._subscriptions.setdefault(channel, []).append(callback)
        if first:
            try:
                await self._pubsub.subscribe(channel)
            except (RedisError, OSError) as exc:
                self._subscriptions.pop(channel, None)
                raise MessageBusError(
                    message=f"Failed to subscribe to {channel}: {exc}",
                    error_code="SUBSCRIBE_FAILED",
                    details={"channel": channel},
                ) from exc
        if self._listener_task is None or self._listener_task.done():
            self._listener_task = asyncio.create_task(self._listen())
        self._logger.debug("channel_subscribed", channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        self._ensure_connected()
        if self._subscriptions.pop(channel, None) is not None:
            try:
                await self._pubsub.unsubscribe(channel)
            except (RedisError, OSError) as exc:
                raise MessageBusError(
                    message=f"Failed to unsubscribe from {channel}: {exc}",
                    error_code="UNSUBSCRIBE_FAILED",
                    details={"channel": channel},
                ) from exc
        self._logger.debug("channel_unsubscribed", channel=channel)

    # =========================================================================
    # Listener
    # =========================================================================

    async def _listen(self) -> None:
        try:
            async for raw in self._pubsub.listen():
                if raw.get("type") != "message":
                    continue
                await self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError) as exc:
            # Connection lost; the cache enabler notices via is_connected.
            self._connected = False
            self._logger.error("subscriber_loop_error", error=str(exc))

    async def _dispatch(self, raw: dict[str, Any]) -> None:
        channel = raw.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        try:
            message = json.loads(raw.get("data"))
        except (TypeError, ValueError) as exc:
            self._logger.warning("message_undecodable", channel=channel, error=str(exc))
            return
        if not isinstance(message, dict):
            self._logger.warning("message_not_a_map", channel=channel)
            return

        for callback in list(self._subscriptions.get(channel, [])):
            try:
                await callback(message)
            except Exception as exc:
                self._logger.error(
                    "subscriber_callback_error",
                    channel=channel,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise MessageBusError(
                message="Message bus is not connected. Call connect() first.",
                error_code="BUS_NOT_CONNECTED",
            )
