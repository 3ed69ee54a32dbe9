"""
Tests for arcrepo.pubsub.message_bus
======================================

What's Being Tested:
    - InMemoryMessageBus pub/sub, fan-out and subscription lifecycle
    - Callback errors are isolated from the publisher and other subscribers
    - Disconnected guards raise MessageBusError
    - RedisMessageBus decoding: non-JSON and non-map payloads never reach
      callbacks, and an unreachable server is a MessageBusError

The cache topic carries small JSON maps:

    repository ──publish──> [ArtifactCacheTopic] ──callback──> CacheEnabler
"""

import pytest

from arcrepo.core.exceptions import MessageBusError
from arcrepo.pubsub.message_bus import InMemoryMessageBus, MessageBus, RedisMessageBus


TOPIC = "ArtifactCacheTopic"


# =============================================================================
# Test Class: InMemoryMessageBus
# =============================================================================
class TestInMemoryMessageBus:
    """Tests for the InMemoryMessageBus implementation."""

    # -------------------------------------------------------------------------
    # Test: ABC conformance
    # -------------------------------------------------------------------------

    def test_is_message_bus(self) -> None:
        assert isinstance(InMemoryMessageBus(), MessageBus)

    # -------------------------------------------------------------------------
    # Test: Basic Pub/Sub
    # -------------------------------------------------------------------------

    async def test_publish_subscribe(self, message_bus) -> None:
        """Scenario:
            1. Connect and subscribe a collecting callback to the topic
            2. Publish a Flush message
            3. The callback received exactly that message
        """
        await message_bus.connect()
        received: list[dict] = []

        async def callback(message: dict) -> None:
            received.append(message)

        await message_bus.subscribe(TOPIC, callback)
        await message_bus.publish(TOPIC, {"action": "Flush"})

        assert received == [{"action": "Flush"}], (
            "Subscriber should receive the published message unchanged"
        )
        assert message_bus.published_count == 1
        assert message_bus.published == [(TOPIC, {"action": "Flush"})]

    async def test_publish_without_subscribers(self, message_bus) -> None:
        await message_bus.connect()
        await message_bus.publish(TOPIC, {"action": "Flush"})
        assert message_bus.published_count == 1

    async def test_multiple_subscribers(self, message_bus) -> None:
        await message_bus.connect()
        first: list[dict] = []
        second: list[dict] = []

        async def cb1(message: dict) -> None:
            first.append(message)

        async def cb2(message: dict) -> None:
            second.append(message)

        await message_bus.subscribe(TOPIC, cb1)
        await message_bus.subscribe(TOPIC, cb2)
        await message_bus.publish(TOPIC, {"action": "Echo", "key": "me"})

        assert len(first) == 1 and len(second) == 1

    async def test_channels_are_isolated(self, message_bus) -> None:
        await message_bus.connect()
        received: list[dict] = []

        async def callback(message: dict) -> None:
            received.append(message)

        await message_bus.subscribe(TOPIC, callback)
        await message_bus.publish("OtherTopic", {"action": "Flush"})

        assert received == []

    # -------------------------------------------------------------------------
    # Test: Error Isolation
    # -------------------------------------------------------------------------

    async def test_callback_error_does_not_propagate(self, message_bus) -> None:
        """A failing subscriber is logged; the others still get the message."""
        await message_bus.connect()
        received: list[dict] = []

        async def broken(message: dict) -> None:
            raise RuntimeError("subscriber bug")

        async def healthy(message: dict) -> None:
            received.append(message)

        await message_bus.subscribe(TOPIC, broken)
        await message_bus.subscribe(TOPIC, healthy)
        await message_bus.publish(TOPIC, {"action": "Flush"})

        assert received == [{"action": "Flush"}]

    async def test_callback_may_publish(self, message_bus) -> None:
        """Callbacks run outside the bus lock, so they can answer in turn."""
        await message_bus.connect()
        replies: list[dict] = []

        async def responder(message: dict) -> None:
            if message["action"] == "Echo":
                await message_bus.publish(TOPIC, {"action": "EchoResp", "key": message["key"]})
            else:
                replies.append(message)

        await message_bus.subscribe(TOPIC, responder)
        await message_bus.publish(TOPIC, {"action": "Echo", "key": "client-1"})

        assert replies == [{"action": "EchoResp", "key": "client-1"}]

    # -------------------------------------------------------------------------
    # Test: Subscription Lifecycle
    # -------------------------------------------------------------------------

    async def test_unsubscribe(self, message_bus) -> None:
        await message_bus.connect()
        received: list[dict] = []

        async def callback(message: dict) -> None:
            received.append(message)

        await message_bus.subscribe(TOPIC, callback)
        await message_bus.unsubscribe(TOPIC)
        await message_bus.publish(TOPIC, {"action": "Flush"})

        assert received == []

    async def test_connect_resets_state(self, message_bus) -> None:
        await message_bus.connect()

        async def callback(message: dict) -> None:
            pass

        await message_bus.subscribe(TOPIC, callback)
        await message_bus.publish(TOPIC, {"action": "Flush"})
        await message_bus.connect()

        assert message_bus.published_count == 0
        assert message_bus.published == []

    async def test_disconnected_guards(self, message_bus) -> None:
        with pytest.raises(MessageBusError) as exc_info:
            await message_bus.publish(TOPIC, {"action": "Flush"})
        assert exc_info.value.error_code == "BUS_NOT_CONNECTED"

        async def callback(message: dict) -> None:
            pass

        with pytest.raises(MessageBusError):
            await message_bus.subscribe(TOPIC, callback)

    async def test_disconnect(self, message_bus) -> None:
        await message_bus.connect()
        assert message_bus.is_connected
        await message_bus.disconnect()
        assert not message_bus.is_connected


# =============================================================================
# Test Class: RedisMessageBus
# =============================================================================
class TestRedisMessageBus:
    """Tests that need no running Redis server."""

    async def test_connect_failure_is_message_bus_error(self) -> None:
        bus = RedisMessageBus("redis://127.0.0.1:1/0", socket_timeout=0.5)

        with pytest.raises(MessageBusError) as exc_info:
            await bus.connect()

        assert exc_info.value.error_code == "CONNECT_FAILED"
        assert not bus.is_connected

    async def test_publish_requires_connection(self) -> None:
        bus = RedisMessageBus()
        with pytest.raises(MessageBusError):
            await bus.publish(TOPIC, {"action": "Flush"})

    async def test_disconnect_when_never_connected(self) -> None:
        bus = RedisMessageBus()
        await bus.disconnect()
        assert not bus.is_connected

    async def test_dispatch_decodes_json_maps(self) -> None:
        """Scenario:
            1. Register a callback for the topic
            2. Dispatch a raw pub/sub message carrying a JSON map
            3. The callback receives the decoded dict
        """
        bus = RedisMessageBus()
        received: list[dict] = []

        async def callback(message: dict) -> None:
            received.append(message)

        bus._subscriptions[TOPIC] = [callback]
        await bus._dispatch({
            "type": "message",
            "channel": TOPIC.encode(),
            "data": b'{"action": "InvalidateAu", "op": "Delete", "key": "ns|au"}',
        })

        assert received == [{"action": "InvalidateAu", "op": "Delete", "key": "ns|au"}]

    @pytest.mark.parametrize("data", [b"not json", b"[1, 2, 3]", b'"Flush"', None])
    async def test_dispatch_drops_malformed(self, data) -> None:
        bus = RedisMessageBus()
        received: list[dict] = []

        async def callback(message: dict) -> None:
            received.append(message)

        bus._subscriptions[TOPIC] = [callback]
        await bus._dispatch({"type": "message", "channel": TOPIC, "data": data})

        assert received == [], "Malformed payloads must never reach callbacks"
