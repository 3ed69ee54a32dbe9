"""
arcrepo.pubsub - Publish/Subscribe Channel
============================================

Carries artifact cache invalidations between the repository service and
its clients. Use InMemoryMessageBus in tests, RedisMessageBus in production.
"""

from arcrepo.pubsub.message_bus import InMemoryMessageBus, MessageBus, RedisMessageBus

__all__ = ["MessageBus", "InMemoryMessageBus", "RedisMessageBus"]
