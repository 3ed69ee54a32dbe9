"""
arcrepo.cache.invalidation - Cache Enablement and Invalidation Listener
=========================================================================

The artifact cache may only be trusted once invalidations from the
repository service are known to arrive. ``CacheEnabler`` establishes that in
a background task and then keeps the cache fed with invalidation messages.

Enablement State Machine:

    DISABLED ──start()──> CONNECTING ──subscribed──> PROBE_SENT
                             │   ^                       │
                   connect   │   │ backoff               │ EchoResp(key=identity)
                   failed    └───┘ (1s, 2s, 4s... cap)   v
                                                      ENABLED
                          bus lost: cache disabled,      │
                          back to CONNECTING  <──────────┘

    In PROBE_SENT an Echo carrying this client's identity is published every
    ``echo_interval`` seconds until the matching EchoResp arrives.

Topic Messages:

    {"action": "InvalidateArtifact", "op": "Commit"|"Delete", "key": "ns:auid:uri:v"}
    {"action": "InvalidateAu",       "op": "Commit"|"Delete", "key": "ns|auid"}
    {"action": "Flush"}
    {"action": "Echo",               "key": <identity>}
    {"action": "EchoResp",           "key": <identity>}

Unknown actions are logged and ignored. Malformed messages (not a map,
missing key, unknown op) are logged and dropped; they never stop the
listener.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from arcrepo.cache.artifact_cache import ArtifactCache
from arcrepo.core.enums import CacheAction, CacheState, InvalidateOp
from arcrepo.core.exceptions import MessageBusError
from arcrepo.pubsub.message_bus import MessageBus


logger = structlog.get_logger()

MSG_ACTION = "action"
MSG_KEY = "key"
MSG_OP = "op"


class CacheEnabler:
    """Background task that enables an ArtifactCache and applies invalidations.

    Args:
        cache: The cache to enable and invalidate.
        bus: Pub/sub channel carrying the cache topic.
        identity: This client's identity in the Echo handshake. The
            repository client uses its base URL.
        topic: Topic name.
        echo_interval: Seconds between Echo probes.
        retry_initial: First backoff after a failed connect, in seconds.
        retry_max: Backoff cap, in seconds.

    Example:
        >>> enabler = CacheEnabler(cache, bus, identity="http://repo:24610")
        >>> enabler.start()
        >>> await enabler.wait_enabled(timeout=10)
        >>> await enabler.stop()
    """

    def __init__(
        self,
        cache: ArtifactCache,
        bus: MessageBus,
        identity: str,
        *,
        topic: str = "ArtifactCacheTopic",
        echo_interval: float = 5.0,
        retry_initial: float = 1.0,
        retry_max: float = 30.0,
    ) -> None:
        self.cache = cache
        self.bus = bus
        self.identity = identity
        self.topic = topic
        self.echo_interval = echo_interval
        self.retry_initial = retry_initial
        self.retry_max = retry_max

        self._state = CacheState.DISABLED
        self._task: Optional[asyncio.Task[None]] = None
        self._echo_received = asyncio.Event()
        self._enabled_event = asyncio.Event()
        self._subscribed = False
        self._logger = logger.bind(component="cache_enabler", identity=identity, topic=topic)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start enabling in the background. No-op if already running."""
        if self.is_running or self.cache.is_enabled:
            return
        self._task = asyncio.create_task(self._run(), name="arcrepo-cache-enabler")

    async def stop(self) -> None:
        """Cancel the background task, disable the cache and unsubscribe."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.cache.enable(False)
        self._enabled_event.clear()
        self._echo_received.clear()

        if self._subscribed and self.bus.is_connected:
            try:
                await self.bus.unsubscribe(self.topic)
            except MessageBusError as exc:
                self._logger.warning("cache_topic_unsubscribe_failed", error=str(exc))
        self._subscribed = False
        self._set_state(CacheState.DISABLED)

    async def wait_enabled(self, timeout: Optional[float] = None) -> bool:
        """Wait until the cache is enabled. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._enabled_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # =========================================================================
    # Background Task
    # =========================================================================

    async def _run(self) -> None:
        while True:
            self._set_state(CacheState.CONNECTING)
            await self._connect()

            self._set_state(CacheState.PROBE_SENT)
            await self._probe()

            self.cache.enable(True)
            self._set_state(CacheState.ENABLED)
            self._enabled_event.set()

            await self._watch()

            # Invalidations can no longer arrive; the cache is not trustworthy.
            self._logger.warning("cache_bus_lost")
            self.cache.enable(False)
            self._enabled_event.clear()
            self._echo_received.clear()
            self._subscribed = False

    async def _connect(self) -> None:
        delay = self.retry_initial
        while True:
            try:
                if not self.bus.is_connected:
                    await self.bus.connect()
                await self.bus.subscribe(self.topic, self.handle_message)
                self._subscribed = True
                self._logger.debug("cache_topic_subscribed")
                return
            except MessageBusError as exc:
                self._logger.debug("cache_topic_connect_failed", error=str(exc), retry_in=delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.retry_max)

    async def _probe(self) -> None:
        while not self._echo_received.is_set():
            try:
                await self.bus.publish(
                    self.topic,
                    {MSG_ACTION: CacheAction.ECHO.value, MSG_KEY: self.identity},
                )
                self._logger.debug("cache_echo_sent")
            except MessageBusError as exc:
                self._logger.warning("cache_echo_failed", error=str(exc))
            try:
                await asyncio.wait_for(self._echo_received.wait(), timeout=self.echo_interval)
            except asyncio.TimeoutError:
                continue

    async def _watch(self) -> None:
        while self.bus.is_connected:
            await asyncio.sleep(self.echo_interval)

    def _set_state(self, state: CacheState) -> None:
        if state != self._state:
            self._logger.debug("cache_state_changed", old=self._state.value, new=state.value)
            self._state = state

    # =========================================================================
    # Message Handling
    # =========================================================================

    async def handle_message(self, message: Any) -> None:
        """Apply one topic message to the cache. Never raises."""
        if not isinstance(message, dict):
            self._logger.warning("cache_message_malformed", reason="not a map")
            return

        action = message.get(MSG_ACTION)
        key = message.get(MSG_KEY)
        self._logger.debug("cache_message_received", action=action, key=key)

        try:
            if action == CacheAction.INVALIDATE_ARTIFACT:
                self.cache.invalidate_artifact(self._op(message), self._key(message))
            elif action == CacheAction.INVALIDATE_AU:
                self.cache.invalidate_au(self._op(message), self._key(message))
            elif action == CacheAction.FLUSH:
                self._logger.debug("cache_flush_requested")
                self.cache.flush()
            elif action == CacheAction.ECHO_RESP:
                if key == self.identity:
                    self._echo_received.set()
                    self._logger.debug("cache_echo_response_received")
            elif action == CacheAction.ECHO:
                pass
            elif action is None:
                self._logger.warning("cache_message_malformed", reason="missing action")
            else:
                self._logger.warning("cache_message_unknown_action", action=action)
        except ValueError as exc:
            self._logger.warning("cache_message_malformed", action=action, reason=str(exc))

    @staticmethod
    def _op(message: dict[str, Any]) -> InvalidateOp:
        op = message.get(MSG_OP)
        if not isinstance(op, str):
            raise ValueError("missing op")
        return InvalidateOp(op)

    @staticmethod
    def _key(message: dict[str, Any]) -> str:
        key = message.get(MSG_KEY)
        if not isinstance(key, str) or not key:
            raise ValueError("missing key")
        return key
