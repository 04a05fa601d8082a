"""Sniper configuration stores with change notification.

The pipeline only reads configurations; editing happens elsewhere and is
signalled through listeners so the rule cache can be reloaded.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from redis.asyncio import Redis

from token_sniper.detector.models import SniperConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_KEY = "token_sniper:configs"
DEFAULT_CONFIG_CHANNEL = "token_sniper:configs:changed"

ChangeCallback = Callable[[], Awaitable[None]]


class ConfigStore(Protocol):
    """CRUD access to sniper configurations."""

    async def list_configs(self) -> list[SniperConfig]: ...

    async def get(self, config_id: str) -> SniperConfig | None: ...

    async def save(self, config: SniperConfig) -> None: ...

    async def delete(self, config_id: str) -> bool: ...

    def add_listener(self, callback: ChangeCallback) -> None: ...


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: list[ChangeCallback] = []

    def add_listener(self, callback: ChangeCallback) -> None:
        """Register a coroutine awaited after every change."""
        self._listeners.append(callback)

    async def _notify(self) -> None:
        for callback in self._listeners:
            try:
                await callback()
            except Exception:
                logger.exception("Config change listener failed")


class InMemoryConfigStore(_ListenerMixin):
    """Process-local store, ordered by insertion."""

    def __init__(self, configs: list[SniperConfig] | None = None) -> None:
        super().__init__()
        self._configs: dict[str, SniperConfig] = {c.id: c for c in configs or []}

    async def list_configs(self) -> list[SniperConfig]:
        return list(self._configs.values())

    async def get(self, config_id: str) -> SniperConfig | None:
        return self._configs.get(config_id)

    async def save(self, config: SniperConfig) -> None:
        self._configs[config.id] = config
        await self._notify()

    async def delete(self, config_id: str) -> bool:
        if self._configs.pop(config_id, None) is None:
            return False
        await self._notify()
        return True


class RedisConfigStore(_ListenerMixin):
    """Configurations kept as JSON in one Redis hash.

    Writers publish on ``channel`` after each change; :meth:`start` subscribes
    to it so edits made by other processes also reach the listeners.

    Example:
        ```python
        store = RedisConfigStore(redis)
        store.add_listener(pipeline.reload_configs)
        await store.start()
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key: str = DEFAULT_CONFIG_KEY,
        channel: str = DEFAULT_CONFIG_CHANNEL,
    ) -> None:
        super().__init__()
        self._redis = redis
        self._key = key
        self._channel = channel
        self._task: asyncio.Task[None] | None = None

    @staticmethod
    def _decode(raw: bytes | str) -> str:
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    def _parse(self, config_id: str, raw: bytes | str) -> SniperConfig | None:
        try:
            return SniperConfig.from_dict(json.loads(self._decode(raw)))
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            logger.warning("Skipping malformed config %s: %s", config_id, e)
            return None

    async def list_configs(self) -> list[SniperConfig]:
        data = await self._redis.hgetall(self._key)
        configs: list[SniperConfig] = []
        for raw_id, raw in data.items():
            config = self._parse(self._decode(raw_id), raw)
            if config is not None:
                configs.append(config)
        configs.sort(key=lambda c: c.name)
        return configs

    async def get(self, config_id: str) -> SniperConfig | None:
        raw = await self._redis.hget(self._key, config_id)
        if raw is None:
            return None
        return self._parse(config_id, raw)

    async def save(self, config: SniperConfig) -> None:
        await self._redis.hset(self._key, config.id, json.dumps(config.to_dict()))
        await self._redis.publish(self._channel, config.id)

    async def delete(self, config_id: str) -> bool:
        removed = await self._redis.hdel(self._key, config_id)
        if removed:
            await self._redis.publish(self._channel, config_id)
        return bool(removed)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._listen(), name="config-store-listener")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        logger.info("Listening for config changes on %s", self._channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                logger.debug("Config change notification: %s", message.get("data"))
                await self._notify()
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()
