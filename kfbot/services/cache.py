"""Redis-backed key/value cache with an explicit connection state machine."""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from kfbot.logging_config import get_logger
from kfbot.services.errors import PersistenceError


class CacheState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"


class CacheEvent(str, Enum):
    CONNECT_REQUESTED = "connect_requested"
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    OPERATION_FAILED = "operation_failed"
    CLOSED = "closed"


class CacheAction(str, Enum):
    NONE = "none"
    CONNECT = "connect"
    RETRY = "retry"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class CacheTransition:
    state: CacheState
    action: CacheAction
    attempts: int = 0
    delay: float = 0.0


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    return min(base * (2**attempt), maximum)


def next_cache_state(
    state: CacheState,
    event: CacheEvent,
    attempts: int = 0,
    *,
    max_retries: int = 5,
    backoff_base: float = 0.5,
    backoff_max: float = 30.0,
) -> CacheTransition:
    """Pure transition function: (state, event) -> (state, action)."""
    if event == CacheEvent.CLOSED:
        return CacheTransition(CacheState.DISCONNECTED, CacheAction.NONE)

    if state == CacheState.DEGRADED:
        return CacheTransition(CacheState.DEGRADED, CacheAction.NONE, attempts)

    if state == CacheState.DISCONNECTED and event == CacheEvent.CONNECT_REQUESTED:
        return CacheTransition(CacheState.CONNECTING, CacheAction.CONNECT, 0)

    if state == CacheState.CONNECTING:
        if event == CacheEvent.CONNECTED:
            return CacheTransition(CacheState.READY, CacheAction.NONE, 0)
        if event == CacheEvent.CONNECT_FAILED:
            failed = attempts + 1
            if failed >= max_retries:
                return CacheTransition(CacheState.DEGRADED, CacheAction.GIVE_UP, failed)
            return CacheTransition(
                CacheState.CONNECTING,
                CacheAction.RETRY,
                failed,
                backoff_delay(attempts, backoff_base, backoff_max),
            )

    if state == CacheState.READY and event == CacheEvent.OPERATION_FAILED:
        return CacheTransition(CacheState.DISCONNECTED, CacheAction.NONE, 0)

    return CacheTransition(state, CacheAction.NONE, attempts)


class RedisCache:
    """JSON values in Redis under a global key prefix."""

    def __init__(
        self,
        url: str,
        prefix: str,
        *,
        socket_timeout: float = 0.5,
        max_retries: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 30.0,
        client: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.prefix = prefix
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.logger = logger or get_logger("cache")
        self._sleep = sleep
        self._client = client or redis_async.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self.state = CacheState.DISCONNECTED
        self.attempts = 0
        self._lock = asyncio.Lock()

    def key(self, *parts: str) -> str:
        return ":".join([self.prefix, *parts])

    def _apply(self, event: CacheEvent) -> CacheTransition:
        transition = next_cache_state(
            self.state,
            event,
            self.attempts,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
        )
        if transition.state != self.state:
            self.logger.info(
                "Cache state change",
                extra={"context": {"from": self.state.value, "to": transition.state.value, "event": event.value}},
            )
        self.state = transition.state
        self.attempts = transition.attempts
        return transition

    async def ensure_ready(self) -> None:
        async with self._lock:
            if self.state == CacheState.READY:
                return
            if self.state == CacheState.DEGRADED:
                raise PersistenceError("Cache is degraded; giving up on reconnects")

            last_error: Optional[Exception] = None
            transition = self._apply(CacheEvent.CONNECT_REQUESTED)
            while transition.action in (CacheAction.CONNECT, CacheAction.RETRY):
                if transition.delay:
                    await self._sleep(transition.delay)
                try:
                    await self._client.ping()
                except (RedisError, OSError) as exc:
                    last_error = exc
                    self.logger.warning(f"Cache connect attempt failed: {exc}")
                    transition = self._apply(CacheEvent.CONNECT_FAILED)
                    continue
                transition = self._apply(CacheEvent.CONNECTED)

            if self.state != CacheState.READY:
                raise PersistenceError(f"Cache unavailable: {last_error}")

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        await self.ensure_ready()
        try:
            return await call()
        except (RedisError, OSError) as exc:
            self._apply(CacheEvent.OPERATION_FAILED)
            raise PersistenceError(f"Cache {operation} failed: {exc}") from exc

    async def get_json(self, key: str) -> Any:
        raw = await self._run("get", lambda: self._client.get(key))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self.logger.warning(f"Cache value is not JSON, ignoring: {key}")
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        await self._run("set", lambda: self._client.setex(key, ttl_seconds, payload))

    async def delete(self, key: str) -> None:
        await self._run("delete", lambda: self._client.delete(key))

    async def close(self) -> None:
        try:
            await self._client.aclose()
        finally:
            self._apply(CacheEvent.CLOSED)
