"""
Connexion Redis gérée comme une ressource explicite.

États: INIT -> HEALTHY | UNAVAILABLE -> CLOSED.
Après un échec, aucune reconnexion n'est tentée pendant `retry_after`
secondes; pendant cette fenêtre `client()` renvoie None et le cache se
comporte comme un miss.
"""
import threading
import time
from enum import Enum
from typing import Callable, Optional

import redis
from loguru import logger

from clearance.core.config import CACHE_CONNECT_TIMEOUT_SEC, CACHE_RETRY_AFTER_SEC, REDIS_URL


class ResourceState(str, Enum):
    INIT = "init"
    HEALTHY = "healthy"
    UNAVAILABLE = "unavailable"
    CLOSED = "closed"


class RedisResource:
    def __init__(
        self,
        url: str = REDIS_URL,
        retry_after: float = CACHE_RETRY_AFTER_SEC,
        connect_timeout: float = CACHE_CONNECT_TIMEOUT_SEC,
        clock: Callable[[], float] = time.monotonic,
        factory: Callable[..., "redis.Redis"] = redis.from_url,
    ):
        self.url = url
        self.retry_after = retry_after
        self.connect_timeout = connect_timeout
        self._clock = clock
        self._factory = factory
        self._client: Optional[redis.Redis] = None
        self._failed_at: Optional[float] = None
        self._lock = threading.Lock()
        self.state = ResourceState.INIT

    def client(self) -> Optional["redis.Redis"]:
        """Client connecté, ou None si indisponible / en cool-down / fermé."""
        with self._lock:
            if self.state == ResourceState.CLOSED:
                return None
            if self.state == ResourceState.HEALTHY and self._client is not None:
                return self._client
            if self._failed_at is not None and self._clock() - self._failed_at < self.retry_after:
                return None
            return self._connect()

    def _connect(self) -> Optional["redis.Redis"]:
        try:
            client = self._factory(
                self.url,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.connect_timeout,
            )
            client.ping()
        except (redis.RedisError, OSError) as e:
            self._client = None
            self._failed_at = self._clock()
            self.state = ResourceState.UNAVAILABLE
            logger.warning(f"Redis unavailable, retry in {self.retry_after:.0f}s: {e}")
            return None

        self._client = client
        self._failed_at = None
        self.state = ResourceState.HEALTHY
        logger.info("Redis connected")
        return client

    def mark_failed(self):
        """Signale une erreur d'opération: ouvre la fenêtre de cool-down."""
        with self._lock:
            if self.state == ResourceState.CLOSED:
                return
            self._client = None
            self._failed_at = self._clock()
            self.state = ResourceState.UNAVAILABLE

    def is_available(self) -> bool:
        return self.client() is not None

    def close(self):
        with self._lock:
            if self._client is not None:
                try:
                    self._client.close()
                except redis.RedisError as e:
                    logger.debug(f"Redis close error: {e}")
            self._client = None
            self.state = ResourceState.CLOSED
