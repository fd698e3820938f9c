"""
Dépendances partagées de l'API (surchargées dans les tests via
app.dependency_overrides).
"""
import threading
from typing import Optional

import redis
from rq import Queue

from clearance.core.config import REDIS_URL
from clearance.db.redis_resource import RedisResource
from clearance.services.cache_service import CacheService

_resource: Optional[RedisResource] = None
_resource_lock = threading.Lock()


def get_redis_resource() -> RedisResource:
    global _resource
    with _resource_lock:
        if _resource is None:
            _resource = RedisResource(REDIS_URL)
        return _resource


def get_cache() -> CacheService:
    return CacheService(get_redis_resource())


def get_queue_connection() -> "redis.Redis":
    return redis.from_url(REDIS_URL)


def get_refresh_queue() -> Queue:
    return Queue("high", connection=get_queue_connection())
