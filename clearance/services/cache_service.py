"""
Cache Service - read-through Redis, best effort.

Toute erreur Redis ou JSON est traitée comme un miss (lecture) ou un no-op
(écriture / invalidation). Le cache n'est jamais nécessaire au bon
fonctionnement: sans Redis, chaque lecture va directement en base.
"""
import hashlib
import json
import re
from typing import Any, Callable, Dict, Optional

import redis
from loguru import logger

from clearance.core.exceptions import CacheError
from clearance.db.redis_resource import RedisResource

CACHE_TTL = {
    "deals_list": 300,
    "deal_single": 600,
    "categories": 3600,
}

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class CacheService:
    def __init__(self, resource: Optional[RedisResource], namespace: str = "clearance"):
        self.resource = resource
        self.namespace = namespace

    # ------------------------------------------------------------------
    # Clés
    # ------------------------------------------------------------------

    def key(self, prefix: str, *parts: Any) -> str:
        clean = [
            _UNSAFE_KEY_CHARS.sub("_", str(part))
            for part in parts
            if part is not None and part != ""
        ]
        return ":".join([self.namespace, prefix] + clean)

    def deals_list_key(self, params: Dict[str, Any]) -> str:
        """Clé stable: indépendante de l'ordre des filtres, None ignorés."""
        filter_str = "&".join(
            f"{k}={params[k]}" for k in sorted(params) if params[k] is not None
        )
        digest = hashlib.md5((filter_str or "all").encode()).hexdigest()[:16]
        return self.key("deals", "list", digest)

    def deal_key(self, deal_id: Any) -> str:
        return self.key("deals", "single", deal_id)

    def categories_key(self, active_only: bool = False) -> str:
        return self.key("categories", "list", "active" if active_only else "all")

    # ------------------------------------------------------------------
    # Opérations
    # ------------------------------------------------------------------

    def _client(self):
        if self.resource is None:
            return None
        return self.resource.client()

    def _failed(self, op: str, key: str, error: Exception):
        logger.debug(f"Cache {op} failed for {key[:60]}: {error}")
        if isinstance(error, (redis.ConnectionError, redis.TimeoutError)) and self.resource is not None:
            self.resource.mark_failed()

    def _decode(self, key: str, raw: Any) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Corrupted value for {key[:60]}", detail=str(e)) from e

    def get(self, key: str) -> Optional[Any]:
        client = self._client()
        if client is None:
            return None
        try:
            raw = client.get(key)
        except redis.RedisError as e:
            self._failed("get", key, e)
            return None
        if raw is None:
            return None
        try:
            value = self._decode(key, raw)
        except CacheError as e:
            self._failed("decode", key, e)
            return None
        logger.debug(f"Cache HIT {key[:60]}")
        return value

    def set(self, key: str, value: Any, ttl: int = CACHE_TTL["deals_list"]) -> bool:
        client = self._client()
        if client is None:
            return False
        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            self._failed("set", key, e)
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        client = self._client()
        if client is None:
            return 0
        try:
            keys = list(client.scan_iter(match=pattern, count=500))
            if keys:
                client.delete(*keys)
                logger.info(f"Cache invalidated: {len(keys)} keys cleared ({pattern})")
            return len(keys)
        except redis.RedisError as e:
            self._failed("invalidate", pattern, e)
            return 0

    def get_or_compute(self, key: str, compute: Callable[[], Any], ttl: int) -> Any:
        """Read-through: valeur en cache, sinon calcul + mise en cache (hors None)."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def invalidate_deals(self) -> int:
        return self.invalidate_pattern(f"{self.namespace}:deals:*")

    def invalidate_categories(self) -> int:
        return self.invalidate_pattern(f"{self.namespace}:categories:*")

    def is_available(self) -> bool:
        return self.resource is not None and self.resource.is_available()
