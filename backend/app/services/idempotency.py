"""
Idempotency store backed by Redis.

A client-supplied Idempotency-Key is combined with a scope and the actor id.
A hit returns the stored response verbatim; a miss runs the operation and
stores its response only after it succeeded.
"""

import json
import re
from typing import Any, Awaitable, Callable, Dict, Optional

from backend.app.core.exceptions import ValidationError
from backend.app.core.logging_setup import get_logger

logger = get_logger(__name__)

IDEMPOTENCY_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
IDEMPOTENCY_PREFIX = "idempotency"
DEFAULT_TTL_SECONDS = 600


class IdempotencyStore:
    def __init__(self, redis, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def normalize_key(raw_key: Optional[str]) -> Optional[str]:
        """
        Trim and validate a raw header value.

        Returns None when no key was supplied.

        Raises:
            ValidationError: If the key does not match the allowed pattern
        """
        if raw_key is None:
            return None
        key = raw_key.strip()
        if not key:
            return None
        if not IDEMPOTENCY_KEY_PATTERN.match(key):
            raise ValidationError(
                "Invalid Idempotency-Key format",
                details={"pattern": IDEMPOTENCY_KEY_PATTERN.pattern},
            )
        return key

    @staticmethod
    def build_key(scope: str, actor_id: Any, key: str) -> str:
        return f"{IDEMPOTENCY_PREFIX}:{scope}:{actor_id}:{key}"

    async def get(self, scope: str, actor_id: Any, key: str) -> Optional[Dict[str, Any]]:
        stored = await self.redis.get(self.build_key(scope, actor_id, key))
        if not stored:
            return None
        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")
        try:
            return json.loads(stored).get("data")
        except (ValueError, AttributeError):
            logger.warning("Discarding unreadable idempotency entry for scope %s", scope)
            return None

    async def store(self, scope: str, actor_id: Any, key: str, data: Dict[str, Any],
                    ttl_seconds: Optional[int] = None) -> None:
        payload = json.dumps({"data": data}, default=str)
        await self.redis.set(
            self.build_key(scope, actor_id, key),
            payload,
            ex=ttl_seconds or self.ttl_seconds,
        )

    async def run(
        self,
        scope: str,
        actor_id: Any,
        raw_key: Optional[str],
        operation: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """
        Execute `operation` at most once per (scope, actor, key) within the TTL.

        The returned dict is always the JSON-normalized form, so a first call
        and a replay produce identical values.
        """
        key = self.normalize_key(raw_key)
        if key:
            cached = await self.get(scope, actor_id, key)
            if cached is not None:
                logger.info("Idempotent replay for scope=%s actor=%s", scope, actor_id)
                return cached

        result = json.loads(json.dumps(await operation(), default=str))

        if key:
            await self.store(scope, actor_id, key, result)
        return result
