"""Redis-backed cache of classifier verdicts keyed by text hash."""

from __future__ import annotations

import hashlib
import logging
import unicodedata

from redis.asyncio import Redis

from beatguard.moderation.domain.classifier import Verdict
from beatguard.obs import metrics

logger = logging.getLogger(__name__)

VERDICT_TTL_SECONDS = 60 * 60 * 24
POINTER_TTL_SECONDS = 60 * 60 * 24 * 30


def normalize_text(text: str) -> str:
    folded = unicodedata.normalize("NFKC", text or "")
    return " ".join(folded.split())


def hash_text(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


class VerdictCache:
    """Hash-keyed verdicts plus a per-target pointer to the last classified hash.

    Verdicts expire after a day; pointers after thirty days. A pointer whose
    verdict has expired is a miss.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        namespace: str = "moderation:",
        verdict_ttl: int = VERDICT_TTL_SECONDS,
        pointer_ttl: int = POINTER_TTL_SECONDS,
    ) -> None:
        self.redis = redis
        self.namespace = namespace
        self.verdict_ttl = verdict_ttl
        self.pointer_ttl = pointer_ttl

    def hash_key(self, text_hash: str) -> str:
        return f"{self.namespace}hash:{text_hash}"

    def pointer_key(self, content_type: str, content_id: str) -> str:
        return f"{self.namespace}content:{content_type}:{content_id}"

    async def lookup(self, text: str, content_type: str, content_id: str) -> Verdict | None:
        text_hash = hash_text(text)
        hash_key = self.hash_key(text_hash)
        pointer_key = self.pointer_key(content_type, content_id)

        last_hash = await self.redis.get(pointer_key)
        verdict = Verdict.from_json(await self.redis.get(hash_key))
        if verdict is None:
            metrics.inc_cache_lookup("miss")
            return None

        if last_hash == text_hash:
            metrics.inc_cache_lookup("hit_target")
        else:
            # Same text was classified for another target (or before an edit).
            await self.redis.set(pointer_key, text_hash, ex=self.pointer_ttl)
            metrics.inc_cache_lookup("hit_shared")
        logger.debug(
            "Verdict cache hit",
            extra={"content_type": content_type, "content_id": content_id, "text_hash": text_hash},
        )
        return verdict.as_cached()

    async def store(self, text: str, content_type: str, content_id: str, verdict: Verdict) -> None:
        if verdict.is_pending:
            return
        text_hash = hash_text(text)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self.hash_key(text_hash), verdict.to_json(), ex=self.verdict_ttl)
            pipe.set(self.pointer_key(content_type, content_id), text_hash, ex=self.pointer_ttl)
            await pipe.execute()

    async def invalidate(self, content_type: str, content_id: str) -> None:
        """Forget which text was last classified for a target (e.g. after an edit)."""

        await self.redis.delete(self.pointer_key(content_type, content_id))


__all__ = ["POINTER_TTL_SECONDS", "VERDICT_TTL_SECONDS", "VerdictCache", "hash_text", "normalize_text"]
