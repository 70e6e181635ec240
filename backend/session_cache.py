"""
Session snapshot cache.

In-progress work for one question is cached under
``codeEditor_{assessmentId}_{questionId}_{userId}`` so a reload can restore
code, the remaining time and the last test results. Entries older than the
configured max age (24h) are treated as absent and removed on read.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from constants import CONTAINER, SESSION_CACHE_MAX_AGE_SECONDS
from datetime_utils import now_ms
from models import SessionSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionKey:
    assessment_id: str
    question_id: str
    user_id: str

    def __str__(self) -> str:
        return f"codeEditor_{self.assessment_id}_{self.question_id}_{self.user_id}"


class SessionStore:
    """Key-value store interface for session snapshots."""

    async def get(self, key: SessionKey) -> Optional[SessionSnapshot]:
        raise NotImplementedError

    async def put(self, key: SessionKey, snapshot: SessionSnapshot) -> None:
        raise NotImplementedError

    async def delete(self, key: SessionKey) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._items: Dict[str, Dict] = {}

    async def get(self, key: SessionKey) -> Optional[SessionSnapshot]:
        data = self._items.get(str(key))
        return SessionSnapshot.model_validate(data) if data is not None else None

    async def put(self, key: SessionKey, snapshot: SessionSnapshot) -> None:
        self._items[str(key)] = snapshot.model_dump(mode="json", by_alias=True)

    async def delete(self, key: SessionKey) -> None:
        self._items.pop(str(key), None)


class CosmosSessionStore(SessionStore):
    """Snapshots stored in the session_cache container (partitioned by user, 24h TTL)."""

    def __init__(self, db):
        self.db = db

    async def get(self, key: SessionKey) -> Optional[SessionSnapshot]:
        doc = await self.db.read_item(CONTAINER["SESSION_CACHE"], str(key), partition_key=key.user_id)
        if not doc:
            return None
        return SessionSnapshot.model_validate(doc.get("snapshot") or {})

    async def put(self, key: SessionKey, snapshot: SessionSnapshot) -> None:
        await self.db.upsert_item(CONTAINER["SESSION_CACHE"], {
            "id": str(key),
            "user_id": key.user_id,
            "assessment_id": key.assessment_id,
            "question_id": key.question_id,
            "snapshot": snapshot.model_dump(mode="json", by_alias=True),
        }, partition_key=key.user_id)

    async def delete(self, key: SessionKey) -> None:
        await self.db.delete_item(CONTAINER["SESSION_CACHE"], str(key), partition_key=key.user_id)


class SessionCache:
    """Expiry-aware facade over a SessionStore."""

    def __init__(self, store: SessionStore, max_age_seconds: int = SESSION_CACHE_MAX_AGE_SECONDS):
        self.store = store
        self.max_age_ms = max_age_seconds * 1000

    async def save(self, key: SessionKey, snapshot: SessionSnapshot) -> SessionSnapshot:
        stamped = snapshot.model_copy(update={"last_saved": now_ms()})
        try:
            await self.store.put(key, stamped)
        except Exception:
            # a failed cache write must not interrupt the session
            logger.exception("Failed to write session cache entry %s", key)
        return stamped

    async def load(self, key: SessionKey) -> Optional[SessionSnapshot]:
        try:
            snapshot = await self.store.get(key)
        except Exception:
            logger.exception("Failed to read session cache entry %s", key)
            return None
        if snapshot is None:
            return None
        if now_ms() - snapshot.last_saved > self.max_age_ms:
            logger.info("Discarding expired session cache entry %s", key)
            await self.clear(key)
            return None
        return snapshot

    async def clear(self, key: SessionKey) -> None:
        try:
            await self.store.delete(key)
        except Exception:
            logger.exception("Failed to clear session cache entry %s", key)
