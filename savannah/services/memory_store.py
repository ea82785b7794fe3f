"""
Persistence gateway for the emotional engine.

Every value is wrapped in a StoredRecord envelope stamped with `saved_at`;
each category carries its own retention window. Loads that hit an expired or
malformed record delete it and report "nothing stored". Backend failures and
timeouts are logged and absorbed: `load` returns None, `save` returns False.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from savannah.core.config import Settings, settings as default_settings
from savannah.core.errors import PersistenceError
from savannah.db.models import MemoryRecord
from savannah.schemas.records import RECORD_VERSION, BackupRecord, StoredRecord

log = logging.getLogger("savannah-store")

Clock = Callable[[], datetime]

CONVERSATION_CAP = 50
INDEX_KEY = "relationship_index"
BACKUP_KEY = "backup"


@dataclass(frozen=True)
class MemoryCategory:
    name: str
    retention: timedelta
    backup: bool
    list_cap: Optional[int] = None


CATEGORIES: Dict[str, MemoryCategory] = {
    c.name: c
    for c in (
        MemoryCategory("emotional_state", timedelta(days=7), backup=True),
        MemoryCategory("relationships", timedelta(days=90), backup=True),
        MemoryCategory("conversations", timedelta(days=14), backup=False, list_cap=CONVERSATION_CAP),
        MemoryCategory("preferences", timedelta(days=365), backup=True),
        MemoryCategory("engagement_history", timedelta(days=60), backup=True, list_cap=500),
    )
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def category_for(name: str) -> MemoryCategory:
    try:
        return CATEGORIES[name]
    except KeyError:
        raise ValueError(f"Unknown memory category: {name}") from None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class KeyValueBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str) -> List[str]: ...


class InMemoryBackend:
    """Process-local dict. Retention is enforced by the envelope, not here."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class RedisBackend:
    def __init__(self, client=None, url: Optional[str] = None):
        self._client = client
        self._url = url

    async def _redis(self):
        if self._client is None:
            from savannah.utils.redis_pool import get_redis
            self._client = await get_redis(self._url)
        return self._client

    async def get(self, key: str) -> Optional[str]:
        try:
            r = await self._redis()
            return await r.get(key)
        except RedisError as e:
            raise PersistenceError(f"redis get failed for {key}") from e

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            r = await self._redis()
            if ttl_seconds:
                await r.set(key, value, ex=ttl_seconds)
            else:
                await r.set(key, value)
        except RedisError as e:
            raise PersistenceError(f"redis set failed for {key}") from e

    async def delete(self, key: str) -> None:
        try:
            r = await self._redis()
            await r.delete(key)
        except RedisError as e:
            raise PersistenceError(f"redis delete failed for {key}") from e

    async def keys(self, prefix: str) -> List[str]:
        try:
            r = await self._redis()
            return [k async for k in r.scan_iter(match=f"{prefix}*", count=500)]
        except RedisError as e:
            raise PersistenceError(f"redis scan failed for {prefix}") from e


class SqlBackend:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], clock: Clock = _utcnow):
        self._sessionmaker = sessionmaker
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self._sessionmaker() as db:
                row = await db.get(MemoryRecord, key)
                if row is None:
                    return None
                if row.expires_at is not None and _aware(row.expires_at) <= self._clock():
                    return None
                return row.value
        except SQLAlchemyError as e:
            raise PersistenceError(f"sql get failed for {key}") from e

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        now = self._clock()
        expires = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        try:
            async with self._sessionmaker() as db:
                await db.merge(MemoryRecord(key=key, value=value, updated_at=now, expires_at=expires))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"sql set failed for {key}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._sessionmaker() as db:
                await db.execute(delete(MemoryRecord).where(MemoryRecord.key == key))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"sql delete failed for {key}") from e

    async def keys(self, prefix: str) -> List[str]:
        try:
            async with self._sessionmaker() as db:
                res = await db.execute(select(MemoryRecord.key).where(MemoryRecord.key.startswith(prefix)))
                return list(res.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"sql scan failed for {prefix}") from e


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class MemoryStore:
    def __init__(
        self,
        backend: KeyValueBackend,
        prefix: str = "savannah_emotional",
        timeout_seconds: float = 5.0,
        backup_keep: int = 3,
        clock: Clock = _utcnow,
    ):
        self.backend = backend
        self.prefix = prefix
        self.timeout = timeout_seconds
        self.backup_keep = backup_keep
        self.clock = clock

    # ---- keys ----

    def key(self, user_id: str, category: str) -> str:
        return f"{self.prefix}_{category}_{user_id}"

    @property
    def index_key(self) -> str:
        return f"{self.prefix}_{INDEX_KEY}"

    @property
    def backup_prefix(self) -> str:
        return f"{self.prefix}_{BACKUP_KEY}_"

    async def _call(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    # ---- envelope ----

    def _is_expired(self, record: StoredRecord, cat: Optional[MemoryCategory]) -> bool:
        if cat is None:
            return False
        return self.clock() - _aware(record.saved_at) > cat.retention

    async def _read(self, key: str, cat: Optional[MemoryCategory]) -> Optional[StoredRecord]:
        raw = await self._call(self.backend.get(key))
        if raw is None:
            return None
        try:
            record = StoredRecord.model_validate_json(raw)
        except ValidationError:
            log.warning("[STORE] malformed record at %s, dropping", key)
            await self._call(self.backend.delete(key))
            return None
        if self._is_expired(record, cat):
            log.info("[STORE] expired record at %s (saved %s), dropping", key, record.saved_at.isoformat())
            await self._call(self.backend.delete(key))
            return None
        return record

    async def _write(self, key: str, category: str, user_id: Optional[str], payload: Any,
                     cat: Optional[MemoryCategory]) -> None:
        record = StoredRecord(category=category, user_id=user_id, saved_at=self.clock(), payload=payload)
        ttl = int(cat.retention.total_seconds()) if cat else None
        await self._call(self.backend.set(key, record.model_dump_json(), ttl))

    # ---- gateway ----

    async def load(self, user_id: str, category: str) -> Optional[Any]:
        """Stored payload, or None when absent, expired, malformed, or the backend failed."""
        cat = category_for(category)
        key = self.key(user_id, category)
        try:
            record = await self._read(key, cat)
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] load failed for %s: %s", key, e, exc_info=True)
            return None
        return None if record is None else record.payload

    async def save(self, user_id: str, category: str, value: Any) -> bool:
        cat = category_for(category)
        key = self.key(user_id, category)
        try:
            await self._write(key, category, user_id, value, cat)
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] save failed for %s: %s", key, e, exc_info=True)
            return False
        return True

    async def delete(self, user_id: str, category: str) -> bool:
        key = self.key(user_id, category_for(category).name)
        try:
            await self._call(self.backend.delete(key))
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] delete failed for %s: %s", key, e, exc_info=True)
            return False
        return True

    async def append_entry(self, user_id: str, category: str, entry: Dict[str, Any]) -> bool:
        """Append a timestamped entry to a list category, dropping entries past retention and over the cap."""
        cat = category_for(category)
        if cat.list_cap is None:
            raise ValueError(f"{category} is not a list category")

        now = self.clock()
        entries = await self.load(user_id, category) or []
        entries = [e for e in entries if self._entry_fresh(e, cat, now)]
        entries.append({**entry, "timestamp": now.isoformat()})
        return await self.save(user_id, category, entries[-cat.list_cap:])

    async def load_entries(self, user_id: str, category: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        cat = category_for(category)
        now = self.clock()
        entries = [e for e in (await self.load(user_id, category) or []) if self._entry_fresh(e, cat, now)]
        return entries[-limit:] if limit else entries

    @staticmethod
    def _entry_fresh(entry: Any, cat: MemoryCategory, now: datetime) -> bool:
        if not isinstance(entry, dict):
            return False
        try:
            ts = _aware(datetime.fromisoformat(str(entry.get("timestamp"))))
        except ValueError:
            return False
        return now - ts <= cat.retention

    # ---- relationship index ----

    async def update_index(self, user_id: str, summary: Dict[str, Any]) -> bool:
        try:
            record = await self._read(self.index_key, None)
            index = dict(record.payload) if record and isinstance(record.payload, dict) else {}
            index[user_id] = {**summary, "last_updated": self.clock().isoformat()}
            await self._write(self.index_key, INDEX_KEY, None, index, None)
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] index update failed for %s: %s", user_id, e, exc_info=True)
            return False
        return True

    async def relationship_index(self) -> Dict[str, Any]:
        try:
            record = await self._read(self.index_key, None)
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] index read failed: %s", e, exc_info=True)
            return {}
        return dict(record.payload) if record and isinstance(record.payload, dict) else {}

    # ---- maintenance ----

    async def _category_keys(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for name in CATEGORIES:
            out[name] = await self._call(self.backend.keys(f"{self.prefix}_{name}_"))
        return out

    async def cleanup_expired(self) -> int:
        """Sweep every category and drop records past retention. Returns how many were removed."""
        removed = 0
        try:
            for name, keys in (await self._category_keys()).items():
                cat = CATEGORIES[name]
                for key in keys:
                    raw = await self._call(self.backend.get(key))
                    if raw is None:
                        continue
                    if await self._read(key, cat) is None:
                        removed += 1
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] cleanup failed: %s", e, exc_info=True)
        if removed:
            log.info("[STORE] cleanup removed %d expired records", removed)
        return removed

    async def storage_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"categories": {}, "total_records": 0, "total_bytes": 0, "backups": 0}
        try:
            for name, keys in (await self._category_keys()).items():
                size = 0
                for key in keys:
                    raw = await self._call(self.backend.get(key))
                    size += len(raw.encode("utf-8")) if raw else 0
                stats["categories"][name] = {"records": len(keys), "bytes": size}
                stats["total_records"] += len(keys)
                stats["total_bytes"] += size
            stats["backups"] = len(await self._call(self.backend.keys(self.backup_prefix)))
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] stats failed: %s", e, exc_info=True)
        return stats

    async def export_all(self) -> Dict[str, str]:
        """Raw envelopes for every backed-up category, keyed by store key."""
        data: Dict[str, str] = {}
        for name, keys in (await self._category_keys()).items():
            if not CATEGORIES[name].backup:
                continue
            for key in keys:
                raw = await self._call(self.backend.get(key))
                if raw is not None:
                    data[key] = raw
        return data

    async def import_all(self, data: Dict[str, str]) -> int:
        """Write envelopes back. Keys outside this store's prefix or failing validation are skipped."""
        written = 0
        try:
            for key, raw in data.items():
                if not key.startswith(f"{self.prefix}_"):
                    continue
                try:
                    StoredRecord.model_validate_json(raw)
                except ValidationError:
                    log.warning("[STORE] skipping malformed import for %s", key)
                    continue
                await self._call(self.backend.set(key, raw))
                written += 1
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] import failed after %d records: %s", written, e, exc_info=True)
        return written

    async def create_backup(self) -> Optional[str]:
        try:
            now = self.clock()
            backup = BackupRecord(created_at=now, version=RECORD_VERSION, data=await self.export_all())
            key = f"{self.backup_prefix}{int(now.timestamp() * 1000)}"
            await self._call(self.backend.set(key, backup.model_dump_json()))

            backups = sorted(await self._call(self.backend.keys(self.backup_prefix)), key=self._backup_stamp)
            for stale in backups[:-self.backup_keep] if self.backup_keep > 0 else backups:
                await self._call(self.backend.delete(stale))
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] backup failed: %s", e, exc_info=True)
            return None
        log.info("[STORE] backup %s written (%d records)", key, len(backup.data))
        return key

    async def restore_backup(self, key: Optional[str] = None) -> bool:
        """Restore the named backup, or the latest one."""
        try:
            if key is None:
                backups = sorted(await self._call(self.backend.keys(self.backup_prefix)), key=self._backup_stamp)
                if not backups:
                    log.warning("[STORE] no backups to restore")
                    return False
                key = backups[-1]
            raw = await self._call(self.backend.get(key))
        except (PersistenceError, asyncio.TimeoutError) as e:
            log.error("[STORE] restore failed: %s", e, exc_info=True)
            return False
        if raw is None:
            log.warning("[STORE] backup %s not found", key)
            return False
        try:
            backup = BackupRecord.model_validate_json(raw)
        except ValidationError:
            log.error("[STORE] backup %s is malformed", key)
            return False
        restored = await self.import_all(backup.data)
        log.info("[STORE] restored %d records from %s", restored, key)
        return restored == len(backup.data)

    def _backup_stamp(self, key: str) -> int:
        try:
            return int(key[len(self.backup_prefix):])
        except ValueError:
            return 0


def build_store(cfg: Optional[Settings] = None, clock: Clock = _utcnow) -> MemoryStore:
    cfg = cfg or default_settings
    if cfg.STORE_BACKEND == "redis":
        backend: KeyValueBackend = RedisBackend(url=cfg.REDIS_URL)
    elif cfg.STORE_BACKEND == "sql":
        from savannah.db.session import get_sessionmaker
        backend = SqlBackend(get_sessionmaker(cfg.DB_URL), clock=clock)
    else:
        backend = InMemoryBackend()
    log.info("[STORE] using %s backend", cfg.STORE_BACKEND)
    return MemoryStore(
        backend,
        prefix=cfg.STORE_PREFIX,
        timeout_seconds=cfg.STORE_TIMEOUT_SECONDS,
        backup_keep=cfg.BACKUP_KEEP,
        clock=clock,
    )
