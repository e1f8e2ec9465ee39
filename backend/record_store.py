"""
Interview Rooms - Keyed record storage

Every entity is stored as a JSON document under (collection, key). Three
backends share one interface:

- SQLRecordStore: one row per record in ``stored_records`` (production)
- FileRecordStore: one JSON file per record under a data directory
- MemoryRecordStore: process-local dictionaries (tests, development)

Writes may carry an ``expected_version`` for compare-and-swap updates.
``RoomLocks`` serializes mutating operations per room inside one process.
"""

import os
import re
import copy
import json
import time
import asyncio
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import StaleRecordError
from models import StoredRecord, utcnow

logger = logging.getLogger("interview-rooms.store")

COLLECTION_PATTERN = re.compile(r"^[a-z_]+(/[a-z_]+)*$")


@dataclass
class Record:
    key: str
    document: Dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime


def is_valid_key(key: Optional[str]) -> bool:
    return bool(key) and len(key) <= 160 and "/" not in key and "\\" not in key and ".." not in key


def validate_location(collection: str, key: str) -> None:
    if not COLLECTION_PATTERN.match(collection or ""):
        raise ValueError(f"Invalid collection name: {collection!r}")
    if not is_valid_key(key):
        raise ValueError(f"Invalid record key: {key!r}")


class RecordStore(ABC):
    """Abstract keyed document store grouped into named collections"""

    backend = "abstract"

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        record = await self.get_record(collection, key)
        return record.document if record else None

    async def list(self, collection: str) -> List[Dict[str, Any]]:
        return [record.document for record in await self.list_records(collection)]

    @abstractmethod
    async def get_record(self, collection: str, key: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def put(
        self,
        collection: str,
        key: str,
        document: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        """Write a document and return its new version.

        ``expected_version=None`` writes unconditionally, ``0`` requires the
        record to be absent and any other value must match the stored version.
        A failed condition raises StaleRecordError.
        """

    @abstractmethod
    async def list_records(self, collection: str) -> List[Record]:
        """All records of a collection in insertion order"""

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        ...


# ============================================================
# SQL BACKEND
# ============================================================

class SQLRecordStore(RecordStore):
    """Record store over the ``stored_records`` table; every write is its own transaction"""

    backend = "sql"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load(self, collection: str, key: str) -> Optional[StoredRecord]:
        stmt = (
            select(StoredRecord)
            .where(StoredRecord.collection == collection, StoredRecord.key == key)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_record(row: StoredRecord) -> Record:
        return Record(
            key=row.key,
            document=copy.deepcopy(row.document),
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def get_record(self, collection: str, key: str) -> Optional[Record]:
        validate_location(collection, key)
        row = await self._load(collection, key)
        return self._to_record(row) if row else None

    async def put(self, collection, key, document, expected_version=None) -> int:
        validate_location(collection, key)
        now = utcnow()
        doc = copy.deepcopy(document)

        try:
            if expected_version is None:
                row = await self._load(collection, key)
                if row is None:
                    self.session.add(StoredRecord(
                        collection=collection, key=key, document=doc,
                        version=1, created_at=now, updated_at=now,
                    ))
                    version = 1
                else:
                    row.document = doc
                    row.version = row.version + 1
                    row.updated_at = now
                    version = row.version
            elif expected_version == 0:
                self.session.add(StoredRecord(
                    collection=collection, key=key, document=doc,
                    version=1, created_at=now, updated_at=now,
                ))
                version = 1
            else:
                stmt = (
                    update(StoredRecord)
                    .where(
                        StoredRecord.collection == collection,
                        StoredRecord.key == key,
                        StoredRecord.version == expected_version,
                    )
                    .values(document=doc, version=expected_version + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                result = await self.session.execute(stmt)
                if result.rowcount != 1:
                    await self.session.rollback()
                    raise StaleRecordError(
                        f"{collection}/{key} changed concurrently",
                        expected_version=expected_version,
                    )
                version = expected_version + 1
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise StaleRecordError(f"{collection}/{key} already exists")

        return version

    async def list_records(self, collection: str) -> List[Record]:
        stmt = (
            select(StoredRecord)
            .where(StoredRecord.collection == collection)
            .order_by(StoredRecord.seq.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._to_record(row) for row in result.scalars().all()]

    async def delete(self, collection: str, key: str) -> bool:
        validate_location(collection, key)
        stmt = delete(StoredRecord).where(
            StoredRecord.collection == collection, StoredRecord.key == key
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0


# ============================================================
# FILE BACKEND
# ============================================================

class FileRecordStore(RecordStore):
    """One JSON file per record: ``<root>/<collection>/<key>.json``"""

    backend = "file"

    def __init__(self, root: str):
        self.root = Path(root)
        self._mutex = threading.Lock()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, collection: str, key: str) -> Path:
        return self.root / collection / f"{key}.json"

    @staticmethod
    def _read(path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None

    @staticmethod
    def _write(path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, default=str)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    @staticmethod
    def _to_record(payload: Dict[str, Any]) -> Record:
        return Record(
            key=payload["key"],
            document=payload["document"],
            version=payload["version"],
            created_at=datetime.fromisoformat(payload["created_at"]),
            updated_at=datetime.fromisoformat(payload["updated_at"]),
        )

    def _get_sync(self, collection: str, key: str) -> Optional[Record]:
        payload = self._read(self._path(collection, key))
        return self._to_record(payload) if payload else None

    def _put_sync(self, collection, key, document, expected_version) -> int:
        path = self._path(collection, key)
        with self._mutex:
            current = self._read(path)
            if expected_version is not None:
                current_version = current["version"] if current else 0
                if current_version != expected_version:
                    raise StaleRecordError(
                        f"{collection}/{key} changed concurrently",
                        expected_version=expected_version,
                    )
            now = utcnow().isoformat()
            payload = {
                "key": key,
                "version": (current["version"] + 1) if current else 1,
                "seq": current["seq"] if current else time.time_ns(),
                "created_at": current["created_at"] if current else now,
                "updated_at": now,
                "document": document,
            }
            self._write(path, payload)
            return payload["version"]

    def _list_sync(self, collection: str) -> List[Record]:
        directory = self.root / collection
        if not directory.is_dir():
            return []
        payloads = []
        for path in directory.glob("*.json"):
            payload = self._read(path)
            if payload:
                payloads.append(payload)
        payloads.sort(key=lambda p: p.get("seq", 0))
        return [self._to_record(p) for p in payloads]

    def _delete_sync(self, collection: str, key: str) -> bool:
        with self._mutex:
            try:
                self._path(collection, key).unlink()
                return True
            except FileNotFoundError:
                return False

    async def get_record(self, collection: str, key: str) -> Optional[Record]:
        validate_location(collection, key)
        return await asyncio.to_thread(self._get_sync, collection, key)

    async def put(self, collection, key, document, expected_version=None) -> int:
        validate_location(collection, key)
        return await asyncio.to_thread(
            self._put_sync, collection, key, copy.deepcopy(document), expected_version
        )

    async def list_records(self, collection: str) -> List[Record]:
        return await asyncio.to_thread(self._list_sync, collection)

    async def delete(self, collection: str, key: str) -> bool:
        validate_location(collection, key)
        return await asyncio.to_thread(self._delete_sync, collection, key)


# ============================================================
# IN-MEMORY BACKEND
# ============================================================

class MemoryRecordStore(RecordStore):
    """Process-local store; yields to the event loop on every call like real I/O would"""

    backend = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, Record]] = {}

    async def get_record(self, collection: str, key: str) -> Optional[Record]:
        validate_location(collection, key)
        await asyncio.sleep(0)
        record = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(record) if record else None

    async def put(self, collection, key, document, expected_version=None) -> int:
        validate_location(collection, key)
        await asyncio.sleep(0)
        records = self._collections.setdefault(collection, {})
        current = records.get(key)
        if expected_version is not None:
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise StaleRecordError(
                    f"{collection}/{key} changed concurrently",
                    expected_version=expected_version,
                )
        now = utcnow()
        if current:
            current.document = copy.deepcopy(document)
            current.version += 1
            current.updated_at = now
            return current.version
        records[key] = Record(key=key, document=copy.deepcopy(document), version=1, created_at=now, updated_at=now)
        return 1

    async def list_records(self, collection: str) -> List[Record]:
        await asyncio.sleep(0)
        return [copy.deepcopy(r) for r in self._collections.get(collection, {}).values()]

    async def delete(self, collection: str, key: str) -> bool:
        validate_location(collection, key)
        await asyncio.sleep(0)
        return self._collections.get(collection, {}).pop(key, None) is not None


# ============================================================
# PER-ROOM LOCKING
# ============================================================

class _ReentrantLock:
    """asyncio lock that the owning task may acquire again without deadlocking"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._depth = 0

    async def acquire(self) -> None:
        task = asyncio.current_task()
        if self._owner is task:
            self._depth += 1
            return
        await self._lock.acquire()
        self._owner = task
        self._depth = 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()


class RoomLocks:
    """One lock per room id; rooms never coordinate with each other.

    A room's lock is dropped once no task holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, _ReentrantLock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, room_id: str):
        lock = self._locks.setdefault(room_id, _ReentrantLock())
        self._users[room_id] = self._users.get(room_id, 0) + 1
        try:
            await lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[room_id] -= 1
            if not self._users[room_id]:
                del self._users[room_id]
                del self._locks[room_id]

    def tracked(self) -> int:
        return len(self._locks)
