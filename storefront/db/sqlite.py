from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import sqlite3
import threading
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from storefront.config import settings

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

# every committed write gets a version so subscribers can drop stale snapshots
_write_lock = threading.Lock()
_versions = itertools.count(1)

# (db_path, collection) -> queues of live subscribe() generators
_listeners: Dict[Tuple[str, str], List[asyncio.Queue]] = {}


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or settings.db_path
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        with open(os.path.join(os.path.dirname(__file__), "schema.sql"), "r", encoding="utf-8") as f:
            conn.executescript(f.read())
        conn.commit()
    finally:
        conn.close()


def _new_id() -> str:
    return uuid.uuid4().hex[:20]


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _rows_to_docs(rows) -> List[Document]:
    docs = []
    for r in rows:
        doc = json.loads(r["data"])
        doc["id"] = r["id"]
        docs.append(doc)
    return docs


class SqliteCollection:
    """One named collection in the local SQLite document store.

    Implements ``RemoteCollectionPort``. Blocking sqlite calls run in a worker
    thread; change notifications are delivered on the event loop to every
    ``subscribe()`` of the same collection and database in this process.
    """

    def __init__(self, collection: str, db_path: Optional[str] = None):
        self.collection = collection
        self.db_path = db_path or settings.db_path

    def __repr__(self) -> str:
        return f"SqliteCollection({self.collection!r})"

    @property
    def _key(self) -> Tuple[str, str]:
        return (self.db_path, self.collection)

    # ---------------- sync ----------------

    def _select_all(self, conn: sqlite3.Connection) -> List[Document]:
        rows = conn.execute(
            "SELECT id, data FROM documents WHERE collection=? ORDER BY rowid",
            (self.collection,),
        ).fetchall()
        return _rows_to_docs(rows)

    def _snapshot_sync(self) -> Tuple[int, List[Document]]:
        conn = _connect(self.db_path)
        try:
            with _write_lock:
                return next(_versions), self._select_all(conn)
        finally:
            conn.close()

    def _get_sync(self, document_id: str) -> Optional[Document]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection=? AND id=?",
                (self.collection, document_id),
            ).fetchone()
            return _rows_to_docs([row])[0] if row else None
        finally:
            conn.close()

    def _write_sync(self, op: str, document_id: str, data: Document) -> Tuple[int, List[Document]]:
        conn = _connect(self.db_path)
        try:
            with _write_lock:
                conn.execute("BEGIN")
                row = conn.execute(
                    "SELECT data FROM documents WHERE collection=? AND id=?",
                    (self.collection, document_id),
                ).fetchone()

                if op == "delete":
                    conn.execute(
                        "DELETE FROM documents WHERE collection=? AND id=?",
                        (self.collection, document_id),
                    )
                elif op == "update" and not row:
                    conn.execute("ROLLBACK")
                    raise LookupError(f"document {document_id} not found in {self.collection}")
                elif row:
                    # add with an explicit id and update both merge into the stored fields
                    merged = json.loads(row["data"])
                    merged.update(data)
                    conn.execute(
                        "UPDATE documents SET data=?, updated_at=? WHERE collection=? AND id=?",
                        (json.dumps(merged), _now(), self.collection, document_id),
                    )
                else:
                    conn.execute(
                        "INSERT INTO documents(collection, id, data, updated_at) VALUES(?,?,?,?)",
                        (self.collection, document_id, json.dumps(data), _now()),
                    )

                conn.commit()
                return next(_versions), self._select_all(conn)
        finally:
            conn.close()

    def _publish(self, version: int, docs: List[Document]) -> None:
        for queue in list(_listeners.get(self._key, ())):
            queue.put_nowait((version, docs))

    async def _write(self, op: str, document_id: str, data: Document) -> None:
        version, docs = await asyncio.to_thread(self._write_sync, op, document_id, data)
        self._publish(version, docs)

    # ---------------- port ----------------

    async def fetch_all(self) -> List[Document]:
        _, docs = await asyncio.to_thread(self._snapshot_sync)
        return docs

    async def get(self, document_id: str) -> Optional[Document]:
        return await asyncio.to_thread(self._get_sync, document_id)

    async def add(self, data: Document, document_id: Optional[str] = None) -> str:
        doc_id = document_id or _new_id()
        body = {k: v for k, v in data.items() if k != "id"}
        await self._write("add", doc_id, body)
        return doc_id

    async def update(self, document_id: str, fields: Document) -> None:
        await self._write("update", document_id, dict(fields))

    async def delete(self, document_id: str) -> None:
        await self._write("delete", document_id, {})

    async def subscribe(self) -> AsyncIterator[List[Document]]:
        queue: asyncio.Queue = asyncio.Queue()
        _listeners.setdefault(self._key, []).append(queue)
        logger.debug("subscribed to %s", self.collection)
        try:
            last, docs = await asyncio.to_thread(self._snapshot_sync)
            fresh = True
            while True:
                # never hand out a list older than a write already published
                while not queue.empty():
                    version, newer = queue.get_nowait()
                    if version > last:
                        last, docs, fresh = version, newer, True
                if fresh:
                    fresh = False
                    yield docs
                version, newer = await queue.get()
                if version > last:
                    last, docs, fresh = version, newer, True
        finally:
            queues = _listeners.get(self._key, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                _listeners.pop(self._key, None)
            logger.debug("unsubscribed from %s", self.collection)


def collection_factory(template: str, db_path: Optional[str] = None):
    """Port factory for a per-user collection such as ``users/{user_id}/cart``."""

    def factory(user_id: str) -> SqliteCollection:
        return SqliteCollection(template.format(user_id=user_id), db_path=db_path)

    return factory
