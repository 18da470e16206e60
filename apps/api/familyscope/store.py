"""Document store contract plus in-memory and SQLite backends.

The authorization layer only relies on get/query/put/delete with
per-document atomicity and an optimistic transaction primitive. Every stored
document carries a monotonically increasing version; a transaction records
the versions it read and its commit is refused with ``TransactionConflict``
when any of them moved in the meantime.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import random
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar
from uuid import uuid4

from .errors import Conflict, ConflictRetryExhausted, NotFound, StoreUnavailable, TransactionConflict

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
T = TypeVar("T")

_MISSING = object()


def new_document_id() -> str:
    return uuid4().hex


def get_field(document: Document, path: str, default: Any = None) -> Any:
    """Read a dotted path (``skillData.id``) out of a document."""
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _set_field(document: Document, path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def apply_changes(document: Document, changes: Dict[str, Any]) -> Document:
    updated = copy.deepcopy(document)
    for path, value in changes.items():
        _set_field(updated, path, value)
    return updated


def matches(document: Document, filters: Dict[str, Any]) -> bool:
    return all(get_field(document, path, _MISSING) == value for path, value in filters.items())


def sort_documents(
    documents: List[Document],
    order_by: Optional[str],
    descending: bool,
) -> List[Document]:
    if not order_by:
        return documents
    return sorted(
        documents,
        key=lambda doc: (get_field(doc, order_by) is not None, get_field(doc, order_by) or ""),
        reverse=descending,
    )


@dataclass
class _Write:
    kind: str  # create | set | update | delete
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)


class Transaction:
    """Buffered optimistic transaction.

    Reads go straight to the store and remember the version observed; writes
    are buffered and applied by ``DocumentStore.commit`` all-or-nothing.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self.reads: Dict[Tuple[str, str], Optional[int]] = {}
        self.writes: List[_Write] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        document, version = await self._store.read_versioned(collection, doc_id)
        self.reads[(collection, doc_id)] = version
        return document

    def create(self, collection: str, data: Document, *, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or new_document_id()
        self.writes.append(_Write("create", collection, doc_id, dict(data)))
        return doc_id

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self.writes.append(_Write("set", collection, doc_id, dict(data)))

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        self.writes.append(_Write("update", collection, doc_id, dict(changes)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(_Write("delete", collection, doc_id))


class DocumentStore(ABC):
    """Contract the authorization layer requires from a hosted store."""

    @abstractmethod
    async def read_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[Document], Optional[int]]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def commit(self, txn: Transaction) -> None:
        """Apply ``txn`` atomically or raise ``TransactionConflict``."""

    def transaction(self) -> Transaction:
        return Transaction(self)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        document, _ = await self.read_versioned(collection, doc_id)
        return document

    async def add(self, collection: str, data: Document, *, doc_id: Optional[str] = None) -> Document:
        txn = self.transaction()
        doc_id = txn.create(collection, data, doc_id=doc_id)
        try:
            await self.commit(txn)
        except TransactionConflict as exc:
            raise Conflict(f"{collection}/{doc_id} already exists") from exc
        return {**data, "id": doc_id}

    async def set(self, collection: str, doc_id: str, data: Document) -> Document:
        txn = self.transaction()
        txn.set(collection, doc_id, data)
        await self.commit(txn)
        return {**data, "id": doc_id}

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Document:
        txn = self.transaction()
        txn.update(collection, doc_id, changes)
        try:
            await self.commit(txn)
        except TransactionConflict as exc:
            raise NotFound(f"{collection}/{doc_id} does not exist") from exc
        document = await self.get(collection, doc_id)
        if document is None:
            raise NotFound(f"{collection}/{doc_id} does not exist")
        return document

    async def delete(self, collection: str, doc_id: str) -> None:
        txn = self.transaction()
        txn.delete(collection, doc_id)
        await self.commit(txn)


async def run_transaction(
    store: DocumentStore,
    body: Callable[[Transaction], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int = 5,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``body`` in a fresh transaction until it commits.

    ``body`` stages reads and writes on the transaction and returns a result;
    exceptions it raises abort the attempt without retry.
    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        txn = store.transaction()
        result = await body(txn)
        try:
            await store.commit(txn)
        except TransactionConflict as exc:
            logger.warning(
                "Transaction attempt %d/%d for %s lost a race: %s",
                attempt,
                max_attempts,
                operation,
                exc,
            )
            if attempt == max_attempts:
                raise ConflictRetryExhausted(
                    f"{operation} gave up after {max_attempts} attempts"
                ) from exc
            # Jitter keeps concurrent writers from retrying in lockstep.
            await sleep(min(delay * (1 + random.uniform(0, 0.5)), max_delay))
            delay = min(delay * 2, max_delay)
            continue
        return result
    raise ConflictRetryExhausted(f"{operation} was never attempted")


def _apply_writes(
    writes: List[_Write],
    load: Callable[[str, str], Tuple[Optional[Document], Optional[int]]],
) -> Dict[Tuple[str, str], Tuple[Optional[Document], int]]:
    """Fold buffered writes into their final per-key state.

    Returns ``{(collection, id): (document_or_None, new_version)}``; a
    ``None`` document means delete.
    """
    staged: Dict[Tuple[str, str], Tuple[Optional[Document], int]] = {}
    for write in writes:
        key = (write.collection, write.doc_id)
        if key in staged:
            current, version = staged[key]
        else:
            current, base_version = load(write.collection, write.doc_id)
            version = (base_version or 0) + 1
        if write.kind == "create":
            if current is not None:
                raise TransactionConflict(f"{write.collection}/{write.doc_id} already exists")
            staged[key] = ({**write.data, "id": write.doc_id}, version)
        elif write.kind == "set":
            staged[key] = ({**write.data, "id": write.doc_id}, version)
        elif write.kind == "update":
            if current is None:
                raise TransactionConflict(f"{write.collection}/{write.doc_id} vanished")
            staged[key] = (apply_changes(current, write.data), version)
        else:
            staged[key] = (None, version)
    return staged


class MemoryDocumentStore(DocumentStore):
    """Process-local store, used for development and tests."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Tuple[Document, int]]] = {}
        self._lock = threading.Lock()

    def _load(self, collection: str, doc_id: str) -> Tuple[Optional[Document], Optional[int]]:
        entry = self._collections.get(collection, {}).get(doc_id)
        if entry is None:
            return None, None
        document, version = entry
        return copy.deepcopy(document), version

    async def read_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[Document], Optional[int]]:
        # Every store access is a suspension point, like a network read.
        await asyncio.sleep(0)
        with self._lock:
            return self._load(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        await asyncio.sleep(0)
        with self._lock:
            rows = [
                copy.deepcopy(document)
                for document, _ in self._collections.get(collection, {}).values()
                if matches(document, filters)
            ]
        rows = sort_documents(rows, order_by, descending)
        return rows[:limit] if limit is not None else rows

    async def commit(self, txn: Transaction) -> None:
        await asyncio.sleep(0)
        with self._lock:
            for (collection, doc_id), seen in txn.reads.items():
                _, version = self._load(collection, doc_id)
                if version != seen:
                    raise TransactionConflict(f"{collection}/{doc_id} changed (read v{seen}, now v{version})")
            staged = _apply_writes(txn.writes, self._load)
            for (collection, doc_id), (document, version) in staged.items():
                bucket = self._collections.setdefault(collection, {})
                if document is None:
                    bucket.pop(doc_id, None)
                else:
                    bucket[doc_id] = (document, version)


class SqliteDocumentStore(DocumentStore):
    """Documents as JSON rows in a single SQLite table.

    Blocking sqlite calls run in a worker thread; commits happen inside
    ``BEGIN IMMEDIATE`` so version checks and writes are atomic.
    """

    def __init__(self, path: Path, *, timeout: float = 5.0) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.initialize()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open {self.path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.OperationalError as exc:
            logger.warning("sqlite store unavailable", extra={"path": str(self.path), "error": str(exc)})
            raise StoreUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                """
            )

    @staticmethod
    def _load_with(conn: sqlite3.Connection, collection: str, doc_id: str) -> Tuple[Optional[Document], Optional[int]]:
        row = conn.execute(
            "SELECT data, version FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None, None
        return json.loads(row[0]), row[1]

    async def read_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[Document], Optional[int]]:
        def _read():
            with self.get_connection() as conn:
                return self._load_with(conn, collection, doc_id)

        return await asyncio.to_thread(_read)

    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        def _query() -> List[Document]:
            clauses = ["collection = ?"]
            params: List[Any] = [collection]
            for path, value in filters.items():
                clauses.append(f"json_extract(data, '$.{path}') = ?")
                params.append(value)
            with self.get_connection() as conn:
                rows = conn.execute(
                    f"SELECT data FROM documents WHERE {' AND '.join(clauses)}",
                    params,
                ).fetchall()
            return [json.loads(row[0]) for row in rows]

        documents = sort_documents(await asyncio.to_thread(_query), order_by, descending)
        return documents[:limit] if limit is not None else documents

    async def commit(self, txn: Transaction) -> None:
        def _commit() -> None:
            with self.get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for (collection, doc_id), seen in txn.reads.items():
                        _, version = self._load_with(conn, collection, doc_id)
                        if version != seen:
                            raise TransactionConflict(
                                f"{collection}/{doc_id} changed (read v{seen}, now v{version})"
                            )
                    staged = _apply_writes(
                        txn.writes, lambda c, i: self._load_with(conn, c, i)
                    )
                    for (collection, doc_id), (document, version) in staged.items():
                        if document is None:
                            conn.execute(
                                "DELETE FROM documents WHERE collection = ? AND id = ?",
                                (collection, doc_id),
                            )
                        else:
                            conn.execute(
                                """
                                INSERT INTO documents (collection, id, data, version)
                                VALUES (?, ?, ?, ?)
                                ON CONFLICT(collection, id)
                                DO UPDATE SET data = excluded.data, version = excluded.version
                                """,
                                (collection, doc_id, json.dumps(document), version),
                            )
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")

        await asyncio.to_thread(_commit)
