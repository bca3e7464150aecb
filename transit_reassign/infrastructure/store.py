"""
Transactional store capability + in-memory implementation.

The core only needs read / write / run_in_transaction, plus scan for bulk reads.
Any key-value or relational store with serializable transactions (or
compare-and-swap) can implement it.
"""

import copy
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTITIES = "entities"
CONTAINERS = "containers"
AUDIT_LOG = "audit_log"


class Transaction(Protocol):
    def read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        ...

    def write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        ...


class TransactionalStore(Protocol):
    def read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        ...

    def write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        ...

    def run_in_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn atomically. If fn raises, nothing it wrote is applied and the error propagates."""
        ...

    def scan(self, collection: str) -> List[Dict[str, Any]]:
        """Bulk read outside any transaction. May be stale."""
        ...


class _BufferedTransaction:
    """Reads see the store plus this transaction's own writes; writes stay buffered."""

    def __init__(self, store: "InMemoryTransactionalStore"):
        self._store = store
        self._writes: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        pending = self._writes.get((collection, key))
        if pending is not None:
            return copy.deepcopy(pending)
        return self._store._get(collection, key)

    def write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        self._writes[(collection, key)] = copy.deepcopy(doc)

    @property
    def pending_writes(self) -> Dict[Tuple[str, str], Dict[str, Any]]:
        return self._writes


# ==========================================
# IN-MEMORY TRANSACTIONAL STORE
# ------------------------------------------
# Volatile: resets when the process restarts.
# One lock serializes whole transactions, which
# gives serializable isolation for the
# read-check-write sequence of a commit.
# ==========================================


class InMemoryTransactionalStore:
    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._data.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def read(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._get(collection, key)

    def write(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        with self._lock:
            self._data.setdefault(collection, {})[key] = copy.deepcopy(doc)

    def run_in_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self._lock:
            txn = _BufferedTransaction(self)
            result = fn(txn)
            for (collection, key), doc in txn.pending_writes.items():
                self._data.setdefault(collection, {})[key] = doc
            logger.debug("Transaction applied %d write(s)", len(txn.pending_writes))
            return result

    def scan(self, collection: str) -> List[Dict[str, Any]]:
        """All documents of a collection, ordered by key."""
        with self._lock:
            docs = self._data.get(collection, {})
            return [copy.deepcopy(docs[k]) for k in sorted(docs)]

    def seed(
        self,
        entity_docs: Iterable[Dict[str, Any]],
        container_docs: Iterable[Dict[str, Any]],
    ) -> None:
        with self._lock:
            for doc in container_docs:
                self.write(CONTAINERS, str(doc["container_id"]), doc)
            for doc in entity_docs:
                self.write(ENTITIES, str(doc["entity_id"]), doc)
