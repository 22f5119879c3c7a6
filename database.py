"""
Persistence substrate for the shift calendar.

Records live in named collections as plain dicts keyed by a store-generated
id. Two backends share the Store interface: MemoryStore (default, also used
by the tests) and MongoStore (pymongo, multi-document transactions).
"""

import logging
import threading
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient

import config
from errors import AtomicityFailure, ConflictError

logger = logging.getLogger(__name__)

COLLECTIONS = ["users", "shifts", "bookings", "vacations", "notifications", "shiftSwaps"]

# (collection, id, fields to set, field values the record must still hold)
Update = Tuple[str, str, Dict[str, Any], Dict[str, Any]]
Listener = Callable[[str], None]


def _matches(doc: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in filters.items())


def _missing(collection: str, record_id: str) -> AtomicityFailure:
    return AtomicityFailure(
        "Booking not found" if collection == "bookings" else f"{collection} '{record_id}' not found",
        details={"collection": collection, "id": record_id},
    )


def _stale(collection: str, record_id: str, expected: Dict[str, Any]) -> ConflictError:
    return ConflictError(
        f"{collection} '{record_id}' changed since it was read",
        details={"collection": collection, "id": record_id, "expected": expected},
    )


class Store:
    """Collections of dict records addressable by id, plus change listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    # -------------------- Subscriptions --------------------
    def on_collection_changed(self, collection: str, callback: Listener) -> Callable[[], None]:
        """Register a callback fired after every committed change; returns an unsubscribe function."""
        self._listeners[collection].append(callback)

        def unsubscribe():
            if callback in self._listeners[collection]:
                self._listeners[collection].remove(callback)

        return unsubscribe

    def _publish(self, collections: Iterable[str]) -> None:
        for collection in dict.fromkeys(collections):
            for callback in list(self._listeners[collection]):
                try:
                    callback(collection)
                except Exception:
                    logger.exception("Listener for '%s' failed", collection)

    # -------------------- Interface --------------------
    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def update(self, collection: str, record_id: str, fields: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError

    def delete_many(self, collection: str, **filters: Any) -> int:
        raise NotImplementedError

    def update_many(self, collection: str, filters: Dict[str, Any], fields: Dict[str, Any]) -> int:
        """Apply fields to every match, all or nothing."""
        raise NotImplementedError

    def atomic_multi_update(self, updates: List[Update]) -> None:
        """
        Apply every (collection, id, fields, expected) update together.

        A missing record raises AtomicityFailure; a record whose current values
        differ from `expected` raises ConflictError. Either way nothing is written.
        """
        raise NotImplementedError

    def list_collection_names(self) -> List[str]:
        return list(COLLECTIONS)


class MemoryStore(Store):
    """Process-local store; reads hand out copies so partial writes are never visible."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.RLock()

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def insert(self, collection, data):
        record_id = uuid.uuid4().hex
        with self._lock:
            self._collection(collection)[record_id] = {**data, "id": record_id}
        self._publish([collection])
        return record_id

    def get(self, collection, record_id):
        with self._lock:
            doc = self._collection(collection).get(record_id)
            return dict(doc) if doc is not None else None

    def find(self, collection, **filters):
        with self._lock:
            return [dict(doc) for doc in self._collection(collection).values() if _matches(doc, filters)]

    def update(self, collection, record_id, fields):
        with self._lock:
            doc = self._collection(collection).get(record_id)
            if doc is None:
                return False
            doc.update({k: v for k, v in fields.items() if k != "id"})
        self._publish([collection])
        return True

    def delete(self, collection, record_id):
        with self._lock:
            removed = self._collection(collection).pop(record_id, None)
        if removed is None:
            return False
        self._publish([collection])
        return True

    def delete_many(self, collection, **filters):
        with self._lock:
            docs = self._collection(collection)
            doomed = [record_id for record_id, doc in docs.items() if _matches(doc, filters)]
            for record_id in doomed:
                del docs[record_id]
        if doomed:
            self._publish([collection])
        return len(doomed)

    def update_many(self, collection, filters, fields):
        with self._lock:
            targets = [doc for doc in self._collection(collection).values() if _matches(doc, filters)]
            for doc in targets:
                doc.update(fields)
        if targets:
            self._publish([collection])
        return len(targets)

    def atomic_multi_update(self, updates):
        with self._lock:
            for collection, record_id, _, expected in updates:
                doc = self._collection(collection).get(record_id)
                if doc is None:
                    raise _missing(collection, record_id)
                if not _matches(doc, expected):
                    raise _stale(collection, record_id, expected)
            for collection, record_id, fields, _ in updates:
                self._collection(collection)[record_id].update(fields)
        self._publish(collection for collection, _, _, _ in updates)


# -------------------- MongoDB --------------------

def to_object_id(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def doc_to_dict(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


class MongoStore(Store):
    """MongoDB-backed store; multi-record writes run inside a session transaction (needs a replica set)."""

    def __init__(self, url: str, name: str):
        super().__init__()
        self.client = MongoClient(url)
        self.db = self.client[name]

    def insert(self, collection, data):
        data = {k: v for k, v in data.items() if k != "id"}
        inserted_id = str(self.db[collection].insert_one(data).inserted_id)
        self._publish([collection])
        return inserted_id

    def get(self, collection, record_id):
        oid = to_object_id(record_id)
        if oid is None:
            return None
        return doc_to_dict(self.db[collection].find_one({"_id": oid}))

    def find(self, collection, **filters):
        return [doc_to_dict(doc) for doc in self.db[collection].find(filters).sort("_id", 1)]

    def update(self, collection, record_id, fields):
        oid = to_object_id(record_id)
        if oid is None:
            return False
        fields = {k: v for k, v in fields.items() if k != "id"}
        res = self.db[collection].update_one({"_id": oid}, {"$set": fields})
        if res.matched_count == 0:
            return False
        self._publish([collection])
        return True

    def delete(self, collection, record_id):
        oid = to_object_id(record_id)
        if oid is None:
            return False
        res = self.db[collection].delete_one({"_id": oid})
        if res.deleted_count == 0:
            return False
        self._publish([collection])
        return True

    def delete_many(self, collection, **filters):
        res = self.db[collection].delete_many(filters)
        if res.deleted_count:
            self._publish([collection])
        return res.deleted_count

    def update_many(self, collection, filters, fields):
        with self.client.start_session() as session:
            with session.start_transaction():
                res = self.db[collection].update_many(filters, {"$set": fields}, session=session)
        if res.modified_count:
            self._publish([collection])
        return res.modified_count

    def atomic_multi_update(self, updates):
        with self.client.start_session() as session:
            # Raising inside the transaction block aborts it
            with session.start_transaction():
                for collection, record_id, fields, expected in updates:
                    oid = to_object_id(record_id)
                    if oid is None:
                        raise _missing(collection, record_id)
                    res = self.db[collection].update_one(
                        {"_id": oid, **expected}, {"$set": fields}, session=session
                    )
                    if res.matched_count == 0:
                        if self.db[collection].count_documents({"_id": oid}, session=session) == 0:
                            raise _missing(collection, record_id)
                        raise _stale(collection, record_id, expected)
        self._publish(collection for collection, _, _, _ in updates)

    def list_collection_names(self):
        return self.db.list_collection_names()


def get_store() -> Store:
    if config.STORAGE_BACKEND == "mongo":
        if not config.DATABASE_URL:
            raise RuntimeError("STORAGE_BACKEND=mongo requires DATABASE_URL")
        logger.info("Using MongoDB store '%s'", config.DATABASE_NAME)
        return MongoStore(config.DATABASE_URL, config.DATABASE_NAME)
    logger.info("Using in-memory store")
    return MemoryStore()
