"""
Document store access for the food-sharing API.

MongoDB via pymongo. Each collection mirrors one schema in schemas.py. Helpers
read the module-level ``db`` at call time, so it can be swapped (tests do this).
Every write signals in-process listeners so live subscriptions can re-query.
"""
import os
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
    logger.info(f"Using database {DATABASE_NAME}")
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")

Sort = List[Tuple[str, int]]

_listeners: Dict[str, List[Callable[[], None]]] = defaultdict(list)
_listeners_lock = threading.Lock()


def _require_db():
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def _id_filter(doc_id: Union[str, ObjectId]) -> Dict[str, Any]:
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        doc_id = ObjectId(doc_id)
    return {"_id": doc_id}


def _notify(collection_name: str):
    with _listeners_lock:
        callbacks = list(_listeners.get(collection_name, ()))
    for callback in callbacks:
        callback()


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document and return its id as a string"""
    database = _require_db()
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    result = database[collection_name].insert_one(doc)
    _notify(collection_name)
    return str(result.inserted_id)


def set_document(collection_name: str, doc_id: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Create or overwrite the document with a known id"""
    database = _require_db()
    if isinstance(data, BaseModel):
        data = data.model_dump()
    id_filter = _id_filter(doc_id)
    database[collection_name].replace_one(id_filter, {**data, **id_filter}, upsert=True)
    _notify(collection_name)
    return doc_id


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    database = _require_db()
    return database[collection_name].find_one(_id_filter(doc_id))


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sort] = None,
) -> List[Dict[str, Any]]:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, doc_id: str, changes: Dict[str, Any]) -> bool:
    """Merge ``changes`` into a document. Returns False when nothing matched."""
    database = _require_db()
    result = database[collection_name].update_one(_id_filter(doc_id), {"$set": changes})
    _notify(collection_name)
    return result.matched_count > 0


def delete_document(collection_name: str, doc_id: str) -> bool:
    database = _require_db()
    result = database[collection_name].delete_one(_id_filter(doc_id))
    _notify(collection_name)
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: Dict[str, Any]) -> int:
    database = _require_db()
    result = database[collection_name].delete_many(filter_dict)
    _notify(collection_name)
    return result.deleted_count


class Subscription:
    """
    Live view over a filtered, ordered query.

    Use as a context manager: entering registers a listener on the collection,
    leaving removes it. ``snapshot()`` returns the current ordered list and
    ``next_snapshot()`` blocks until the collection changes, then returns the
    full list again.
    """

    def __init__(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None):
        self.collection_name = collection_name
        self.filter_dict = filter_dict or {}
        self.sort = sort
        self._changed = threading.Event()
        self._active = False

    def _on_change(self):
        self._changed.set()

    def __enter__(self) -> "Subscription":
        with _listeners_lock:
            _listeners[self.collection_name].append(self._on_change)
        self._active = True
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if not self._active:
            return
        with _listeners_lock:
            callbacks = _listeners.get(self.collection_name, [])
            if self._on_change in callbacks:
                callbacks.remove(self._on_change)
        self._active = False

    def snapshot(self) -> List[Dict[str, Any]]:
        return get_documents(self.collection_name, self.filter_dict, sort=self.sort)

    def next_snapshot(self, timeout: Optional[float] = None) -> Optional[List[Dict[str, Any]]]:
        """Wait for a change; None if ``timeout`` elapsed without one."""
        if not self._changed.wait(timeout):
            return None
        self._changed.clear()
        return self.snapshot()


def database_status() -> Dict[str, Any]:
    if db is None:
        return {"connected": False, "name": None, "collections": []}
    return {
        "connected": True,
        "name": db.name if hasattr(db, "name") else None,
        "collections": db.list_collection_names()[:10],
    }
