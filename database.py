"""
Storage for posts (reviews and products), users and options.

Documents are plain dicts keyed by an integer ``id``. Two backends share one
interface: ``MongoStore`` (pymongo) and ``MemoryStore``. Routes receive the
configured backend through the ``get_store`` dependency.
"""
import copy
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

from query import Clause, matches, sort_key, to_mongo

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "product_reviews")
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo")

logger = structlog.get_logger(__name__)

Sort = Sequence[Tuple[str, int]]
Data = Union[BaseModel, Dict[str, Any]]


def _as_dict(data: Data) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MongoStore:
    def __init__(self, database):
        self.db = database

    def _next_id(self, collection: str) -> int:
        counter = self.db["counters"].find_one_and_update(
            {"_id": collection},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    @staticmethod
    def _out(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        doc["id"] = doc.pop("_id")
        return doc

    def create_document(self, collection: str, data: Data) -> int:
        doc = _as_dict(data)
        doc.pop("id", None)
        doc["_id"] = self._next_id(collection)
        doc["created_at"] = _now()
        doc["updated_at"] = _now()
        self.db[collection].insert_one(doc)
        return doc["_id"]

    def get_document(self, collection: str, doc_id: int) -> Optional[Dict[str, Any]]:
        return self._out(self.db[collection].find_one({"_id": doc_id}))

    def update_document(self, collection: str, doc_id: int, fields: Dict[str, Any]) -> bool:
        update = dict(fields)
        update.pop("id", None)
        update["updated_at"] = _now()
        result = self.db[collection].update_one({"_id": doc_id}, {"$set": update})
        return result.matched_count > 0

    def delete_document(self, collection: str, doc_id: int) -> bool:
        return self.db[collection].delete_one({"_id": doc_id}).deleted_count > 0

    def get_documents(
        self,
        collection: str,
        where: Optional[Clause] = None,
        sort: Sort = (),
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(to_mongo(where))
        if sort:
            cursor = cursor.sort([("_id" if f == "id" else f, d) for f, d in sort])
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [self._out(doc) for doc in cursor]

    def count_documents(self, collection: str, where: Optional[Clause] = None) -> int:
        return self.db[collection].count_documents(to_mongo(where))

    def get_option(self, name: str) -> Optional[Dict[str, Any]]:
        doc = self.db["options"].find_one({"_id": name})
        return doc["value"] if doc else None

    def set_option(self, name: str, value: Dict[str, Any]) -> None:
        self.db["options"].replace_one({"_id": name}, {"_id": name, "value": value}, upsert=True)

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": "mongo",
            "database_name": self.db.name,
            "collections": self.db.list_collection_names()[:10],
        }


class MemoryStore:
    """Dict-backed store; documents are copied on the way in and out."""

    def __init__(self):
        self.collections: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self.counters: Dict[str, int] = {}
        self.options: Dict[str, Dict[str, Any]] = {}

    def _collection(self, name: str) -> Dict[int, Dict[str, Any]]:
        return self.collections.setdefault(name, {})

    def create_document(self, collection: str, data: Data) -> int:
        doc = copy.deepcopy(_as_dict(data))
        doc_id = self.counters.get(collection, 0) + 1
        self.counters[collection] = doc_id
        doc["id"] = doc_id
        doc["created_at"] = _now()
        doc["updated_at"] = _now()
        self._collection(collection)[doc_id] = doc
        return doc_id

    def get_document(self, collection: str, doc_id: int) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def update_document(self, collection: str, doc_id: int, fields: Dict[str, Any]) -> bool:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return False
        for key, value in fields.items():
            if key == "id":
                continue
            # dotted keys update sub-documents, as $set does
            target = doc
            *parents, leaf = key.split(".")
            for part in parents:
                target = target.setdefault(part, {})
            target[leaf] = copy.deepcopy(value)
        doc["updated_at"] = _now()
        return True

    def delete_document(self, collection: str, doc_id: int) -> bool:
        return self._collection(collection).pop(doc_id, None) is not None

    def get_documents(
        self,
        collection: str,
        where: Optional[Clause] = None,
        sort: Sort = (),
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        docs = [d for d in self._collection(collection).values() if matches(where, d)]
        for field_name, direction in reversed(list(sort)):
            docs.sort(key=lambda d: sort_key(d, field_name), reverse=direction < 0)
        end = skip + limit if limit else None
        return [copy.deepcopy(d) for d in docs[skip:end]]

    def count_documents(self, collection: str, where: Optional[Clause] = None) -> int:
        return sum(1 for d in self._collection(collection).values() if matches(where, d))

    def get_option(self, name: str) -> Optional[Dict[str, Any]]:
        value = self.options.get(name)
        return copy.deepcopy(value) if value is not None else None

    def set_option(self, name: str, value: Dict[str, Any]) -> None:
        self.options[name] = copy.deepcopy(value)

    def describe(self) -> Dict[str, Any]:
        return {"backend": "memory", "collections": sorted(self.collections)[:10]}


Store = Union[MongoStore, MemoryStore]

client = None
db = None
if STORAGE_BACKEND == "mongo" and DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

_memory_store: Optional[MemoryStore] = None


def get_store() -> Store:
    global _memory_store
    if STORAGE_BACKEND == "memory":
        if _memory_store is None:
            logger.info("Using in-memory storage")
            _memory_store = MemoryStore()
        return _memory_store
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return MongoStore(db)
