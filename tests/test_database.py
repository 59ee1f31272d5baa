from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

import database
from database import MemoryStore, MongoStore, get_store
from query import DESCENDING, Eq


class TestMemoryStore:
    def test_ids_count_per_collection(self, store):
        assert store.create_document("posts", {"title": "a"}) == 1
        assert store.create_document("posts", {"title": "b"}) == 2
        assert store.create_document("users", {"email": "a@example.com"}) == 1

    def test_documents_are_copies(self, store):
        doc_id = store.create_document("posts", {"meta": {"rating": 4}})
        doc = store.get_document("posts", doc_id)
        doc["meta"]["rating"] = 1
        assert store.get_document("posts", doc_id)["meta"]["rating"] == 4

    def test_timestamps(self, store):
        doc = store.get_document("posts", store.create_document("posts", {}))
        assert doc["created_at"] is not None
        assert doc["updated_at"] is not None

    def test_dotted_update_keeps_siblings(self, store):
        doc_id = store.create_document("posts", {"meta": {"rating": 4, "reviewer_name": "Sam"}})
        assert store.update_document("posts", doc_id, {"meta.rating": 2})
        assert store.get_document("posts", doc_id)["meta"] == {"rating": 2, "reviewer_name": "Sam"}

    def test_update_missing(self, store):
        assert store.update_document("posts", 1, {"title": "x"}) is False

    def test_delete(self, store):
        doc_id = store.create_document("posts", {})
        assert store.delete_document("posts", doc_id) is True
        assert store.delete_document("posts", doc_id) is False
        assert store.get_document("posts", doc_id) is None

    def test_filter_sort_and_slice(self, store):
        for n in (3, 1, 2, 5, 4):
            store.create_document("posts", {"n": n, "kind": "odd" if n % 2 else "even"})
        docs = store.get_documents("posts", Eq("kind", "odd"), sort=(("n", DESCENDING),), skip=1, limit=1)
        assert [d["n"] for d in docs] == [3]
        assert store.count_documents("posts", Eq("kind", "odd")) == 3

    def test_secondary_sort(self, store):
        for day in (1, 2, 2):
            store.create_document("posts", {"day": day})
        docs = store.get_documents("posts", sort=(("day", DESCENDING), ("id", DESCENDING)))
        assert [d["id"] for d in docs] == [3, 2, 1]

    def test_options(self, store):
        assert store.get_option("missing") is None
        value = {"setting1": "a"}
        store.set_option("settings", value)
        value["setting1"] = "changed"
        assert store.get_option("settings") == {"setting1": "a"}


class TestMongoStore:
    @pytest.fixture()
    def db(self):
        return MagicMock()

    def test_create_uses_counter(self, db):
        collection = db.__getitem__.return_value
        collection.find_one_and_update.return_value = {"_id": "posts", "seq": 7}
        assert MongoStore(db).create_document("posts", {"title": "a", "id": 99}) == 7
        inserted = collection.insert_one.call_args[0][0]
        assert inserted["_id"] == 7
        assert "id" not in inserted

    def test_get_maps_id(self, db):
        db.__getitem__.return_value.find_one.return_value = {"_id": 3, "title": "a"}
        assert MongoStore(db).get_document("posts", 3) == {"id": 3, "title": "a"}

    def test_get_documents_compiles_query(self, db):
        collection = db.__getitem__.return_value
        cursor = collection.find.return_value
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.__iter__.return_value = iter([{"_id": 1, "title": "a"}])

        docs = MongoStore(db).get_documents(
            "posts", Eq("type", "product_review"), sort=(("date", -1), ("id", -1)), skip=9, limit=9
        )

        collection.find.assert_called_once_with({"type": "product_review"})
        cursor.sort.assert_called_once_with([("date", -1), ("_id", -1)])
        cursor.skip.assert_called_once_with(9)
        cursor.limit.assert_called_once_with(9)
        assert docs == [{"id": 1, "title": "a"}]

    def test_missing_option(self, db):
        db.__getitem__.return_value.find_one.return_value = None
        assert MongoStore(db).get_option("product_review_manager") is None


class TestGetStore:
    def test_unconfigured_database(self, monkeypatch):
        monkeypatch.setattr(database, "STORAGE_BACKEND", "mongo")
        monkeypatch.setattr(database, "db", None)
        with pytest.raises(HTTPException) as exc:
            get_store()
        assert exc.value.status_code == 500

    def test_memory_backend_is_shared(self, monkeypatch):
        monkeypatch.setattr(database, "STORAGE_BACKEND", "memory")
        monkeypatch.setattr(database, "_memory_store", None)
        first = get_store()
        assert isinstance(first, MemoryStore)
        assert get_store() is first
