from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

from stackbit_api.storage.mongo import (
    MongoProjectStore,
    MongoStore,
    MongoUserStore,
    as_object_id,
)

PROJECT_ID = ObjectId()


class _Cursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._docs:
            raise StopAsyncIteration
        return self._docs.pop(0)


def _collection(docs=()):
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value={"_id": PROJECT_ID})
    collection.distinct = AsyncMock(return_value=["2021a-pro"])
    collection.update_many = AsyncMock(return_value=MagicMock(modified_count=2))
    collection.find = MagicMock(side_effect=lambda *_args, **_kwargs: _Cursor(docs))
    return collection


def test_as_object_id():
    assert as_object_id(str(PROJECT_ID)) == PROJECT_ID
    assert as_object_id("not-an-object-id") == "not-an-object-id"
    assert as_object_id(PROJECT_ID) is PROJECT_ID


class TestMongoProjectStore:
    @pytest.mark.asyncio
    async def test_string_ids_are_converted(self):
        collection = _collection()
        store = MongoProjectStore(collection)

        await store.find_by_id(str(PROJECT_ID))
        await store.find_one({"_id": str(PROJECT_ID), "ownerId": "owner"})

        assert collection.find_one.await_args_list[0].args[0] == {"_id": PROJECT_ID}
        assert collection.find_one.await_args_list[1].args[0] == {
            "_id": PROJECT_ID,
            "ownerId": "owner",
        }

    @pytest.mark.asyncio
    async def test_find_one_and_update_returns_updated_document(self):
        collection = _collection()
        store = MongoProjectStore(collection)

        await store.find_one_and_update(
            {"_id": str(PROJECT_ID)},
            {"$set": {"collaborators.$[c].role": "unlicensed"}},
            array_filters=[{"c.role": {"$in": ["editor", "developer"]}}],
        )

        call = collection.find_one_and_update.await_args
        assert call.args == (
            {"_id": PROJECT_ID},
            {"$set": {"collaborators.$[c].role": "unlicensed"}},
        )
        assert call.kwargs == {
            "return_document": ReturnDocument.AFTER,
            "array_filters": [{"c.role": {"$in": ["editor", "developer"]}}],
        }

    @pytest.mark.asyncio
    async def test_find_one_and_update_without_filters(self):
        collection = _collection()
        await MongoProjectStore(collection).find_one_and_update(
            {"_id": PROJECT_ID}, {"$unset": {"subscription.scheduledForCancellation": ""}}
        )
        assert "array_filters" not in collection.find_one_and_update.await_args.kwargs

    @pytest.mark.asyncio
    async def test_find_distinct_and_update_many(self):
        docs = [{"_id": "a"}, {"_id": "b"}]
        collection = _collection(docs)
        store = MongoProjectStore(collection)

        assert await store.find({"subscription.tierId": "2021a-pro"}) == docs
        assert await store.distinct("subscription.tierId", {"ownerId": "owner"}) == ["2021a-pro"]
        modified = await store.update_many(
            {"subscription.tierId": "2021a-pro"}, {"$set": {"tierOverrides": {}}}
        )

        assert modified == 2
        collection.update_many.assert_awaited_once_with(
            {"subscription.tierId": "2021a-pro"}, {"$set": {"tierOverrides": {}}}
        )


class TestMongoUserStore:
    @pytest.mark.asyncio
    async def test_find_user_by_id(self):
        collection = _collection()
        collection.find_one = AsyncMock(
            return_value={"_id": PROJECT_ID, "email": "owner@acme.io", "roles": ["admin"]}
        )

        user = await MongoUserStore(collection).find_user_by_id(str(PROJECT_ID))

        assert user.email == "owner@acme.io"
        assert user.is_admin
        collection.find_one.assert_awaited_once_with({"_id": PROJECT_ID})

    @pytest.mark.asyncio
    async def test_missing_user(self):
        assert await MongoUserStore(_collection()).find_user_by_id("nobody") is None

    @pytest.mark.asyncio
    async def test_find_users_by_id(self):
        collection = _collection([{"_id": "u1", "email": "a@acme.io"}])
        store = MongoUserStore(collection)

        assert await store.find_users_by_id([]) == []
        collection.find.assert_not_called()

        found = await store.find_users_by_id([str(PROJECT_ID), "u1"])

        assert [u.email for u in found] == ["a@acme.io"]
        collection.find.assert_called_once_with({"_id": {"$in": [PROJECT_ID, "u1"]}})


class TestMongoStore:
    def test_requires_connection_string(self):
        with pytest.raises(ValueError):
            MongoStore("")

    @pytest.mark.asyncio
    async def test_default_database_from_uri(self):
        async with MongoStore("mongodb://localhost:27017/stackbit") as store:
            assert store.db.name == "stackbit"
            assert store.projects.collection.name == "projects"
            assert store.users.collection.name == "users"

    @pytest.mark.asyncio
    async def test_missing_database_name(self):
        store = MongoStore("mongodb://localhost:27017")
        with pytest.raises(ValueError):
            await store.__aenter__()
        store.client.close()
