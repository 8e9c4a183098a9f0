from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional, Sequence

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import ConfigurationError

from stackbit_api.models.users import User

logger = logging.getLogger(__name__)

PROJECTS_COLLECTION = "projects"
USERS_COLLECTION = "users"


def as_object_id(value: Any) -> Any:
    """Stored ids are ObjectIds; callers often hold their string form."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _normalize_query(query: Mapping[str, Any]) -> dict[str, Any]:
    normalized = dict(query)
    if "_id" in normalized:
        normalized["_id"] = as_object_id(normalized["_id"])
    return normalized


class MongoProjectStore:
    """Project documents in a Motor collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def find_by_id(self, project_id: Any) -> Optional[dict[str, Any]]:
        return await self.collection.find_one({"_id": as_object_id(project_id)})

    async def find_one(self, query: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        return await self.collection.find_one(_normalize_query(query))

    async def find(self, query: Mapping[str, Any]) -> list[dict[str, Any]]:
        docs = []
        async for doc in self.collection.find(dict(query)):
            docs.append(doc)
        return docs

    async def find_one_and_update(
        self,
        query: Mapping[str, Any],
        update: Mapping[str, Any],
        array_filters: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Optional[dict[str, Any]]:
        kwargs: dict[str, Any] = {"return_document": ReturnDocument.AFTER}
        if array_filters:
            kwargs["array_filters"] = [dict(f) for f in array_filters]
        return await self.collection.find_one_and_update(
            _normalize_query(query), dict(update), **kwargs
        )

    async def distinct(self, field: str, query: Mapping[str, Any]) -> list[Any]:
        return await self.collection.distinct(field, dict(query))

    async def update_many(self, query: Mapping[str, Any], update: Mapping[str, Any]) -> int:
        result = await self.collection.update_many(_normalize_query(query), dict(update))
        return result.modified_count


class MongoUserStore:
    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def find_user_by_id(self, user_id: Any) -> Optional[User]:
        doc = await self.collection.find_one({"_id": as_object_id(user_id)})
        if doc is None:
            return None
        return User.from_document(doc)

    async def find_users_by_id(self, user_ids: Sequence[Any]) -> list[User]:
        if not user_ids:
            return []
        ids = [as_object_id(user_id) for user_id in user_ids]
        users = []
        async for doc in self.collection.find({"_id": {"$in": ids}}):
            users.append(User.from_document(doc))
        return users


class MongoStore:
    """Async connection holder exposing the project and user stores."""

    def __init__(self, conn_string: str, db_name: Optional[str] = None) -> None:
        if not conn_string:
            raise ValueError("MongoDB connection string is required")
        self.client = AsyncIOMotorClient(conn_string)
        self.db_name = db_name
        self.db = None
        self.projects: Optional[MongoProjectStore] = None
        self.users: Optional[MongoUserStore] = None

    @classmethod
    def from_env(cls) -> "MongoStore":
        return cls(os.getenv("MONGO_URI", ""), os.getenv("MONGO_DB_NAME"))

    async def __aenter__(self) -> "MongoStore":
        if self.db_name:
            self.db = self.client[self.db_name]
        else:
            try:
                self.db = self.client.get_default_database()
            except ConfigurationError:
                raise ValueError(
                    "No default database specified. Please provide a database name "
                    "either via the MONGO_DB_NAME environment variable or include it "
                    "in your MongoDB connection string (e.g., 'mongodb://localhost:27017/stackbit')"
                )
        self.projects = MongoProjectStore(self.db[PROJECTS_COLLECTION])
        self.users = MongoUserStore(self.db[USERS_COLLECTION])
        logger.debug("Connected to MongoDB database %s", self.db.name)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.client.close()
