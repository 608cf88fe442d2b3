"""
Database handle for the Marketplace API.

The handle is constructed once at startup and attached to app.state; routes
receive it through the get_db dependency so services can be exercised against
any object exposing the same DocumentStore methods.

Collections:
- user: registered users (unique email)
- product: product listings
- review: product reviews (partial unique indexes per author and guest email)
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from fastapi import Request
from pymongo import ASCENDING, AsyncMongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from errors import InvalidId

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


def is_valid_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def to_obj_id(id_str: Any, label: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not is_valid_id(id_str):
        raise InvalidId(f"Invalid {label}")
    return ObjectId(id_str)


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    """Public view of a stored document: `_id` becomes `id`, ObjectIds become strings."""
    if not doc:
        return doc
    d = {k: _plain(v) for k, v in doc.items()}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return d


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class DocumentStore:
    """Async CRUD over one collection."""

    def __init__(self, collection):
        self.collection = collection

    async def find(self, query: Dict[str, Any], sort: Optional[Sort] = None) -> List[Dict]:
        cursor = self.collection.find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        return await cursor.to_list(None)

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict]:
        return await self.collection.find_one(query)

    async def find_by_id(self, oid: ObjectId) -> Optional[Dict]:
        return await self.collection.find_one({"_id": oid})

    async def create(self, doc: Dict[str, Any]) -> Dict:
        doc = {**doc}
        res = await self.collection.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    async def update_by_id(self, oid: ObjectId, patch: Dict[str, Any]) -> Optional[Dict]:
        """Apply `patch`; keys mapped to None are removed from the document."""
        update: Dict[str, Dict] = {}
        to_set = {k: v for k, v in patch.items() if v is not None}
        to_unset = {k: "" for k, v in patch.items() if v is None}
        if to_set:
            update["$set"] = to_set
        if to_unset:
            update["$unset"] = to_unset
        if not update:
            return await self.find_by_id(oid)
        return await self.collection.find_one_and_update(
            {"_id": oid}, update, return_document=ReturnDocument.AFTER
        )

    async def delete_by_id(self, oid: ObjectId) -> bool:
        res = await self.collection.delete_one({"_id": oid})
        return res.deleted_count > 0

    async def distinct(self, field: str, query: Optional[Dict[str, Any]] = None) -> List[Any]:
        return await self.collection.distinct(field, query or {})


class Database:
    def __init__(self, users, products, reviews, client=None, name: str = None):
        self.users = users
        self.products = products
        self.reviews = reviews
        self.client = client
        self.name = name

    @classmethod
    def connect(cls, url: str, name: str) -> "Database":
        client = AsyncMongoClient(url)
        db = client[name]
        return cls(
            users=DocumentStore(db["user"]),
            products=DocumentStore(db["product"]),
            reviews=DocumentStore(db["review"]),
            client=client,
            name=name,
        )

    async def ensure_indexes(self) -> None:
        await self.users.collection.create_index([("email", ASCENDING)], unique=True)
        await self.products.collection.create_index([("category", ASCENDING)])
        await self.products.collection.create_index([("created_at", ASCENDING)])
        await self.reviews.collection.create_index([("product", ASCENDING), ("created_at", ASCENDING)])
        # One review per user per product, ignoring guest reviews
        await self.reviews.collection.create_index(
            [("product", ASCENDING), ("author", ASCENDING)],
            unique=True,
            partialFilterExpression={"author": {"$exists": True}},
            name="uniq_product_author",
        )
        # One review per guest email per product, ignoring user reviews
        await self.reviews.collection.create_index(
            [("product", ASCENDING), ("guest.email", ASCENDING)],
            unique=True,
            partialFilterExpression={"guest.email": {"$exists": True}},
            name="uniq_product_guest_email",
        )
        logger.info("Indexes ensured on %s", self.name)

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("Database ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()


def get_db(request: Request) -> Database:
    return request.app.state.db
