import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from database import Database, is_valid_id, sanitize, to_obj_id
from errors import NoChanges, NotFound, NotOwner, ProductNotFound, SelfReview
from schemas import Product as ProductSchema, utcnow

logger = logging.getLogger(__name__)

NEWEST = [("created_at", DESCENDING), ("_id", DESCENDING)]
SORTS = {
    "newest": NEWEST,
    "price-asc": [("price", ASCENDING), ("_id", ASCENDING)],
    "price-desc": [("price", DESCENDING), ("_id", DESCENDING)],
}

# Ownership guard


def _is_owner(actor_id: str, product: Dict) -> bool:
    owner = product.get("owner")
    return owner is not None and str(owner) == str(actor_id)


def authorize_mutation(actor_id: str, product: Optional[Dict]) -> Dict:
    """Only the recorded owner may change or delete a product.

    Products without an owner cannot be mutated by anyone.
    """
    if product is None:
        raise ProductNotFound()
    if not _is_owner(actor_id, product):
        raise NotOwner()
    return product


def authorize_review(actor_id: str, product: Optional[Dict]) -> Dict:
    """Owners may not review their own product; a missing owner is no conflict."""
    if product is None:
        raise ProductNotFound()
    if _is_owner(actor_id, product):
        raise SelfReview()
    return product


def build_product_query(
    category: Optional[str] = None,
    q: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    return query


class ProductService:
    def __init__(self, db: Database):
        self.db = db

    async def list(
        self,
        category: Optional[str] = None,
        q: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: Optional[str] = None,
    ) -> List[Dict]:
        query = build_product_query(category, q, min_price, max_price)
        docs = await self.db.products.find(query, SORTS.get(sort or "newest", NEWEST))
        owners = await self._owners(docs)
        out = []
        for d in docs:
            p = sanitize(d)
            owner = owners.get(str(d.get("owner")))
            if owner:
                p["owner_name"] = owner.get("name")
                p["owner_email"] = owner.get("email")
            out.append(p)
        return out

    async def _owners(self, docs: List[Dict]) -> Dict[str, Dict]:
        ids = {str(d["owner"]) for d in docs if d.get("owner") and is_valid_id(str(d["owner"]))}
        if not ids:
            return {}
        users = await self.db.users.find({"_id": {"$in": [to_obj_id(i) for i in ids]}})
        return {str(u["_id"]): u for u in users}

    async def categories(self) -> List[str]:
        values = await self.db.products.distinct("category")
        return sorted(v for v in values if isinstance(v, str) and v)

    async def get(self, product_id: str) -> Dict:
        doc = await self.db.products.find_by_id(to_obj_id(product_id, "product id"))
        if not doc:
            raise NotFound("Product not found")
        return sanitize(doc)

    async def create(self, actor: Dict, data: Dict[str, Any]) -> Dict:
        data = {**data}
        image_url = data.pop("image_url", None)
        if image_url and not data.get("thumbnail"):
            data["thumbnail"] = image_url
        doc = ProductSchema(**data, owner=str(actor["id"])).model_dump(exclude_none=True)
        created = await self.db.products.create(doc)
        logger.info("Product created", extra={"product_id": str(created["_id"]), "user_id": actor["id"]})
        return sanitize(created)

    async def update(self, actor: Dict, product_id: str, patch: Dict[str, Any]) -> Dict:
        oid = to_obj_id(product_id, "product id")
        authorize_mutation(actor["id"], await self.db.products.find_by_id(oid))
        patch = {k: v for k, v in patch.items() if k not in ("_id", "id", "owner", "created_at")}
        if not patch:
            raise NoChanges()
        patch["updated_at"] = utcnow()
        updated = await self.db.products.update_by_id(oid, patch)
        if updated is None:
            raise ProductNotFound()
        logger.info("Product updated", extra={"product_id": product_id, "user_id": actor["id"]})
        return sanitize(updated)

    async def delete(self, actor: Dict, product_id: str) -> None:
        oid = to_obj_id(product_id, "product id")
        authorize_mutation(actor["id"], await self.db.products.find_by_id(oid))
        await self.db.products.delete_by_id(oid)
        logger.info("Product deleted", extra={"product_id": product_id, "user_id": actor["id"]})
