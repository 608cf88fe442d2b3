"""
Reviews: write-time invariants and the CRUD service around them.

Invariants enforced before anything is written:
- at least one of rating / comment / image_url is present and non-blank
- rating, when present, is an integer in [1, 5]
- image_url, when present, is an http(s) URL without whitespace
- comment, when present, is at most MAX_COMMENT_LENGTH characters
- exactly one identity (user or guest); an explicit `origin` must agree with it
- one review per (product, author) and per (product, guest email)

The last rule is checked up front so the caller gets a clean 409, but the
partial unique indexes created in database.py are what actually guarantee it.
A DuplicateKeyError raised by the insert is translated to DuplicateReview.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import Database, sanitize, to_obj_id
from errors import (
    DuplicateReview,
    EmptyReview,
    IdentityMismatch,
    InvalidComment,
    InvalidImageUrl,
    InvalidRating,
    MissingIdentity,
    NoChanges,
    NotAuthor,
    NotFound,
    ProductNotFound,
)
from identity import STRICT, GuestIdentity, Identity, UserIdentity, identity_from_document, resolve_identity
from products import authorize_review
from schemas import Guest, Review as ReviewSchema, utcnow

logger = logging.getLogger(__name__)

IMAGE_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
MAX_COMMENT_LENGTH = 1000
CONTENT_FIELDS = ("rating", "comment", "image_url")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def check_content(rating: Any, comment: Any, image_url: Any) -> None:
    if _blank(rating) and _blank(comment) and _blank(image_url):
        raise EmptyReview()


def check_rating(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRating()
    if isinstance(value, str):
        value = value.strip()
        try:
            value = float(value)
        except ValueError:
            raise InvalidRating()
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidRating()
        value = int(value)
    if not isinstance(value, int) or not 1 <= value <= 5:
        raise InvalidRating()
    return value


def check_image_url(value: Optional[str]) -> Optional[str]:
    value = _clean_text(value)
    if value is not None and not IMAGE_URL_RE.match(value):
        raise InvalidImageUrl()
    return value


def check_comment(value: Optional[str]) -> Optional[str]:
    value = _clean_text(value)
    if value is not None and len(value) > MAX_COMMENT_LENGTH:
        raise InvalidComment(f"comment must be at most {MAX_COMMENT_LENGTH} characters")
    return value


def check_identity(identity: Optional[Identity], origin: Optional[str] = None) -> str:
    """Return the review origin, deriving it from the identity when not given."""
    if identity is None:
        raise MissingIdentity()
    if origin is not None and origin != identity.origin:
        raise IdentityMismatch(f"origin '{origin}' does not match a {identity.origin} review")
    return identity.origin


def validate_content(rating: Any, comment: Any, image_url: Any) -> Dict[str, Any]:
    """Run every content check and return the normalized fields."""
    check_content(rating, comment, image_url)
    return {
        "rating": check_rating(rating),
        "comment": check_comment(comment),
        "image_url": check_image_url(image_url),
    }


def duplicate_filter(product_id: str, identity: Identity) -> Optional[Dict[str, Any]]:
    if isinstance(identity, UserIdentity):
        return {"product": product_id, "author": identity.id}
    if isinstance(identity, GuestIdentity) and identity.email:
        return {"product": product_id, "guest.email": identity.email}
    return None


def to_public(doc: Dict, author_names: Optional[Dict[str, str]] = None) -> Dict:
    out = sanitize(doc)
    identity = identity_from_document(doc)
    out["origin"] = identity.origin if identity else None
    if author_names is not None and isinstance(identity, UserIdentity):
        out["author_name"] = author_names.get(identity.id)
    return out


class ReviewService:
    def __init__(self, db: Database, mode: str = STRICT):
        self.db = db
        self.mode = mode

    async def list_for_product(self, product_id: str) -> List[Dict]:
        product_id = str(to_obj_id(product_id, "product id"))
        docs = await self.db.reviews.find(
            {"product": product_id}, [("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        author_ids = {d["author"] for d in docs if d.get("author")}
        names: Dict[str, str] = {}
        if author_ids:
            oids = [to_obj_id(a) for a in author_ids]
            for u in await self.db.users.find({"_id": {"$in": oids}}):
                names[str(u["_id"])] = u.get("name")
        return [to_public(d, names) for d in docs]

    async def create(
        self,
        product_id: str,
        actor: Optional[Dict],
        payload: Dict[str, Any],
        guest: Optional[Guest] = None,
        origin: Optional[str] = None,
    ) -> Dict:
        product_oid = to_obj_id(product_id, "product id")
        product_id = str(product_oid)
        identity = resolve_identity(actor, guest, self.mode)

        product = await self.db.products.find_by_id(product_oid)
        if product is None:
            raise ProductNotFound()
        if isinstance(identity, UserIdentity):
            authorize_review(identity.id, product)

        content = validate_content(payload.get("rating"), payload.get("comment"), payload.get("image_url"))
        check_identity(identity, origin)

        dup = duplicate_filter(product_id, identity)
        if dup is not None and await self.db.reviews.find_one(dup):
            raise DuplicateReview()

        doc = ReviewSchema(product=product_id, **identity.to_document(), **content).model_dump(exclude_none=True)
        try:
            created = await self.db.reviews.create(doc)
        except DuplicateKeyError:
            logger.warning("Duplicate review rejected by index", extra={"product_id": product_id})
            raise DuplicateReview()
        logger.info(
            "Review created",
            extra={"review_id": str(created["_id"]), "product_id": product_id, "user_id": getattr(identity, "id", None)},
        )
        return to_public(created)

    async def _authored(self, actor: Dict, review_id: str) -> Dict:
        oid = to_obj_id(review_id, "review id")
        review = await self.db.reviews.find_by_id(oid)
        if not review:
            raise NotFound("Review not found")
        identity = identity_from_document(review)
        if not isinstance(identity, UserIdentity) or identity.id != str(actor["id"]):
            raise NotAuthor()
        return review

    async def update(self, actor: Dict, review_id: str, changes: Dict[str, Any]) -> Dict:
        review = await self._authored(actor, review_id)
        changes = {k: v for k, v in changes.items() if k in CONTENT_FIELDS}
        if changes.get("rating") is None:
            changes.pop("rating", None)
        if not changes:
            raise NoChanges()

        merged = {f: review.get(f) for f in CONTENT_FIELDS}
        merged.update(changes)
        content = validate_content(merged["rating"], merged["comment"], merged["image_url"])

        patch = {f: content[f] for f in changes}
        patch["updated_at"] = utcnow()
        updated = await self.db.reviews.update_by_id(review["_id"], patch)
        if updated is None:
            raise NotFound("Review not found")
        logger.info("Review updated", extra={"review_id": review_id, "user_id": actor["id"]})
        return to_public(updated)

    async def delete(self, actor: Dict, review_id: str) -> None:
        review = await self._authored(actor, review_id)
        await self.db.reviews.delete_by_id(review["_id"])
        logger.info("Review deleted", extra={"review_id": review_id, "user_id": actor["id"]})
