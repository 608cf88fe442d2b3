"""
Who is writing a review.

A review is attributed to exactly one of:
- UserIdentity: an authenticated user (stored as `author`)
- GuestIdentity: an anonymous visitor with a name and/or email (stored as `guest`),
  only accepted when the deployment runs with REVIEW_MODE="guest"

The wire-level `origin` string ("user" / "guest") is derived from the variant
and never stored.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Union

from errors import InvalidIdentity
from schemas import Guest

STRICT = "strict"
GUEST = "guest"


@dataclass(frozen=True)
class UserIdentity:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None

    origin = "user"

    def to_document(self) -> Dict:
        return {"author": self.id}


@dataclass(frozen=True)
class GuestIdentity:
    name: Optional[str] = None
    email: Optional[str] = None

    origin = "guest"

    def to_document(self) -> Dict:
        guest = {k: v for k, v in (("name", self.name), ("email", self.email)) if v}
        return {"guest": guest}


Identity = Union[UserIdentity, GuestIdentity]


def resolve_identity(actor: Optional[Dict], guest: Optional[Guest], mode: str = STRICT) -> Identity:
    """Resolve the identity behind a review write.

    `actor` is the authenticated user ({"id", "email", "name"}) or None.
    """
    has_guest = guest is not None and not guest.is_empty()
    if mode == STRICT:
        if actor is None:
            raise InvalidIdentity("Authentication is required to write a review")
        if guest is not None:
            raise InvalidIdentity("Guest reviews are not enabled")
        return UserIdentity(id=str(actor["id"]), email=actor.get("email"), name=actor.get("name"))

    if mode != GUEST:
        raise ValueError(f"unknown review mode {mode!r}")
    if actor is not None and has_guest:
        raise InvalidIdentity("Provide either an authenticated user or guest details, not both")
    if actor is not None:
        return UserIdentity(id=str(actor["id"]), email=actor.get("email"), name=actor.get("name"))
    if has_guest:
        return GuestIdentity(name=guest.name, email=guest.email)
    raise InvalidIdentity("Provide an authenticated user or a guest name or email")


def identity_from_document(doc: Dict) -> Optional[Identity]:
    if doc.get("author"):
        return UserIdentity(id=str(doc["author"]))
    guest = doc.get("guest") or {}
    if guest.get("name") or guest.get("email"):
        return GuestIdentity(name=guest.get("name"), email=guest.get("email"))
    return None
