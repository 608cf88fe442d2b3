import pytest

from errors import (
    EmptyReview,
    IdentityMismatch,
    InvalidComment,
    InvalidImageUrl,
    InvalidRating,
    MissingIdentity,
    NotOwner,
    ProductNotFound,
    SelfReview,
)
from identity import GuestIdentity, UserIdentity
from products import authorize_mutation, authorize_review, build_product_query
from reviews import (
    check_comment,
    check_content,
    check_identity,
    check_image_url,
    check_rating,
    duplicate_filter,
    validate_content,
)


@pytest.mark.parametrize("rating,comment,image_url", [
    (None, None, None),
    (None, "   ", ""),
    ("", None, "  "),
])
def test_empty_review_rejected(rating, comment, image_url):
    with pytest.raises(EmptyReview):
        check_content(rating, comment, image_url)


def test_any_single_content_field_is_enough():
    check_content(4, None, None)
    check_content(None, "Nice", None)
    check_content(None, None, "https://img.example.com/a.png")


@pytest.mark.parametrize("value,expected", [(1, 1), (5, 5), ("3", 3), (4.0, 4), (" 2 ", 2)])
def test_rating_accepted(value, expected):
    assert check_rating(value) == expected


@pytest.mark.parametrize("value", [0, 6, -1, "abc", 3.5, True, "", float("nan"), [3]])
def test_rating_rejected(value):
    with pytest.raises(InvalidRating):
        check_rating(value)


def test_rating_absent_is_fine():
    assert check_rating(None) is None


def test_image_url():
    assert check_image_url("  https://cdn.example.com/x.jpg ") == "https://cdn.example.com/x.jpg"
    assert check_image_url("HTTP://EXAMPLE.COM/x") == "HTTP://EXAMPLE.COM/x"
    assert check_image_url("") is None
    for bad in ("ftp://example.com/x", "example.com/x.png", "https://exa mple.com", "https://"):
        with pytest.raises(InvalidImageUrl):
            check_image_url(bad)


def test_comment_length():
    assert check_comment("  ok ") == "ok"
    assert check_comment("x" * 1000) == "x" * 1000
    with pytest.raises(InvalidComment):
        check_comment("x" * 1001)


def test_validate_content_normalizes():
    assert validate_content("5", " great ", "") == {"rating": 5, "comment": "great", "image_url": None}


def test_identity_origin_derived_and_checked():
    user = UserIdentity(id="u1")
    guest = GuestIdentity(name="Bob")
    assert check_identity(user) == "user"
    assert check_identity(guest) == "guest"
    assert check_identity(guest, "guest") == "guest"
    with pytest.raises(IdentityMismatch):
        check_identity(user, "guest")
    with pytest.raises(IdentityMismatch):
        check_identity(guest, "user")
    with pytest.raises(MissingIdentity):
        check_identity(None)


def test_duplicate_filter():
    assert duplicate_filter("p1", UserIdentity(id="u1")) == {"product": "p1", "author": "u1"}
    assert duplicate_filter("p1", GuestIdentity(email="b@x.io")) == {"product": "p1", "guest.email": "b@x.io"}
    assert duplicate_filter("p1", GuestIdentity(name="Bob")) is None


def test_authorize_mutation():
    product = {"_id": "p1", "owner": "u1"}
    assert authorize_mutation("u1", product) is product
    with pytest.raises(NotOwner):
        authorize_mutation("u2", product)
    with pytest.raises(NotOwner):
        authorize_mutation("u1", {"_id": "p2"})
    with pytest.raises(ProductNotFound):
        authorize_mutation("u1", None)


def test_authorize_review():
    with pytest.raises(SelfReview):
        authorize_review("u1", {"owner": "u1"})
    assert authorize_review("u2", {"owner": "u1"})
    assert authorize_review("u1", {"title": "no owner"})
    with pytest.raises(ProductNotFound):
        authorize_review("u1", None)


def test_build_product_query():
    assert build_product_query() == {}
    q = build_product_query(category="home", q="lamp.", min_price=10, max_price=50)
    assert q["category"] == "home"
    assert q["price"] == {"$gte": 10, "$lte": 50}
    assert q["$or"][0] == {"title": {"$regex": r"lamp\.", "$options": "i"}}
    assert build_product_query(min_price=0) == {"price": {"$gte": 0}}
