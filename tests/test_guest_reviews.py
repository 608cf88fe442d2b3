"""Reviews with REVIEW_MODE="guest": anonymous visitors may review."""

import pytest


@pytest.fixture
async def product(make_user, make_product):
    _, headers = await make_user("Olivia Owner")
    return await make_product(headers)


async def test_guest_review(client, guest_mode, product):
    res = await client.post(
        f"/products/{product['id']}/reviews",
        json={"rating": 4, "guest": {"name": " Bob ", "email": "Bob@Example.com"}},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["guest"] == {"name": "Bob", "email": "bob@example.com"}
    assert body["origin"] == "guest"
    assert "author" not in body


async def test_guest_needs_name_or_email(client, guest_mode, product):
    res = await client.post(f"/products/{product['id']}/reviews", json={"rating": 4})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_IDENTITY"
    res = await client.post(f"/products/{product['id']}/reviews", json={"rating": 4, "guest": {"name": " "}})
    assert res.status_code == 400


async def test_guest_email_must_be_valid(client, guest_mode, product):
    res = await client.post(
        f"/products/{product['id']}/reviews", json={"rating": 4, "guest": {"email": "bob@localhost"}}
    )
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


async def test_one_review_per_guest_email(client, guest_mode, product):
    url = f"/products/{product['id']}/reviews"
    assert (await client.post(url, json={"rating": 4, "guest": {"email": "bob@example.com"}})).status_code == 201
    res = await client.post(url, json={"comment": "again", "guest": {"name": "Robert", "email": "BOB@example.com"}})
    assert res.status_code == 409
    assert res.json()["code"] == "DUPLICATE_REVIEW"


async def test_guests_without_email_are_not_deduplicated(client, guest_mode, product):
    url = f"/products/{product['id']}/reviews"
    assert (await client.post(url, json={"rating": 4, "guest": {"name": "Bob"}})).status_code == 201
    assert (await client.post(url, json={"rating": 2, "guest": {"name": "Bob"}})).status_code == 201


async def test_guest_and_user_reviews_coexist(client, guest_mode, make_user, product):
    url = f"/products/{product['id']}/reviews"
    user, headers = await make_user("Rita Reviewer")
    assert (await client.post(url, json={"rating": 5, "guest": {"email": user["email"]}})).status_code == 201
    assert (await client.post(url, json={"rating": 5}, headers=headers)).status_code == 201
    reviews = (await client.get(url)).json()
    assert [r["origin"] for r in reviews] == ["user", "guest"]
    assert reviews[0]["author_name"] == "Rita Reviewer"
    assert "author_name" not in reviews[1]


async def test_user_and_guest_details_together_rejected(client, guest_mode, make_user, product):
    _, headers = await make_user("Rita Reviewer")
    res = await client.post(
        f"/products/{product['id']}/reviews",
        json={"rating": 5, "guest": {"name": "Someone Else"}},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_IDENTITY"


async def test_explicit_origin_must_match(client, guest_mode, make_user, product):
    url = f"/products/{product['id']}/reviews"
    res = await client.post(url, json={"rating": 3, "origin": "user", "guest": {"name": "Bob"}})
    assert res.status_code == 400
    assert res.json()["code"] == "IDENTITY_MISMATCH"
    res = await client.post(url, json={"rating": 3, "origin": "guest", "guest": {"name": "Bob"}})
    assert res.status_code == 201


async def test_guest_mode_still_blocks_self_review(client, guest_mode, make_user, make_product):
    _, headers = await make_user("Olga Seller")
    product = await make_product(headers)
    res = await client.post(f"/products/{product['id']}/reviews", json={"rating": 5}, headers=headers)
    assert res.status_code == 403


async def test_guest_reviews_cannot_be_edited(client, guest_mode, make_user, product):
    res = await client.post(f"/products/{product['id']}/reviews", json={"rating": 4, "guest": {"name": "Bob"}})
    review_id = res.json()["id"]
    _, headers = await make_user("Rita Reviewer")
    res = await client.patch(f"/reviews/{review_id}", json={"rating": 1}, headers=headers)
    assert res.status_code == 403
    res = await client.delete(f"/reviews/{review_id}", headers=headers)
    assert res.status_code == 403


async def test_invalid_token_is_rejected_even_in_guest_mode(client, guest_mode, product):
    res = await client.post(
        f"/products/{product['id']}/reviews",
        json={"rating": 4, "guest": {"name": "Bob"}},
        headers={"Authorization": "Bearer garbage"},
    )
    assert res.status_code == 401


async def test_guest_email_index_violation_is_conflict(client, db, guest_mode, product, monkeypatch):
    """An insert that slips past the lookup is still stopped by the guest email index."""

    async def no_existing(query):
        return None

    monkeypatch.setattr(db.reviews, "find_one", no_existing)
    url = f"/products/{product['id']}/reviews"
    assert (await client.post(url, json={"rating": 4, "guest": {"email": "bob@example.com"}})).status_code == 201
    res = await client.post(url, json={"rating": 1, "guest": {"name": "Bobby", "email": "bob@example.com"}})
    assert res.status_code == 409
    assert res.json()["code"] == "DUPLICATE_REVIEW"
    assert len(db.reviews.docs) == 1
