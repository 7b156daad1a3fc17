# test_review_service.py - reviews and profiles

import pytest
from fastapi import HTTPException
from pydantic import ValidationError as SchemaValidationError

from app.client.errors import RecordNotFoundError
from app.crud import review as crud_review
from app.crud import user as crud_user
from app.schemas.schemas import ProfileUpdate, ReviewCreate


@pytest.fixture
def buyer(db, user, products):
    order = db.orders.create(data={"user_id": user["user_id"], "order_amount": 20.0})
    db.order_details.create(data={
        "order_id": order["order_id"],
        "product_id": products[0]["product_id"],
        "quantity": 2,
        "product_price": 10.0,
    })
    return user


def test_review_text_is_validated():
    """Test 1: reviews shorter than five characters are rejected"""
    with pytest.raises(SchemaValidationError):
        ReviewCreate(product_id=1, review="  ok  ")
    assert ReviewCreate(product_id=1, review="  Great tea  ").review == "Great tea"


def test_only_buyers_can_review(db, buyer, products):
    """Test 2: purchase, existence and one-review-per-product checks"""
    with pytest.raises(HTTPException) as excinfo:
        crud_review.create_review(db, buyer["user_id"], products[1]["product_id"], "Never bought it")
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException) as excinfo:
        crud_review.create_review(db, buyer["user_id"], 999, "Does not exist")
    assert excinfo.value.status_code == 404

    review = crud_review.create_review(db, buyer["user_id"], products[0]["product_id"], "Strong and fresh")
    assert review["product"]["product_name"] == "Tea"

    with pytest.raises(HTTPException) as excinfo:
        crud_review.create_review(db, buyer["user_id"], products[0]["product_id"], "Reviewing again")
    assert excinfo.value.status_code == 400


def test_list_update_and_delete_reviews(db, buyer, products):
    """Test 3: users manage their own reviews"""
    review = crud_review.create_review(db, buyer["user_id"], products[0]["product_id"], "Strong and fresh")

    listing = crud_review.list_user_reviews(db, buyer["user_id"], limit=500)
    assert [r["review_id"] for r in listing["reviews"]] == [review["review_id"]]
    assert listing["pagination"]["items_per_page"] == crud_review.MAX_PAGE_SIZE
    assert crud_review.list_user_reviews(db, buyer["user_id"], product_id=products[1]["product_id"])["reviews"] == []

    updated = crud_review.update_review(db, buyer["user_id"], review["review_id"], "Even better the second time")
    assert updated["review"] == "Even better the second time"

    stranger = db.users.create(data={"user_name": "Kiran", "user_email": "kiran@example.com"})
    with pytest.raises(HTTPException) as excinfo:
        crud_review.delete_review(db, stranger["user_id"], review["review_id"])
    assert excinfo.value.status_code == 403

    assert crud_review.delete_review(db, buyer["user_id"], review["review_id"])["success"] is True
    assert db.reviews.count() == 0


def test_identity_upsert_and_profile(db):
    """Test 4: signing in creates the user once, profiles include counts"""
    first = crud_user.upsert_identity(db, "sb-42", "meera@example.com", "Meera")
    again = crud_user.upsert_identity(db, "sb-42", "meera@example.com", None)

    assert again["user_id"] == first["user_id"]
    assert again["user_name"] == "meera@example.com"

    profile = crud_user.update_profile(db, first["user_id"], ProfileUpdate(user_name="Meera K", user_phone="+919812345678"))
    assert profile["user_name"] == "Meera K"
    assert profile["user_phone"] == 919812345678
    assert profile["_count"] == {"orders": 0, "reviews": 0}

    unchanged = crud_user.update_profile(db, first["user_id"], ProfileUpdate(user_address="Chennai"))
    assert unchanged["user_name"] == "Meera K"
    assert unchanged["user_address"] == "Chennai"

    with pytest.raises(RecordNotFoundError):
        crud_user.get_profile(db, 999)


def test_identity_claims_guest_account(db):
    """Test 5: signing in with the email of a guest-checkout account links it"""
    guest = db.users.create(data={"user_name": "Guest Buyer", "user_email": "guest@example.com"})

    linked = crud_user.upsert_identity(db, "sb-guest", "guest@example.com", "Guest")

    assert linked["user_id"] == guest["user_id"]
    assert linked["supabase_id"] == "sb-guest"
    assert db.users.count() == 1


def test_profile_phone_is_validated():
    """Test 6: phones must be E.164"""
    with pytest.raises(SchemaValidationError):
        ProfileUpdate(user_phone="12-34")
