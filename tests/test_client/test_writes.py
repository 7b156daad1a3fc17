# test_writes.py - creates, updates, upserts and deletes through the delegates

import pytest

from app.client.delegate import BatchPayload
from app.client.errors import RecordNotFoundError, UniqueConstraintError, ValidationError


def test_missing_and_unknown_fields_fail_before_sql(db):
    """Test 1: data is validated against the model"""
    with pytest.raises(ValidationError, match="user_email"):
        db.users.create(data={"user_name": "No Email"})
    with pytest.raises(ValidationError, match="nickname"):
        db.users.create(data={"user_name": "A", "user_email": "a@example.com", "nickname": "a"})
    assert db.users.count() == 0


def test_atomic_number_updates(db, products):
    """Test 2: increment / decrement / multiply / divide / set"""
    tea = {"product_id": products[0]["product_id"]}

    assert db.products.update(where=tea, data={"product_stock": {"increment": 4}})["product_stock"] == 9
    assert db.products.update(where=tea, data={"product_stock": {"decrement": 2}})["product_stock"] == 7
    assert db.products.update(where=tea, data={"product_price": {"multiply": 3}})["product_price"] == 30.0
    assert db.products.update(where=tea, data={"product_price": {"divide": 4}})["product_price"] == 7.5
    assert db.products.update(where=tea, data={"product_stock": {"set": 1}})["product_stock"] == 1

    with pytest.raises(ValidationError):
        db.products.update(where=tea, data={"product_name": {"increment": 1}})
    with pytest.raises(ValidationError):
        db.products.update(where=tea, data={"product_stock": {"increment": 1, "decrement": 1}})


def test_update_missing_record(db):
    """Test 3: update and delete of a missing row raise P2025"""
    with pytest.raises(RecordNotFoundError):
        db.products.update(where={"product_id": 42}, data={"product_stock": 1})
    with pytest.raises(RecordNotFoundError):
        db.products.delete(where={"product_id": 42})


def test_nested_create_connects_and_creates_children(db, user, products):
    """Test 4: an order can be created with its user connected and its lines inline"""
    order = db.orders.create(
        data={
            "user": {"connect": {"user_email": "asha@example.com"}},
            "order_amount": 40.0,
            "order_details": {"create": [
                {"product_id": products[0]["product_id"], "quantity": 2, "product_price": 10.0},
                {"product_id": products[1]["product_id"], "quantity": 1, "product_price": 20.0},
            ]},
        },
        include={"order_details": True, "user": True},
    )

    assert order["user_id"] == user["user_id"]
    assert order["user"]["user_name"] == "Asha"
    assert [d["quantity"] for d in order["order_details"]] == [2, 1]
    assert all(d["order_id"] == order["order_id"] for d in order["order_details"])


def test_nested_connect_to_missing_record(db):
    """Test 5: connecting a missing parent raises P2025 and writes nothing"""
    with pytest.raises(RecordNotFoundError):
        db.orders.create(data={"user": {"connect": {"user_id": 77}}, "order_amount": 1.0})
    assert db.orders.count() == 0


def test_nested_create_many_and_to_one_create(db, products):
    """Test 6: nested create_many on to-many and create on to-one"""
    order = db.orders.create(
        data={
            "user": {"create": {"user_name": "Dev", "user_email": "dev@example.com"}},
            "order_amount": 30.0,
            "order_details": {"create_many": {"data": [
                {"product_id": products[0]["product_id"], "quantity": 1, "product_price": 10.0},
                {"product_id": products[1]["product_id"], "quantity": 1, "product_price": 20.0},
            ]}},
        },
        include={"_count": {"select": {"order_details": True}}},
    )

    assert order["_count"] == {"order_details": 2}
    assert db.users.find_unique(where={"user_email": "dev@example.com"})["user_id"] == order["user_id"]


def test_nested_update_disconnects_optional_relation(db, user, products):
    """Test 7: optional to-one relations can be disconnected, required ones cannot"""
    item = db.cart.create(data={"session_id": "guest-5", "product_id": products[0]["product_id"], "quantity": 1})

    moved = db.cart.update(
        where={"cart_id": item["cart_id"]},
        data={"user": {"connect": {"user_id": user["user_id"]}}, "session_id": None},
    )
    assert moved["user_id"] == user["user_id"]
    assert moved["session_id"] is None

    with pytest.raises(ValidationError):
        db.cart.update(where={"cart_id": item["cart_id"]}, data={"product": {"disconnect": True}})


def test_upsert(db):
    """Test 8: upsert creates once, then updates"""
    args = {
        "where": {"supabase_id": "sb-1"},
        "create": {"supabase_id": "sb-1", "user_name": "First", "user_email": "first@example.com"},
        "update": {"user_name": "Renamed"},
    }

    created = db.users.upsert(**args)
    updated = db.users.upsert(**args)

    assert created["user_name"] == "First"
    assert updated["user_name"] == "Renamed"
    assert updated["user_id"] == created["user_id"]
    assert db.users.count() == 1


def test_create_many(db, products):
    """Test 9: create_many reports a count, skip_duplicates ignores conflicts"""
    rows = [
        {"product_name": "Tea", "product_description": "", "product_price": 1.0},
        {"product_name": "Ginger", "product_description": "", "product_price": 2.0},
    ]

    with pytest.raises(UniqueConstraintError):
        db.products.create_many(data=rows)
    assert db.products.count() == 3

    assert db.products.create_many(data=rows, skip_duplicates=True) == BatchPayload(count=1)
    assert db.products.count() == 4

    created = db.products.create_many_and_return(
        data=[{"product_name": "Pepper", "product_description": "", "product_price": 4.0}],
        select={"product_name": True},
    )
    assert created == [{"product_name": "Pepper"}]


def test_update_many_and_delete_many(db, products):
    """Test 10: multi-row writes honour where and limit"""
    result = db.products.update_many(where={"product_price": {"lt": 25}}, data={"product_stock": {"increment": 10}})
    assert result.count == 2
    assert [p["product_stock"] for p in db.products.find_many()] == [15, 13, 0]

    rows = db.products.update_many_and_return(data={"product_image": "x.png"}, limit=2, select={"product_name": True})
    assert rows == [{"product_name": "Tea"}, {"product_name": "Coffee"}]
    assert db.products.count(where={"product_image": None}) == 1

    assert db.products.update_many(where={"product_name": "Nope"}, data={"product_stock": 1}).count == 0
    assert db.products.delete_many(limit=1).count == 1
    assert db.products.delete_many().count == 2
