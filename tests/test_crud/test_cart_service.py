# test_cart_service.py - guest and user carts

import pytest
from fastapi import HTTPException

from app.crud import cart as crud_cart


def test_cart_needs_an_owner(db):
    """Test 1: without a user or a session there is no cart"""
    with pytest.raises(HTTPException) as excinfo:
        crud_cart.get_cart(db, None, None)
    assert excinfo.value.status_code == 401


def test_add_and_list_guest_cart(db, products):
    """Test 2: items, item totals and grand total"""
    tea, coffee, _ = products

    first = crud_cart.add_to_cart(db, None, "guest-1", tea["product_id"], 2)
    crud_cart.add_to_cart(db, None, "guest-1", coffee["product_id"], 1)
    again = crud_cart.add_to_cart(db, None, "guest-1", tea["product_id"], 4)

    assert first["action"] == "created"
    assert first["item"]["product"]["product_name"] == "Tea"
    assert again["action"] == "exists"
    assert again["item"]["quantity"] == 2

    cart = crud_cart.get_cart(db, None, "guest-1")
    assert [item["item_total"] for item in cart["items"]] == [20.0, 20.0]
    assert cart["grand_total"] == 40.0
    assert crud_cart.get_cart(db, None, "guest-2")["items"] == []


def test_add_checks_product_and_stock(db, products):
    """Test 3: missing products and quantities above stock are rejected"""
    with pytest.raises(HTTPException) as excinfo:
        crud_cart.add_to_cart(db, None, "guest-1", 999, 1)
    assert excinfo.value.status_code == 404

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.add_to_cart(db, None, "guest-1", products[1]["product_id"], 4)
    assert excinfo.value.status_code == 400
    assert db.cart.count() == 0


def test_update_quantity_and_delta(db, user, products):
    """Test 4: quantity sets, delta adjusts, zero removes"""
    added = crud_cart.add_to_cart(db, user["user_id"], None, products[0]["product_id"], 1)
    cart_id = added["item"]["cart_id"]

    assert crud_cart.update_cart_item(db, user["user_id"], None, cart_id, quantity=3)["item"]["quantity"] == 3
    assert crud_cart.update_cart_item(db, user["user_id"], None, cart_id, delta=1)["item"]["quantity"] == 4

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.update_cart_item(db, user["user_id"], None, cart_id, delta=5)
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.update_cart_item(db, user["user_id"], None, cart_id)
    assert excinfo.value.status_code == 400

    result = crud_cart.update_cart_item(db, user["user_id"], None, cart_id, delta=-4)
    assert result["action"] == "deleted"
    assert db.cart.count() == 0


def test_only_the_owner_can_change_an_item(db, user, products):
    """Test 5: another session gets 403, a missing item 404"""
    added = crud_cart.add_to_cart(db, None, "guest-1", products[0]["product_id"], 1)
    cart_id = added["item"]["cart_id"]

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.remove_cart_item(db, None, "guest-2", cart_id)
    assert excinfo.value.status_code == 403

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.remove_cart_item(db, user["user_id"], None, cart_id)
    assert excinfo.value.status_code == 403

    with pytest.raises(HTTPException) as excinfo:
        crud_cart.remove_cart_item(db, None, "guest-1", cart_id + 1)
    assert excinfo.value.status_code == 404

    assert crud_cart.remove_cart_item(db, None, "guest-1", cart_id) == {"action": "deleted", "cart_id": cart_id}


def test_merge_guest_cart(db, user, products):
    """Test 6: guest rows move to the user, matching products add up"""
    tea, coffee, _ = products
    crud_cart.add_to_cart(db, user["user_id"], None, tea["product_id"], 1)
    crud_cart.add_to_cart(db, None, "guest-1", tea["product_id"], 2)
    crud_cart.add_to_cart(db, None, "guest-1", coffee["product_id"], 1)

    result = crud_cart.merge_guest_cart(db, user["user_id"], "guest-1")

    assert result == {"action": "merged", "items_count": 2}
    assert db.cart.count(where={"session_id": "guest-1"}) == 0
    items = {item["product_id"]: item["quantity"] for item in crud_cart.get_cart(db, user["user_id"], None)["items"]}
    assert items == {tea["product_id"]: 3, coffee["product_id"]: 1}
