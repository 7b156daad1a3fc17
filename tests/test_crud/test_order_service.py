# test_order_service.py - checkout, guest checkout and payments

import hashlib
import hmac

import pytest
from fastapi import HTTPException

from app.crud import cart as crud_cart
from app.crud import order as crud_order
from app.crud import payment as crud_payment
from app.schemas.schemas import GuestCheckout, OrderCreate, PaymentVerify
from app.services.razorpay_service import RazorpayGateway

SECRET = "test_secret"


class FakeGateway(RazorpayGateway):
    """Signs like Razorpay but never calls the network."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=SECRET)
        self.created = []

    def create_order(self, order_id, amount, notes):
        self.created.append((order_id, amount, notes))
        return f"order_rzp_{len(self.created)}"


def _sign(razorpay_order_id, razorpay_payment_id):
    body = f"{razorpay_order_id}|{razorpay_payment_id}".encode()
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def _stock(db, name):
    return db.products.find_unique(where={"product_name": name})["product_stock"]


@pytest.fixture
def placed(db, user, products):
    tea, coffee, _ = products
    crud_cart.add_to_cart(db, user["user_id"], None, tea["product_id"], 2)
    crud_cart.add_to_cart(db, user["user_id"], None, coffee["product_id"], 1)
    return crud_order.place_order(db, user["user_id"], "12 MG Road, Bengaluru")


# -------------------------------------------------------------------- orders

def test_place_order(db, user, placed):
    """Test 1: the cart becomes an order with price snapshots and is emptied"""
    assert placed["order_amount"] == 40.0
    assert [(d["quantity"], d["product_price"]) for d in placed["order_details"]] == [(2, 10.0), (1, 20.0)]
    assert placed["user"] == {"user_name": "Asha", "user_email": "asha@example.com"}
    assert db.cart.count(where={"user_id": user["user_id"]}) == 0
    assert db.users.find_unique(where={"user_id": user["user_id"]})["user_address"] == "12 MG Road, Bengaluru"
    # stock is only taken when the order is paid
    assert _stock(db, "Tea") == 5


def test_place_order_needs_items_in_stock(db, user, products):
    """Test 2: empty carts and oversold products are rejected without side effects"""
    with pytest.raises(HTTPException) as excinfo:
        crud_order.place_order(db, user["user_id"], "Somewhere")
    assert excinfo.value.status_code == 400

    crud_cart.add_to_cart(db, user["user_id"], None, products[1]["product_id"], 3)
    db.products.update(where={"product_id": products[1]["product_id"]}, data={"product_stock": 1})

    with pytest.raises(HTTPException) as excinfo:
        crud_order.place_order(db, user["user_id"], "Somewhere")
    assert "Insufficient stock for Coffee" in excinfo.value.detail
    assert db.orders.count() == 0
    assert db.cart.count() == 1


def test_list_and_get_orders(db, user, placed):
    """Test 3: users see their own orders with lines and payments"""
    listing = crud_order.list_orders(db, user["user_id"], limit=10)
    assert [o["order_id"] for o in listing["orders"]] == [placed["order_id"]]
    assert listing["pagination"] == {"current_page": 1, "total_pages": 1, "total_items": 1, "items_per_page": 10}

    order = crud_order.get_order(db, user["user_id"], placed["order_id"])
    assert order["order_details"][0]["product"]["product_name"] == "Tea"
    assert order["payments"] == []

    stranger = db.users.create(data={"user_name": "Kiran", "user_email": "kiran@example.com"})
    with pytest.raises(HTTPException) as excinfo:
        crud_order.get_order(db, stranger["user_id"], placed["order_id"])
    assert excinfo.value.status_code == 404


def test_guest_checkout_reuses_user_by_email(db, user, products):
    """Test 4: a guest order attaches to the account with the same email"""
    crud_cart.add_to_cart(db, None, "guest-1", products[0]["product_id"], 1)
    data = GuestCheckout(email="asha@example.com", full_name="Asha G", phone="+919876543210", shipping_address="Pune")

    order = crud_order.guest_checkout(db, "guest-1", data)

    assert order["user_id"] == user["user_id"]
    assert order["order_amount"] == 10.0
    assert db.cart.count(where={"session_id": "guest-1"}) == 0
    assert db.users.count() == 1


def test_guest_checkout_creates_new_user(db, products):
    """Test 5: unknown emails get a new account"""
    crud_cart.add_to_cart(db, None, "guest-7", products[1]["product_id"], 2)
    data = GuestCheckout(email="new@example.com", full_name="New Buyer", phone="+14155550100", shipping_address="Austin")

    order = crud_order.guest_checkout(db, "guest-7", data)

    buyer = db.users.find_unique(where={"user_email": "new@example.com"})
    assert order["user_id"] == buyer["user_id"]
    assert buyer["user_phone"] == 14155550100
    assert buyer["user_name"] == "New Buyer"


# ------------------------------------------------------------------ payments

def test_create_payment_order_is_reused(db, user, placed):
    """Test 6: a second request for the same order reuses the gateway order"""
    gateway = FakeGateway()

    first = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"])
    second = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"], "New address")

    assert first["razorpay_order_id"] == second["razorpay_order_id"] == "order_rzp_1"
    assert len(gateway.created) == 1
    assert first["amount"] == 40.0
    assert first["shipping_address"] == "12 MG Road, Bengaluru"
    assert second["shipping_address"] == "New address"
    assert [item["name"] for item in first["items"]] == ["Tea", "Coffee"]
    assert db.payments.count(where={"payment_status": "created"}) == 1


def test_payment_order_must_belong_to_the_user(db, placed):
    """Test 7: other users get 403, unknown orders 404"""
    stranger = db.users.create(data={"user_name": "Kiran", "user_email": "kiran@example.com"})

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.create_payment_order(db, FakeGateway(), stranger["user_id"], placed["order_id"])
    assert excinfo.value.status_code == 403

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.create_payment_order(db, FakeGateway(), stranger["user_id"], 999)
    assert excinfo.value.status_code == 404


def test_verify_payment(db, user, placed, products):
    """Test 8: a valid signature marks the payment paid and takes the stock"""
    gateway = FakeGateway()
    created = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"])
    data = PaymentVerify(
        razorpay_order_id=created["razorpay_order_id"],
        razorpay_payment_id="pay_123",
        razorpay_signature=_sign(created["razorpay_order_id"], "pay_123"),
        order_id=placed["order_id"],
    )

    result = crud_payment.verify_payment(db, gateway, user["user_id"], data)

    assert result["success"] is True
    assert result["order"]["status"] == "confirmed"
    assert result["order"]["payment_details"]["payment_status"] == "paid"
    assert [item["total"] for item in result["order"]["items"]] == [20.0, 20.0]
    assert _stock(db, "Tea") == 3
    assert _stock(db, "Coffee") == 2


def test_verify_payment_with_bad_signature(db, user, placed):
    """Test 9: a forged signature marks the payment failed and keeps the stock"""
    gateway = FakeGateway()
    created = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"])
    data = PaymentVerify(
        razorpay_order_id=created["razorpay_order_id"],
        razorpay_payment_id="pay_123",
        razorpay_signature="0" * 64,
        order_id=placed["order_id"],
    )

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.verify_payment(db, gateway, user["user_id"], data)

    assert excinfo.value.status_code == 400
    assert db.payments.find_first(where={"order_id": placed["order_id"]})["payment_status"] == "failed"
    assert _stock(db, "Tea") == 5


def test_verify_payment_for_unknown_payment(db, user, placed):
    """Test 10: a valid signature for a payment the user doesn't own is a 404"""
    data = PaymentVerify(
        razorpay_order_id="order_other",
        razorpay_payment_id="pay_9",
        razorpay_signature=_sign("order_other", "pay_9"),
        order_id=placed["order_id"],
    )

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.verify_payment(db, FakeGateway(), user["user_id"], data)
    assert excinfo.value.status_code == 404
    assert _stock(db, "Tea") == 5


def test_cash_on_delivery(db, user, placed):
    """Test 11: COD records a pending payment and takes the stock"""
    result = crud_payment.confirm_cod_order(db, user["user_id"], placed["order_id"])

    assert result["order"]["status"] == "confirmed_cod"
    payment = db.payments.find_first(where={"order_id": placed["order_id"]})
    assert payment["payment_mode"] == "cod"
    assert payment["payment_status"] == "pending_cod"
    assert payment["razorpay_order_id"].startswith(f"cod_{placed['order_id']}_")
    assert _stock(db, "Tea") == 3


def _verify(db, gateway, user, placed, payment_id="pay_123"):
    created = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"])
    data = PaymentVerify(
        razorpay_order_id=created["razorpay_order_id"],
        razorpay_payment_id=payment_id,
        razorpay_signature=_sign(created["razorpay_order_id"], payment_id),
        order_id=placed["order_id"],
    )
    return crud_payment.verify_payment(db, gateway, user["user_id"], data), data


def test_replayed_verify_takes_stock_once(db, user, placed):
    """Test 12: verifying the same payment twice answers again without touching stock"""
    gateway = FakeGateway()
    _, data = _verify(db, gateway, user, placed)

    again = crud_payment.verify_payment(db, gateway, user["user_id"], data)

    assert again["order"]["payment_details"]["razorpay_payment_id"] == "pay_123"
    assert _stock(db, "Tea") == 3
    assert _stock(db, "Coffee") == 2

    other = PaymentVerify(
        razorpay_order_id=data.razorpay_order_id,
        razorpay_payment_id="pay_456",
        razorpay_signature=_sign(data.razorpay_order_id, "pay_456"),
        order_id=placed["order_id"],
    )
    with pytest.raises(HTTPException) as excinfo:
        crud_payment.verify_payment(db, gateway, user["user_id"], other)
    assert excinfo.value.status_code == 409
    assert _stock(db, "Tea") == 3


def test_paid_order_cannot_switch_to_cod(db, user, placed):
    """Test 13: cash on delivery is refused once the order is paid"""
    _verify(db, FakeGateway(), user, placed)

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.confirm_cod_order(db, user["user_id"], placed["order_id"])

    assert excinfo.value.status_code == 409
    assert _stock(db, "Tea") == 3
    assert db.payments.count(where={"payment_mode": "cod"}) == 0


def test_cod_order_is_confirmed_once(db, user, placed):
    """Test 14: a COD order can't be confirmed twice or paid online afterwards"""
    gateway = FakeGateway()
    created = crud_payment.create_payment_order(db, gateway, user["user_id"], placed["order_id"])
    crud_payment.confirm_cod_order(db, user["user_id"], placed["order_id"])

    with pytest.raises(HTTPException) as excinfo:
        crud_payment.confirm_cod_order(db, user["user_id"], placed["order_id"])
    assert excinfo.value.status_code == 409

    data = PaymentVerify(
        razorpay_order_id=created["razorpay_order_id"],
        razorpay_payment_id="pay_789",
        razorpay_signature=_sign(created["razorpay_order_id"], "pay_789"),
        order_id=placed["order_id"],
    )
    with pytest.raises(HTTPException) as excinfo:
        crud_payment.verify_payment(db, gateway, user["user_id"], data)
    assert excinfo.value.status_code == 409
    assert _stock(db, "Tea") == 3


def test_order_request_carries_the_shipping_address_only():
    """Test 15: the payment method is chosen at payment time, not on the order"""
    assert set(OrderCreate.model_fields) == {"shipping_address"}
    assert OrderCreate(shipping_address="Pune", payment_method="cod").model_dump() == {"shipping_address": "Pune"}
