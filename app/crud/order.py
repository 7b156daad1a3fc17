import logging
import math
from fastapi import HTTPException
from app.client.client import StoreClient
from app.schemas.schemas import GuestCheckout
from app.utils.phone import validate_phone_number

logger = logging.getLogger("orders")

ORDER_INCLUDE = {
    "order_details": {"include": {"product": True}},
    "payments": {"order_by": {"payment_date": "desc"}},
}


def _checkout_items(cart_items):
    if not cart_items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    for item in cart_items:
        product = item["product"]
        if item["quantity"] > product["product_stock"]:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient stock for {product['product_name']}. Only {product['product_stock']} available.",
            )
    order_amount = sum(item["product"]["product_price"] * item["quantity"] for item in cart_items)
    details = [
        {
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            # price is copied so later product edits don't rewrite history
            "product_price": item["product"]["product_price"],
        }
        for item in cart_items
    ]
    return order_amount, details


def place_order(db: StoreClient, user_id: int, shipping_address: str) -> dict:
    """Turn the user's cart into an order and empty the cart."""

    def checkout(tx):
        cart_items = tx.cart.find_many(where={"user_id": user_id}, include={"product": True})
        order_amount, details = _checkout_items(cart_items)
        order = tx.orders.create(
            data={
                "user": {"connect": {"user_id": user_id}},
                "order_amount": order_amount,
                "order_details": {"create": details},
            },
            include={
                "order_details": {"include": {"product": True}},
                "user": {"select": {"user_name": True, "user_email": True}},
            },
        )
        tx.cart.delete_many(where={"user_id": user_id})
        tx.users.update(where={"user_id": user_id}, data={"user_address": shipping_address})
        return order

    order = db.transaction(checkout)
    logger.info(f"✅ Order created for user {user_id}: Order #{order['order_id']}")
    return order


def list_orders(db: StoreClient, user_id: int, limit: int = 10, offset: int = 0) -> dict:
    where = {"user_id": user_id}
    orders = db.orders.find_many(
        where=where,
        include=ORDER_INCLUDE,
        order_by={"order_date": "desc"},
        take=limit,
        skip=offset,
    )
    total = db.orders.count(where=where)
    return {
        "orders": orders,
        "pagination": {
            "current_page": offset // limit + 1,
            "total_pages": math.ceil(total / limit),
            "total_items": total,
            "items_per_page": limit,
        },
    }


def get_order(db: StoreClient, user_id: int, order_id: int) -> dict:
    order = db.orders.find_first(where={"order_id": order_id, "user_id": user_id}, include=ORDER_INCLUDE)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def guest_checkout(db: StoreClient, session_id: str, data: GuestCheckout) -> dict:
    """Place an order from a guest cart, attaching it to a user found or created by email."""
    phone = validate_phone_number(data.phone)

    def checkout(tx):
        cart_items = tx.cart.find_many(where={"session_id": session_id}, include={"product": True})
        order_amount, details = _checkout_items(cart_items)
        user = tx.users.upsert(
            where={"user_email": data.email},
            update={"user_address": data.shipping_address},
            create={
                "user_email": data.email,
                "user_name": data.full_name,
                "user_phone": phone,
                "user_address": data.shipping_address,
            },
        )
        order = tx.orders.create(
            data={
                "user_id": user["user_id"],
                "order_amount": order_amount,
                "order_details": {"create": details},
            },
            include={"order_details": True},
        )
        tx.cart.delete_many(where={"session_id": session_id})
        return order

    order = db.transaction(checkout)
    logger.info(f"✅ Guest order #{order['order_id']} created for {data.email}")
    return order


def get_order_for_payment(db: StoreClient, user_id: int, order_id: int, tx=None) -> dict:
    source = tx or db
    order = source.orders.find_unique(
        where={"order_id": order_id},
        include={
            "user": {"select": {"user_id": True, "user_name": True, "user_email": True, "user_phone": True, "user_address": True}},
            "order_details": {"include": {"product": True}},
        },
    )
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="Unauthorized access to order")
    return order


def deduct_stock(tx, order: dict) -> None:
    for detail in order["order_details"]:
        logger.info(f"📦 Updating stock for product {detail['product_id']}, deduct {detail['quantity']}")
        tx.products.update(
            where={"product_id": detail["product_id"]},
            data={"product_stock": {"decrement": detail["quantity"]}},
        )

