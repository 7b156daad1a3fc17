import logging
import time
from datetime import datetime
from typing import Optional
from fastapi import HTTPException
from app.client.client import StoreClient
from app.core.config import settings
from app.crud.order import deduct_stock, get_order_for_payment
from app.schemas.schemas import PaymentVerify
from app.services.razorpay_service import RazorpayGateway

logger = logging.getLogger("payments")

OPEN_PAYMENT_STATUSES = ["created", "attempted", "authorized", "paid"]
# an order with one of these payments has had its stock taken
SETTLED_PAYMENT_STATUSES = ["paid", "pending_cod"]


def _settled_payment(source, order_id: int) -> Optional[dict]:
    return source.payments.find_first(
        where={"order_id": order_id, "payment_status": {"in": SETTLED_PAYMENT_STATUSES}},
        order_by={"payment_date": "asc"},
    )


def create_payment_order(db: StoreClient, gateway: RazorpayGateway, user_id: int, order_id: int,
                         shipping_address: Optional[str] = None) -> dict:
    order = get_order_for_payment(db, user_id, order_id)
    user = order["user"]

    existing = db.payments.find_first(
        where={"order_id": order_id, "payment_status": {"in": OPEN_PAYMENT_STATUSES}},
        order_by={"payment_date": "desc"},
    )
    if existing:
        razorpay_order_id = existing["razorpay_order_id"]
        logger.info(f"📝 Using existing Razorpay order: {razorpay_order_id}")
    else:
        razorpay_order_id = gateway.create_order(
            order_id,
            order["order_amount"],
            notes={
                "order_id": str(order_id),
                "user_id": str(user_id),
                "customer_name": user["user_name"],
                "customer_email": user["user_email"],
            },
        )
        db.payments.create(data={
            "user_id": user_id,
            "order_id": order_id,
            "razorpay_order_id": razorpay_order_id,
            "payment_mode": "razorpay",
            "payment_status": "created",
            "payment_amount": order["order_amount"],
        })

    return {
        "success": True,
        "razorpay_order_id": razorpay_order_id,
        "amount": order["order_amount"],
        "currency": settings.CURRENCY,
        "order_id": order_id,
        "customer_details": {
            "name": user["user_name"],
            "email": user["user_email"],
            "contact": str(user["user_phone"]) if user["user_phone"] else None,
        },
        "items": [
            {
                "name": detail["product"]["product_name"],
                "quantity": detail["quantity"],
                "price": detail["product_price"],
            }
            for detail in order["order_details"]
        ],
        "shipping_address": shipping_address or user["user_address"],
    }


def _mark_failed(db: StoreClient, razorpay_order_id: str, order_id: int) -> int:
    return db.payments.update_many(
        where={"razorpay_order_id": razorpay_order_id, "order_id": order_id},
        data={"payment_status": "failed", "payment_date": datetime.utcnow()},
    ).count


def verify_payment(db: StoreClient, gateway: RazorpayGateway, user_id: int, data: PaymentVerify) -> dict:
    if not gateway.verify_signature(data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature):
        logger.error("❌ Invalid payment signature")
        _mark_failed(db, data.razorpay_order_id, data.order_id)
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    def complete(tx):
        order = get_order_for_payment(db, user_id, data.order_id, tx=tx)
        settled = _settled_payment(tx, data.order_id)
        if settled:
            if settled["razorpay_payment_id"] == data.razorpay_payment_id:
                logger.info(f"🔁 Payment {data.razorpay_payment_id} was already verified")
                return order
            raise HTTPException(status_code=409, detail="Order has already been paid or confirmed")

        updated = tx.payments.update_many(
            where={
                "razorpay_order_id": data.razorpay_order_id,
                "order_id": data.order_id,
                "user_id": user_id,
                "payment_status": {"not": "paid"},
            },
            data={
                "razorpay_payment_id": data.razorpay_payment_id,
                "payment_status": "paid",
                "payment_date": datetime.utcnow(),
            },
        )
        if updated.count == 0:
            raise HTTPException(status_code=404, detail="Payment record not found or unauthorized access")

        deduct_stock(tx, order)
        cleared = tx.cart.delete_many(where={"user_id": user_id})
        logger.info(f"🧹 Cleared {cleared.count} items from user's cart")
        return order

    db.transaction(complete)

    order = db.orders.find_unique(
        where={"order_id": data.order_id},
        include={
            "order_details": {"include": {"product": {"select": {"product_name": True, "product_image": True}}}},
            "payments": {"where": {"razorpay_payment_id": data.razorpay_payment_id}},
        },
    )
    logger.info(f"✅ Payment verified and order completed: {data.order_id}")
    return {
        "success": True,
        "message": "Payment verified and order confirmed successfully",
        "payment_id": data.razorpay_payment_id,
        "order_id": data.order_id,
        "order": {
            "order_id": order["order_id"],
            "order_amount": order["order_amount"],
            "order_date": order["order_date"],
            "items": [
                {
                    "product_name": detail["product"]["product_name"],
                    "product_image": detail["product"]["product_image"],
                    "quantity": detail["quantity"],
                    "price": detail["product_price"],
                    "total": detail["product_price"] * detail["quantity"],
                }
                for detail in order["order_details"]
            ],
            "payment_details": order["payments"][0] if order["payments"] else None,
            "status": "confirmed",
        },
    }


def confirm_cod_order(db: StoreClient, user_id: int, order_id: int) -> dict:
    """Cash on delivery: record a pending COD payment and reserve the stock."""

    def confirm(tx):
        order = get_order_for_payment(db, user_id, order_id, tx=tx)
        if _settled_payment(tx, order_id):
            raise HTTPException(status_code=409, detail="Order has already been paid or confirmed")
        tx.payments.create(data={
            "user_id": user_id,
            "order_id": order_id,
            "razorpay_order_id": f"cod_{order_id}_{int(time.time() * 1000)}",
            "payment_mode": "cod",
            "payment_status": "pending_cod",
            "payment_amount": order["order_amount"],
        })
        deduct_stock(tx, order)
        tx.cart.delete_many(where={"user_id": user_id})
        return order

    order = db.transaction(confirm)
    logger.info(f"✅ COD order processed successfully: {order_id}")
    return {
        "success": True,
        "message": "COD order confirmed successfully",
        "order_id": order_id,
        "order": {
            "order_id": order["order_id"],
            "order_amount": order["order_amount"],
            "order_date": order["order_date"],
            "payment_method": "cod",
            "status": "confirmed_cod",
        },
    }


WEBHOOK_PAYMENT_STATUSES = {
    "payment.authorized": "authorized",
    "payment.failed": "failed",
}


def _capture(db: StoreClient, razorpay_order_id: str, razorpay_payment_id: str) -> bool:
    """Mark a captured payment paid and take the stock, once per order."""

    def capture(tx):
        payment = tx.payments.find_first(where={"razorpay_order_id": razorpay_order_id})
        if payment is None:
            logger.warning(f"⚠️ Captured payment for unknown Razorpay order {razorpay_order_id}")
            return False
        if _settled_payment(tx, payment["order_id"]):
            return False
        tx.payments.update_many(
            where={"razorpay_order_id": razorpay_order_id},
            data={"razorpay_payment_id": razorpay_payment_id, "payment_status": "paid", "payment_date": datetime.utcnow()},
        )
        order = tx.orders.find_unique(
            where={"order_id": payment["order_id"]},
            include={"order_details": True},
        )
        deduct_stock(tx, order)
        return True

    return db.transaction(capture)


def _entity(event: dict, kind: str) -> dict:
    try:
        return event["payload"][kind]["entity"]
    except (KeyError, TypeError):
        raise HTTPException(status_code=400, detail=f"Webhook payload has no {kind} entity")


def apply_webhook_event(db: StoreClient, event: dict) -> str:
    """Apply a verified Razorpay webhook event and return what was done."""
    name = event.get("event")
    logger.info(f"📨 Webhook received: {name}")

    if name in WEBHOOK_PAYMENT_STATUSES or name == "payment.captured":
        entity = _entity(event, "payment")
        if name == "payment.captured":
            return "captured" if _capture(db, entity["order_id"], entity["id"]) else "ignored"
        # settled payments are never moved back
        updated = db.payments.update_many(
            where={
                "razorpay_order_id": entity["order_id"],
                "payment_status": {"not_in": SETTLED_PAYMENT_STATUSES},
            },
            data={
                "razorpay_payment_id": entity["id"],
                "payment_status": WEBHOOK_PAYMENT_STATUSES[name],
                "payment_date": datetime.utcnow(),
            },
        )
        return WEBHOOK_PAYMENT_STATUSES[name] if updated.count else "ignored"

    if name == "order.paid":
        razorpay_order_id = _entity(event, "order")["id"]
        order = db.orders.find_first(
            where={"payments": {"some": {"razorpay_order_id": razorpay_order_id}}},
            include={"user": {"select": {"user_email": True}}},
        )
        if order:
            logger.info(f"🎉 Order #{order['order_id']} completed for user {order['user']['user_email']}")
        return "logged"

    logger.info(f"Unhandled webhook event: {name}")
    return "ignored"
