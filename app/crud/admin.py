import logging
from typing import Optional
from fastapi import HTTPException
from app.client.client import StoreClient

logger = logging.getLogger("admin")

MAX_ORDERS_PER_REQUEST = 100

USER_CONTACT_SELECT = {
    "user_id": True,
    "user_name": True,
    "user_email": True,
    "user_phone": True,
    "user_address": True,
}


def _payment_status(order: dict) -> str:
    # payments are loaded newest first
    return order["payments"][0]["payment_status"] if order["payments"] else "pending"


#  Orders with line items, payments and a summary for the console
def list_orders(db: StoreClient, user_id: Optional[int] = None, order_id: Optional[int] = None,
                limit: int = 50) -> dict:
    where = {}
    if user_id is not None:
        where["user_id"] = user_id
    if order_id is not None:
        where["order_id"] = order_id

    orders = db.orders.find_many(
        where=where,
        include={
            "user": {"select": USER_CONTACT_SELECT},
            "order_details": {
                "include": {"product": {"select": {"product_id": True, "product_name": True, "product_image": True}}},
                "order_by": {"order_detail_id": "asc"},
            },
            "payments": {"order_by": {"payment_date": "desc"}},
        },
        order_by={"order_date": "desc"},
        take=min(limit, MAX_ORDERS_PER_REQUEST),
    )

    summaries = []
    for order in orders:
        status = _payment_status(order)
        calculated_total = sum(d["product_price"] * d["quantity"] for d in order["order_details"])
        summaries.append({
            "order_id": order["order_id"],
            "user_id": order["user_id"],
            "order_amount": order["order_amount"],
            "calculated_total": calculated_total,
            "total_items": sum(d["quantity"] for d in order["order_details"]),
            "order_date": order["order_date"],
            "payment_status": status,
            "user": order["user"],
            "items": [
                {
                    "order_detail_id": d["order_detail_id"],
                    "product_id": d["product_id"],
                    "product_name": d["product"]["product_name"],
                    "product_image": d["product"]["product_image"],
                    "quantity": d["quantity"],
                    "unit_price": d["product_price"],
                    "line_total": d["product_price"] * d["quantity"],
                }
                for d in order["order_details"]
            ],
            "payments": order["payments"],
            "is_paid": status == "paid",
            "is_pending": status in ("pending", "created", "pending_cod"),
            "is_failed": status == "failed",
            "has_discrepancy": abs(order["order_amount"] - calculated_total) > 0.01,
        })

    summary = {
        "total_orders": len(summaries),
        "total_value": sum(o["order_amount"] for o in summaries),
        "total_items": sum(o["total_items"] for o in summaries),
        "paid_orders": sum(1 for o in summaries if o["is_paid"]),
        "pending_orders": sum(1 for o in summaries if o["is_pending"]),
        "failed_orders": sum(1 for o in summaries if o["is_failed"]),
        "orders_with_discrepancies": sum(1 for o in summaries if o["has_discrepancy"]),
    }
    logger.info(f"📊 Admin fetched {len(summaries)} orders")
    return {"success": True, "orders": summaries, "summary": summary}


#  Every user with order totals, newest first
def list_users(db: StoreClient) -> dict:
    users = db.users.find_many(
        include={
            "orders": {"select": {"order_amount": True, "order_date": True}, "order_by": {"order_date": "desc"}},
            "_count": {"select": {"orders": True, "reviews": True}},
        },
        order_by={"created_at": "desc"},
    )
    summaries = [
        {
            "user_id": user["user_id"],
            "supabase_id": user["supabase_id"],
            "user_name": user["user_name"],
            "user_email": user["user_email"],
            "user_phone": user["user_phone"],
            "user_address": user["user_address"],
            "created_at": user["created_at"],
            "total_orders": user["_count"]["orders"],
            "total_reviews": user["_count"]["reviews"],
            "total_spent": sum(o["order_amount"] for o in user["orders"]),
            "last_order_date": user["orders"][0]["order_date"] if user["orders"] else None,
            "is_active": bool(user["orders"]),
        }
        for user in users
    ]
    return {"success": True, "total_users": len(summaries), "users": summaries}


#  One user with orders, reviews and cart
def get_user_details(db: StoreClient, user_id: int) -> dict:
    user = db.users.find_unique(
        where={"user_id": user_id},
        include={
            "orders": {
                "include": {"order_details": {"include": {"product": True}}, "payments": {"order_by": {"payment_date": "desc"}}},
                "order_by": {"order_date": "desc"},
            },
            "reviews": {"include": {"product": True}, "order_by": {"review_id": "desc"}},
            "cart": {"include": {"product": True}},
        },
    )
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    orders_by_status = {}
    for order in user["orders"]:
        status = _payment_status(order)
        orders_by_status[status] = orders_by_status.get(status, 0) + 1

    user["summary"] = {
        "total_orders": len(user["orders"]),
        "total_spent": sum(o["order_amount"] for o in user["orders"]),
        "total_items_purchased": sum(d["quantity"] for o in user["orders"] for d in o["order_details"]),
        "total_reviews": len(user["reviews"]),
        "active_cart_items": len(user["cart"]),
        "orders_by_status": orders_by_status,
    }
    return {"success": True, "user": user}
