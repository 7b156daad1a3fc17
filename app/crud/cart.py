import logging
from typing import Optional
from fastapi import HTTPException
from app.client.client import StoreClient

logger = logging.getLogger("cart")


def owner_where(user_id: Optional[int], session_id: Optional[str]) -> dict:
    if user_id:
        return {"user_id": user_id}
    if session_id:
        return {"session_id": session_id}
    raise HTTPException(status_code=401, detail="Authentication required (userId or sessionId)")


def get_cart(db: StoreClient, user_id: Optional[int], session_id: Optional[str]) -> dict:
    rows = db.cart.find_many(
        where=owner_where(user_id, session_id),
        include={"product": True},
        order_by={"cart_id": "asc"},
    )
    items = [
        {
            "cart_id": row["cart_id"],
            "product_id": row["product_id"],
            "quantity": row["quantity"],
            "product": row["product"],
            "item_total": row["product"]["product_price"] * row["quantity"],
        }
        for row in rows
    ]
    return {"items": items, "grand_total": sum(item["item_total"] for item in items)}


def add_to_cart(db: StoreClient, user_id: Optional[int], session_id: Optional[str], product_id: int, quantity: int = 1) -> dict:
    owner = owner_where(user_id, session_id)
    quantity = max(1, quantity)

    def add(tx):
        product = tx.products.find_unique(where={"product_id": product_id})
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")

        existing = tx.cart.find_first(where={"product_id": product_id, **owner})
        if existing:
            return "exists", existing

        if quantity > product["product_stock"]:
            raise HTTPException(status_code=400, detail=f"Only {product['product_stock']} units available")

        return "created", tx.cart.create(data={"product_id": product_id, "quantity": quantity, **owner})

    action, item = db.transaction(add)
    item = db.cart.find_unique(where={"cart_id": item["cart_id"]}, include={"product": True})
    return {"action": action, "item": item}


def _owned_item(db: StoreClient, user_id: Optional[int], session_id: Optional[str], cart_id: int) -> dict:
    owner = owner_where(user_id, session_id)
    existing = db.cart.find_unique(where={"cart_id": cart_id})
    if not existing:
        raise HTTPException(status_code=404, detail="Cart item not found")
    key, value = next(iter(owner.items()))
    if existing[key] != value:
        raise HTTPException(status_code=403, detail="Not allowed")
    return existing


def update_cart_item(db: StoreClient, user_id: Optional[int], session_id: Optional[str], cart_id: int,
                     quantity: Optional[int] = None, delta: Optional[int] = None) -> dict:
    existing = _owned_item(db, user_id, session_id, cart_id)

    if quantity is not None:
        new_quantity = quantity
    elif delta is not None:
        new_quantity = existing["quantity"] + delta
    else:
        raise HTTPException(status_code=400, detail="Provide quantity or delta in body")

    if new_quantity <= 0:
        db.cart.delete(where={"cart_id": cart_id})
        return {"action": "deleted", "message": "Item removed from cart"}

    product = db.products.find_unique(where={"product_id": existing["product_id"]})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if new_quantity > product["product_stock"]:
        raise HTTPException(status_code=400, detail=f"Only {product['product_stock']} units available")

    item = db.cart.update(where={"cart_id": cart_id}, data={"quantity": new_quantity}, include={"product": True})
    return {"action": "updated", "item": item}


def remove_cart_item(db: StoreClient, user_id: Optional[int], session_id: Optional[str], cart_id: int) -> dict:
    _owned_item(db, user_id, session_id, cart_id)
    db.cart.delete(where={"cart_id": cart_id})
    return {"action": "deleted", "cart_id": cart_id}


def merge_guest_cart(db: StoreClient, user_id: int, session_id: str) -> dict:
    """Move a guest session's cart into the user's cart, summing quantities."""
    if not user_id or not session_id:
        raise HTTPException(status_code=400, detail="Missing userId or sessionId")

    def merge(tx):
        guest_items = tx.cart.find_many(where={"session_id": session_id})
        for item in guest_items:
            tx.cart.upsert(
                where={"user_id_product_id": {"user_id": user_id, "product_id": item["product_id"]}},
                update={"quantity": {"increment": item["quantity"]}},
                create={"user_id": user_id, "product_id": item["product_id"], "quantity": item["quantity"]},
            )
        tx.cart.delete_many(where={"session_id": session_id})
        return len(guest_items)

    merged = db.transaction(merge)
    logger.info(f"Merged {merged} guest cart items into user {user_id}")
    return {"action": "merged", "items_count": merged}
