import math
from typing import Optional
from fastapi import HTTPException
from app.client.client import StoreClient

MAX_PAGE_SIZE = 50

REVIEW_PRODUCT = {
    "select": {"product_id": True, "product_name": True, "product_image": True, "product_price": True},
}


def list_user_reviews(db: StoreClient, user_id: int, product_id: Optional[int] = None,
                      limit: int = 20, offset: int = 0) -> dict:
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    where = {"user_id": user_id}
    if product_id:
        where["product_id"] = product_id

    reviews = db.reviews.find_many(
        where=where,
        include={"product": REVIEW_PRODUCT},
        order_by={"review_id": "desc"},
        take=limit,
        skip=offset,
    )
    total = db.reviews.count(where=where)
    return {
        "reviews": reviews,
        "pagination": {
            "current_page": offset // limit + 1,
            "total_pages": math.ceil(total / limit),
            "total_items": total,
            "items_per_page": limit,
        },
    }


def create_review(db: StoreClient, user_id: int, product_id: int, text: str) -> dict:
    product = db.products.find_unique(where={"product_id": product_id}, select={"product_id": True})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    purchased = db.order_details.find_first(where={"product_id": product_id, "order": {"user_id": user_id}})
    if not purchased:
        raise HTTPException(status_code=400, detail="You can only review products you have purchased")

    existing = db.reviews.find_first(where={"user_id": user_id, "product_id": product_id})
    if existing:
        raise HTTPException(status_code=400, detail="You have already reviewed this product")

    return db.reviews.create(
        data={"user_id": user_id, "product_id": product_id, "review": text},
        include={"product": REVIEW_PRODUCT},
    )


def _own_review(db: StoreClient, user_id: int, review_id: int) -> dict:
    review = db.reviews.find_unique(where={"review_id": review_id})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    if review["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="Not allowed")
    return review


def update_review(db: StoreClient, user_id: int, review_id: int, text: str) -> dict:
    _own_review(db, user_id, review_id)
    return db.reviews.update(where={"review_id": review_id}, data={"review": text}, include={"product": REVIEW_PRODUCT})


def delete_review(db: StoreClient, user_id: int, review_id: int) -> dict:
    _own_review(db, user_id, review_id)
    db.reviews.delete(where={"review_id": review_id})
    return {"success": True, "review_id": review_id}
