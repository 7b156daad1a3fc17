from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from app.client.client import StoreClient
from app.crud import review as crud_review
from app.db.deps import RequestContext, get_db, require_user
from app.schemas.schemas import ReviewCreate, ReviewList, ReviewOut, ReviewUpdate

router = APIRouter()


@router.get("/", response_model=ReviewList)
def list_reviews(
    product_id: Optional[int] = None,
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
):
    return crud_review.list_user_reviews(db, context.user_id, product_id, limit, offset)


@router.post("/", response_model=ReviewOut, status_code=status.HTTP_201_CREATED)
def create_review(data: ReviewCreate, context: RequestContext = Depends(require_user), db: StoreClient = Depends(get_db)):
    return crud_review.create_review(db, context.user_id, data.product_id, data.review)


@router.put("/{review_id}", response_model=ReviewOut)
def update_review(
    review_id: int,
    data: ReviewUpdate,
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
):
    return crud_review.update_review(db, context.user_id, review_id, data.review)


@router.delete("/{review_id}")
def delete_review(review_id: int, context: RequestContext = Depends(require_user), db: StoreClient = Depends(get_db)):
    return crud_review.delete_review(db, context.user_id, review_id)
