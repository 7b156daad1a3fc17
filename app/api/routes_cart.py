from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.client.client import StoreClient
from app.crud import cart as crud_cart
from app.db.deps import RequestContext, get_context, get_db
from app.schemas.schemas import CartItemCreate, CartItemUpdate

router = APIRouter()


@router.get("/")
def get_cart(context: RequestContext = Depends(get_context), db: StoreClient = Depends(get_db)):
    return crud_cart.get_cart(db, context.user_id, context.session_id)


@router.post("/")
def add_item(
    data: CartItemCreate,
    response: Response,
    context: RequestContext = Depends(get_context),
    db: StoreClient = Depends(get_db),
):
    result = crud_cart.add_to_cart(db, context.user_id, context.session_id, data.product_id, data.quantity)
    if result["action"] == "created":
        response.status_code = status.HTTP_201_CREATED
    return result


@router.patch("/{cart_id}")
def update_item(
    cart_id: int,
    data: CartItemUpdate,
    context: RequestContext = Depends(get_context),
    db: StoreClient = Depends(get_db),
):
    return crud_cart.update_cart_item(db, context.user_id, context.session_id, cart_id, data.quantity, data.delta)


@router.delete("/{cart_id}")
def remove_item(cart_id: int, context: RequestContext = Depends(get_context), db: StoreClient = Depends(get_db)):
    return crud_cart.remove_cart_item(db, context.user_id, context.session_id, cart_id)


@router.post("/merge")
def merge_cart(context: RequestContext = Depends(get_context), db: StoreClient = Depends(get_db)):
    if not context.is_authenticated:
        raise HTTPException(status_code=400, detail="Missing userId or sessionId")
    return crud_cart.merge_guest_cart(db, context.user_id, context.session_id)
