from fastapi import APIRouter, Depends, Query, status

from app.client.client import StoreClient
from app.crud import order as crud_order
from app.db.deps import RequestContext, get_context, get_db, require_user
from app.schemas.schemas import GuestCheckout, OrderCreate

router = APIRouter()


@router.get("/")
def list_my_orders(
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
):
    return crud_order.list_orders(db, context.user_id, limit=limit, offset=offset)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order(
    data: OrderCreate,
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
):
    order = crud_order.place_order(db, context.user_id, data.shipping_address)
    return {"success": True, "order": order}


@router.post("/guest", status_code=status.HTTP_201_CREATED)
def guest_checkout(
    data: GuestCheckout,
    context: RequestContext = Depends(get_context),
    db: StoreClient = Depends(get_db),
):
    order = crud_order.guest_checkout(db, context.session_id, data)
    return {"success": True, "order": order}


@router.get("/{order_id}")
def get_order(order_id: int, context: RequestContext = Depends(require_user), db: StoreClient = Depends(get_db)):
    return crud_order.get_order(db, context.user_id, order_id)
