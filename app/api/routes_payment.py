import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.client.client import StoreClient
from app.crud import payment as crud_payment
from app.db.deps import RequestContext, get_db, require_user
from app.schemas.schemas import CodOrder, PaymentOrderCreate, PaymentVerify
from app.services.razorpay_service import RazorpayGateway, get_payment_gateway

logger = logging.getLogger("payments")

router = APIRouter()


@router.post("/create-order")
def create_order(
    data: PaymentOrderCreate,
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    return crud_payment.create_payment_order(db, gateway, context.user_id, data.order_id, data.shipping_address)


@router.post("/verify")
def verify_payment(
    data: PaymentVerify,
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    return crud_payment.verify_payment(db, gateway, context.user_id, data)


@router.post("/cod-order")
def cod_order(data: CodOrder, context: RequestContext = Depends(require_user), db: StoreClient = Depends(get_db)):
    return crud_payment.confirm_cod_order(db, context.user_id, data.order_id)


@router.post("/webhook")
async def webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: StoreClient = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    body = await request.body()
    if not gateway.webhook_secret:
        logger.error("❌ Razorpay webhook secret not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")
    if not gateway.verify_webhook_signature(body, x_razorpay_signature):
        logger.error("❌ Invalid webhook signature")
        raise HTTPException(status_code=400, detail="Invalid signature")
    try:
        event = json.loads(body)
    except ValueError:
        event = None
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook body")
    result = await run_in_threadpool(crud_payment.apply_webhook_event, db, event)
    return {"status": "ok", "result": result}
