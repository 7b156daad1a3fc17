import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from app.api.routes_admin import router as admin_router
from app.api.routes_cart import router as cart_router
from app.api.routes_order import router as order_router
from app.api.routes_payment import router as payment_router
from app.api.routes_product import router as product_router
from app.api.routes_review import router as review_router
from app.api.routes_user import router as user_router
from app.client.errors import (
    ClientError,
    KnownRequestError,
    RecordNotFoundError,
    UniqueConstraintError,
    ValidationError,
)
from app.db.deps import db_client
from app.db.session import Base

logger = logging.getLogger("app")

app = FastAPI(
    title="storefront-api",
    description="Products, carts, orders, payments and reviews for the storefront",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 👈 Replace * with your frontend origin in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def create_tables():
    Base.metadata.create_all(bind=db_client.engine)


@app.on_event("shutdown")
def close_client():
    db_client.disconnect()


@app.exception_handler(ClientError)
async def client_error_handler(request: Request, exc: ClientError):
    if isinstance(exc, RecordNotFoundError):
        status_code = 404
    elif isinstance(exc, UniqueConstraintError):
        status_code = 409
    elif isinstance(exc, ValidationError):
        status_code = 400
    else:
        status_code = 500
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")

    content = {"detail": exc.message}
    if isinstance(exc, KnownRequestError):
        content["code"] = exc.code
    return JSONResponse(status_code=status_code, content=content)


# Register endpoints
app.include_router(product_router, prefix="/api/products", tags=["Product"])
app.include_router(cart_router, prefix="/api/cart", tags=["Cart"])
app.include_router(order_router, prefix="/api/orders", tags=["Order"])
app.include_router(payment_router, prefix="/api/payment", tags=["Payment"])
app.include_router(review_router, prefix="/api/user/reviews", tags=["Review"])
app.include_router(user_router, prefix="/api/user", tags=["User"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])


# 👇 Add custom OpenAPI with Bearer Auth
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title="Storefront API",
        version="1.0.0",
        description="Shop catalogue, cart, checkout and reviews.",
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        }
    }
    for path in openapi_schema["paths"].values():
        for method in path.values():
            method["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi
