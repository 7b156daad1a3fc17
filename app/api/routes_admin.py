from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional

from app.client.client import StoreClient
from app.core.security import check_admin_credentials, create_admin_token, revoke_admin_token
from app.crud import admin as crud_admin
from app.crud import product as crud_product
from app.db.deps import get_admin_token, get_db, require_admin
from app.schemas.schemas import AdminLogin, ProductCreate, ProductOut, ProductUpdate

router = APIRouter()


@router.post("/login")
def login(data: AdminLogin):
    if not check_admin_credentials(data.admin_id, data.admin_password):
        raise HTTPException(status_code=401, detail="Invalid admin credentials")
    token, expires_at = create_admin_token(data.admin_id)
    return {"success": True, "message": "Admin login successful", "token": token, "expires_at": expires_at}


@router.post("/logout")
def logout(token: Optional[str] = Depends(get_admin_token)):
    if token:
        revoke_admin_token(token)
    return {"success": True, "message": "Admin logout successful"}


@router.get("/orders", dependencies=[Depends(require_admin)])
def list_orders(
    user_id: Optional[int] = None,
    order_id: Optional[int] = None,
    limit: int = Query(50, ge=1),
    db: StoreClient = Depends(get_db),
):
    return crud_admin.list_orders(db, user_id=user_id, order_id=order_id, limit=limit)


@router.get("/users", dependencies=[Depends(require_admin)])
def list_users(db: StoreClient = Depends(get_db)):
    return crud_admin.list_users(db)


@router.get("/users/{user_id}", dependencies=[Depends(require_admin)])
def get_user(user_id: int, db: StoreClient = Depends(get_db)):
    return crud_admin.get_user_details(db, user_id)


@router.get("/products", response_model=List[ProductOut], dependencies=[Depends(require_admin)])
def list_products(db: StoreClient = Depends(get_db)):
    return crud_product.list_all_products(db)


@router.post("/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_admin)])
def create_product(data: ProductCreate, db: StoreClient = Depends(get_db)):
    return crud_product.create_product(db, data)


@router.get("/products/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def get_product(product_id: int, db: StoreClient = Depends(get_db)):
    return crud_product.get_product(db, product_id)


@router.patch("/products/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: int, data: ProductUpdate, db: StoreClient = Depends(get_db)):
    return crud_product.update_product(db, product_id, data)
