from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from app.client.client import StoreClient
from app.crud import product as crud_product
from app.db.deps import get_db, require_admin
from app.schemas.schemas import ProductCreate, ProductOut, ProductUpdate, StockUpdate

router = APIRouter()


@router.get("/", response_model=List[ProductOut])
def list_products(
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=100),
    search: Optional[str] = None,
    db: StoreClient = Depends(get_db),
):
    return crud_product.list_products(db, skip=skip, limit=limit, search=search)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: StoreClient = Depends(get_db)):
    return crud_product.get_product(db, product_id)


@router.post("/", response_model=ProductOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_product(data: ProductCreate, db: StoreClient = Depends(get_db)):
    return crud_product.create_product(db, data)


@router.put("/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: int, data: ProductUpdate, db: StoreClient = Depends(get_db)):
    return crud_product.update_product(db, product_id, data)


@router.patch("/{product_id}/stock", dependencies=[Depends(require_admin)])
def update_stock(product_id: int, data: StockUpdate, db: StoreClient = Depends(get_db)):
    return crud_product.set_stock(db, product_id, data.product_stock)


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: int, db: StoreClient = Depends(get_db)):
    deleted = crud_product.delete_product(db, product_id)
    return {"message": "Product deleted", "product_id": deleted["product_id"]}
