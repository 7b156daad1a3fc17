from typing import List, Optional
from fastapi import HTTPException
from app.client.client import StoreClient
from app.client.errors import UniqueConstraintError
from app.core.config import settings
from app.schemas.schemas import ProductCreate, ProductUpdate

LISTING_SELECT = {
    "product_id": True,
    "product_name": True,
    "product_description": True,
    "product_price": True,
    "product_stock": True,
    "product_image": True,
}

NULLABLE_PRODUCT_FIELDS = {"product_image"}

#  In-stock products, newest first
def list_products(db: StoreClient, skip: int = 0, limit: Optional[int] = None, search: Optional[str] = None) -> List[dict]:
    where = {"product_stock": {"gt": 0}}
    if search:
        where["OR"] = [
            {"product_name": {"contains": search, "mode": "insensitive"}},
            {"product_description": {"contains": search, "mode": "insensitive"}},
        ]
    return db.products.find_many(
        where=where,
        select=LISTING_SELECT,
        order_by={"product_id": "desc"},
        take=limit or settings.PRODUCTS_PAGE_SIZE,
        skip=skip,
    )

#  Every product, out of stock included
def list_all_products(db: StoreClient) -> List[dict]:
    return db.products.find_many(order_by={"product_id": "desc"})

#  Get one product
def get_product(db: StoreClient, product_id: int) -> dict:
    product = db.products.find_unique(where={"product_id": product_id})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

#  Create a product, names are unique
def create_product(db: StoreClient, data: ProductCreate) -> dict:
    try:
        return db.products.create(data=data.model_dump())
    except UniqueConstraintError:
        raise HTTPException(status_code=400, detail="Product name already exists")

#  Update product, fields sent as null are ignored unless the column allows it
def update_product(db: StoreClient, product_id: int, data: ProductUpdate) -> dict:
    update_data = {
        key: value for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_PRODUCT_FIELDS
    }
    if not update_data:
        return db.products.find_unique_or_throw(where={"product_id": product_id})
    try:
        return db.products.update(where={"product_id": product_id}, data=update_data)
    except UniqueConstraintError:
        raise HTTPException(status_code=400, detail="Product name already exists")

#  Delete product
def delete_product(db: StoreClient, product_id: int) -> dict:
    return db.products.delete(where={"product_id": product_id})

def set_stock(db: StoreClient, product_id: int, stock: int) -> dict:
    return db.products.update(
        where={"product_id": product_id},
        data={"product_stock": {"set": stock}},
        select={"product_id": True, "product_stock": True},
    )
