# conftest.py - shared fixtures: an in-memory database client per test

import pytest

from app.client.client import StoreClient
from app.db.session import Base


@pytest.fixture
def db():
    client = StoreClient(datasource_url="sqlite://", log=[])
    Base.metadata.create_all(bind=client.engine)
    yield client
    client.disconnect()


@pytest.fixture
def user(db):
    return db.users.create(data={"user_name": "Asha", "user_email": "asha@example.com"})


@pytest.fixture
def products(db):
    db.products.create_many(data=[
        {"product_name": "Tea", "product_description": "Assam leaf", "product_price": 10.0, "product_stock": 5},
        {"product_name": "Coffee", "product_description": "Filter blend", "product_price": 20.0, "product_stock": 3},
        {"product_name": "Honey", "product_description": "Wild forest", "product_price": 30.0, "product_stock": 0},
    ])
    return db.products.find_many()
