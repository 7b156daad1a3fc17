from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.session import Base


class Users(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    supabase_id = Column(String, unique=True, nullable=True)
    user_name = Column(String, nullable=False)
    user_email = Column(String, unique=True, nullable=False, index=True)
    user_phone = Column(BigInteger, nullable=True)
    user_address = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    orders = relationship("Orders", back_populates="user", passive_deletes="all")
    cart = relationship("Cart", back_populates="user", passive_deletes="all")
    payments = relationship("Payments", back_populates="user", passive_deletes="all")
    reviews = relationship("Reviews", back_populates="user", passive_deletes="all")


class Products(Base):
    __tablename__ = "products"

    product_id = Column(Integer, primary_key=True, index=True)
    product_name = Column(String, unique=True, nullable=False)
    product_description = Column(Text, nullable=False)
    product_price = Column(Float, nullable=False)
    product_stock = Column(Integer, nullable=False, default=0)
    product_image = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    cart = relationship("Cart", back_populates="product", passive_deletes="all")
    order_details = relationship("OrderDetails", back_populates="product", passive_deletes="all")
    reviews = relationship("Reviews", back_populates="product", passive_deletes="all")


class Orders(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)
    order_amount = Column(Float, nullable=False)
    order_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("Users", back_populates="orders")
    order_details = relationship("OrderDetails", back_populates="order", passive_deletes="all")
    payments = relationship("Payments", back_populates="order", passive_deletes="all")


class Cart(Base):
    __tablename__ = "cart"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="user_id_product_id"),
        UniqueConstraint("session_id", "product_id", name="session_id_product_id"),
        # a row belongs to a signed-in user or to a guest session, never both
        CheckConstraint("(user_id IS NULL) <> (session_id IS NULL)", name="cart_single_owner"),
    )

    cart_id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=True)
    session_id = Column(String, nullable=True, index=True)
    quantity = Column(Integer, nullable=False, default=1)

    product = relationship("Products", back_populates="cart")
    user = relationship("Users", back_populates="cart")


class OrderDetails(Base):
    __tablename__ = "order_details"

    order_detail_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    product_price = Column(Float, nullable=False)  # price at purchase time

    order = relationship("Orders", back_populates="order_details")
    product = relationship("Products", back_populates="order_details")


class Reviews(Base):
    __tablename__ = "reviews"

    review_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.product_id"), nullable=False)
    review = Column(Text, nullable=False)

    user = relationship("Users", back_populates="reviews")
    product = relationship("Products", back_populates="reviews")


class Payments(Base):
    __tablename__ = "payments"

    payment_id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, index=True)
    razorpay_order_id = Column(String, nullable=False)
    razorpay_payment_id = Column(String, nullable=True)
    payment_mode = Column(String, nullable=False)
    payment_status = Column(String, nullable=False)
    payment_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    payment_amount = Column(Float, nullable=False)

    user = relationship("Users", back_populates="payments")
    order = relationship("Orders", back_populates="payments")


class Category(Base):
    __tablename__ = "category"

    category_id = Column(Integer, primary_key=True, index=True)
    category_name = Column(String, nullable=False)


# delegate name -> model, in the order the client exposes them
MODELS = {
    "users": Users,
    "products": Products,
    "orders": Orders,
    "cart": Cart,
    "order_details": OrderDetails,
    "reviews": Reviews,
    "payments": Payments,
    "category": Category,
}
