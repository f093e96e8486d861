import enum
from datetime import datetime

from sqlalchemy import (Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text,
                        UniqueConstraint, text)
from sqlalchemy.orm import relationship

from .database import Base


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class ProductStatus(str, enum.Enum):
    ON_SALE = "ON_SALE"
    # Not reachable through any current transition
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    DELETED = "DELETED"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    SHIPPED = "SHIPPED"
    DONE = "DONE"


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"


# target status -> statuses it may be entered from
ORDER_TRANSITIONS = {
    OrderStatus.SHIPPED: frozenset({OrderStatus.PENDING}),
    OrderStatus.DONE: frozenset({OrderStatus.PENDING, OrderStatus.SHIPPED}),
}

# statuses a seller may set directly on a listing
SELLER_SETTABLE_STATUSES = frozenset({ProductStatus.ON_SALE, ProductStatus.SOLD, ProductStatus.DELETED})


def order_sources(target: OrderStatus) -> frozenset:
    return ORDER_TRANSITIONS.get(target, frozenset())


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current in order_sources(target)


def _enum(enum_cls, name):
    return Enum(enum_cls, name=name, native_enum=False, length=20, validate_strings=True)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=True)
    password_hash = Column(String(200), nullable=False)
    role = Column(_enum(UserRole, "user_role"), nullable=False, default=UserRole.USER)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    nickname = Column(String(50), nullable=False)
    avatar_url = Column(String(500), nullable=True)
    major = Column(String(100), nullable=True)
    grade = Column(String(50), nullable=True)
    campus = Column(String(100), nullable=True)
    credit = Column(Integer, nullable=False, default=700)
    bio = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    original_price = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    status = Column(_enum(ProductStatus, "product_status"), nullable=False, default=ProductStatus.ON_SALE,
                    index=True)
    location = Column(String(100), nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    category = relationship("Category")


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_favorite_user_product"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    price_snapshot = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    meet_location = Column(String(100), nullable=True)
    meet_time = Column(DateTime, nullable=True)
    status = Column(_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint("buyer_id", "seller_id", "product_id", name="uq_chat_session_triple"),
        # NULL product_id is the system channel; one per user
        Index("uq_chat_session_system", "buyer_id", "seller_id", unique=True,
              postgresql_where=text("product_id IS NULL"), sqlite_where=text("product_id IS NULL")),
    )

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # seller_id may be the reserved system sender, which has no users row
    seller_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    last_message = Column(String(200), nullable=True)
    last_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id"), nullable=False, index=True)
    sender_id = Column(Integer, nullable=False, index=True)
    type = Column(_enum(MessageType, "message_type"), nullable=False, default=MessageType.TEXT)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
