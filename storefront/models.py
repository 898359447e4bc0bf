# storefront/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Numeric, JSON, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


def gen_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class User(TimestampMixin, Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True, default=gen_uuid)
    telegram_id = Column(String, unique=True, nullable=True, index=True)
    username = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=True)
    email = Column(String, unique=True, nullable=True, index=True)
    phone = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    role = Column(String, default="user", nullable=False)
    is_vip = Column(Boolean, default=False, nullable=False)
    vip_expires_at = Column(DateTime, nullable=True)
    rank = Column(String, default="nutzer", nullable=False)
    lifetime_spend = Column(Numeric(12, 2), default=0)
    verification_status = Column(String, default="none")
    verification_hand_gesture = Column(String, nullable=True)
    verification_submitted_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)


class Department(TimestampMixin, Base):
    __tablename__ = "departments"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    sort_order = Column(Integer, default=0)


class Category(TimestampMixin, Base):
    __tablename__ = "categories"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    sort_order = Column(Integer, default=0)
    department_id = Column(String, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)

    department = relationship("Department", lazy="selectin")


class Brand(TimestampMixin, Base):
    __tablename__ = "brands"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=True)
    logo_url = Column(String, nullable=True)
    sort_order = Column(Integer, default=0)


class Product(TimestampMixin, Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True, default=gen_uuid)
    sku = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, default="EUR")
    stock = Column(Integer, default=0)
    in_stock = Column(Boolean, default=True)
    cover_image = Column(String, nullable=True)
    product_type = Column(String, default="other")
    tags = Column(JSON, default=list)
    colors = Column(JSON, default=list)
    sizes = Column(JSON, default=list)
    variants = Column(JSON, default=list)
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    brand_id = Column(String, ForeignKey("brands.id", ondelete="SET NULL"), nullable=True, index=True)
    department_id = Column(String, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True)

    category = relationship("Category", lazy="selectin")
    brand = relationship("Brand", lazy="selectin")
    department = relationship("Department", lazy="selectin")
    images = relationship(
        "ProductImage", lazy="selectin", order_by="ProductImage.sort_order",
        cascade="all, delete-orphan",
    )


class ProductImage(Base):
    __tablename__ = "product_images"
    id = Column(String, primary_key=True, default=gen_uuid)
    product_id = Column(String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String, nullable=False)
    sort_order = Column(Integer, default=0)


class CartItem(TimestampMixin, Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    selected_options = Column(JSON, nullable=True)

    product = relationship("Product", lazy="selectin")


class Request(TimestampMixin, Base):
    __tablename__ = "requests"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String, default="pending", nullable=False, index=True)
    total_sum = Column(Numeric(12, 2), default=0)
    contact_info = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    user = relationship("User", lazy="selectin")
    items = relationship("RequestItem", lazy="selectin", cascade="all, delete-orphan")


class RequestItem(Base):
    __tablename__ = "request_items"
    id = Column(String, primary_key=True, default=gen_uuid)
    request_id = Column(String, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    sku_snapshot = Column(String)
    name_snapshot = Column(String)
    price_snapshot = Column(Numeric(10, 2))
    quantity_snapshot = Column(Integer, default=1)
    selected_options_snapshot = Column(JSON, nullable=True)


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(String, nullable=False)
    status = Column(String, default="open", nullable=False)
    priority = Column(String, default="medium", nullable=False)
    unread_by_user = Column(Boolean, default=False)
    unread_by_admin = Column(Boolean, default=True)
    last_message_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", lazy="selectin")
    messages = relationship(
        "TicketMessage", lazy="selectin", order_by="TicketMessage.created_at",
        cascade="all, delete-orphan",
    )


class TicketMessage(Base):
    __tablename__ = "ticket_messages"
    id = Column(String, primary_key=True, default=gen_uuid)
    ticket_id = Column(String, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=True)
    read_by_user = Column(Boolean, default=False)
    read_by_admin = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", lazy="selectin")


class VerificationRequest(Base):
    __tablename__ = "verification_requests"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    photo_url = Column(String, nullable=True)
    hand_gesture = Column(String, nullable=False)
    status = Column(String, default="pending", nullable=False, index=True)
    submitted_at = Column(DateTime, default=utcnow)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    user = relationship("User", lazy="selectin")


class NotificationTemplate(TimestampMixin, Base):
    __tablename__ = "notification_templates"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    trigger_status = Column(String, nullable=False, index=True)
    message_template = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)


class VipPlan(TimestampMixin, Base):
    __tablename__ = "vip_plans"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration_days = Column(Integer, default=30)
    benefits = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)


class WishlistItem(Base):
    __tablename__ = "wishlist_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", lazy="selectin")


class ChatSession(Base):
    __tablename__ = "chat_sessions"
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, default="open")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User", lazy="selectin")


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    id = Column(String, primary_key=True, default=gen_uuid)
    session_id = Column(String, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    sender = Column(String, nullable=False)  # "user" | "admin"
    sender_id = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)
