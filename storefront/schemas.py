# storefront/schemas.py
"""Request bodies and response shaping for the storefront API.

Input models are pydantic; responses are plain dicts built by the ``*_out``
helpers so every router renders rows the same way.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal, Any, Dict

from pydantic import BaseModel, EmailStr, Field, field_validator

RequestStatus = Literal["pending", "confirmed", "processing", "shipped", "completed", "cancelled"]
TicketStatus = Literal["open", "in_progress", "solved", "closed"]
TicketPriority = Literal["low", "medium", "high", "urgent"]
Role = Literal["user", "admin"]


# ---------- auth ----------
class LoginIn(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    telegram_id: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("telegram_id", mode="before")
    @classmethod
    def _tg_to_str(cls, v):
        return str(v) if v is not None else v


class RegisterIn(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    full_name: Optional[str] = Field(default=None, min_length=2)
    username: Optional[str] = None
    phone: Optional[str] = None
    telegram_id: Optional[str] = None

    @field_validator("telegram_id", mode="before")
    @classmethod
    def _tg_to_str(cls, v):
        return str(v) if v is not None else v


class TelegramWebAppIn(BaseModel):
    initData: str


class MeUpdateIn(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


# ---------- catalog ----------
class LookupIn(BaseModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None
    sort_order: int = 0
    department_id: Optional[str] = None
    logo_url: Optional[str] = None


class LookupUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    sort_order: Optional[int] = None
    department_id: Optional[str] = None
    logo_url: Optional[str] = None


class ProductIn(BaseModel):
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    description: Optional[str] = ""
    currency: str = "EUR"
    stock: int = Field(default=0, ge=0)
    in_stock: bool = True
    cover_image: Optional[str] = None
    product_type: str = "other"
    tags: List[str] = Field(default_factory=list)
    colors: List[Any] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    variants: List[Dict[str, Any]] = Field(default_factory=list)
    category_id: Optional[str] = None
    brand_id: Optional[str] = None
    department_id: Optional[str] = None
    images: List[str] = Field(default_factory=list)

    @field_validator("name", "sku")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ProductUpdateIn(BaseModel):
    sku: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1)
    price: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    currency: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    cover_image: Optional[str] = None
    product_type: Optional[str] = None
    tags: Optional[List[str]] = None
    colors: Optional[List[Any]] = None
    sizes: Optional[List[str]] = None
    variants: Optional[List[Dict[str, Any]]] = None
    category_id: Optional[str] = None
    brand_id: Optional[str] = None
    department_id: Optional[str] = None


class BulkImportIn(BaseModel):
    products: List[Dict[str, Any]]


# ---------- cart / wishlist ----------
class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)
    selected_options: Optional[Dict[str, Any]] = None


class CartItemUpdateIn(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=1)
    selected_options: Optional[Dict[str, Any]] = None


# ---------- requests ----------
class ContactInfo(BaseModel):
    name: str = Field(min_length=1)
    telegram: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", "telegram")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CartRef(BaseModel):
    id: str


class RequestIn(BaseModel):
    contact_info: ContactInfo
    note: Optional[str] = None
    cart_items: List[CartRef] = Field(min_length=1)


class RequestStatusIn(BaseModel):
    status: RequestStatus
    message: Optional[str] = None


class RequestUpdateIn(BaseModel):
    status: Optional[RequestStatus] = None
    message: Optional[str] = None
    note: Optional[str] = None



# ---------- tickets ----------
class TicketIn(BaseModel):
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)
    priority: Optional[TicketPriority] = None


class TicketMessageIn(BaseModel):
    message: str = Field(min_length=1)
    attachments: Optional[List[str]] = None


class TicketStatusIn(BaseModel):
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None


# ---------- verification ----------
class VerificationSubmitIn(BaseModel):
    telegram_id: str
    photo_url: str

    @field_validator("telegram_id", mode="before")
    @classmethod
    def _tg_to_str(cls, v):
        return str(v) if v is not None else v


class VerificationStartIn(BaseModel):
    telegram_id: str

    @field_validator("telegram_id", mode="before")
    @classmethod
    def _tg_to_str(cls, v):
        return str(v) if v is not None else v


class ApproveIn(BaseModel):
    note: Optional[str] = None


class RejectIn(BaseModel):
    reason: Optional[str] = None


# ---------- admin ----------
class VipToggleIn(BaseModel):
    is_vip: Optional[bool] = None
    vip_expires_at: Optional[datetime] = None


class UserUpdateIn(BaseModel):
    is_vip: Optional[bool] = None
    vip_expires_at: Optional[datetime] = None
    role: Optional[Role] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None


class TelegramTestIn(BaseModel):
    userId: str = Field(min_length=1)

    @field_validator("userId", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        return str(v) if v is not None else v



class TemplateIn(BaseModel):
    name: str = Field(min_length=1)
    trigger_status: RequestStatus
    message_template: str = Field(min_length=1)
    is_active: bool = True


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = None
    trigger_status: Optional[RequestStatus] = None
    message_template: Optional[str] = None
    is_active: Optional[bool] = None


class TemplateRenderIn(BaseModel):
    request_id: str
    template_id: Optional[str] = None
    message_template: Optional[str] = None


class VipPlanIn(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    duration_days: int = Field(default=30, ge=1)
    benefits: List[str] = Field(default_factory=list)
    is_active: bool = True


class VipPlanUpdateIn(BaseModel):
    name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, ge=1)
    benefits: Optional[List[str]] = None
    is_active: Optional[bool] = None


# ---------- response shaping ----------
def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _num(v) -> float:
    return float(v) if v is not None else 0.0


def user_brief(u) -> Optional[dict]:
    if u is None:
        return None
    return {"id": u.id, "full_name": u.full_name, "email": u.email, "telegram_id": u.telegram_id}


def user_out(u) -> dict:
    return {
        "id": u.id,
        "telegram_id": u.telegram_id,
        "username": u.username,
        "full_name": u.full_name,
        "email": u.email,
        "phone": u.phone,
        "role": u.role,
        "is_vip": bool(u.is_vip),
        "vip_expires_at": _iso(u.vip_expires_at),
        "rank": u.rank,
        "lifetime_spend": _num(u.lifetime_spend),
        "verification_status": u.verification_status,
        "verification_hand_gesture": u.verification_hand_gesture,
        "verification_submitted_at": _iso(u.verification_submitted_at),
        "rejection_reason": u.rejection_reason,
        "created_at": _iso(u.created_at),
    }


def lookup_out(row) -> dict:
    out = {
        "id": row.id,
        "name": row.name,
        "slug": row.slug,
        "sort_order": row.sort_order,
        "created_at": _iso(row.created_at),
    }
    if hasattr(row, "department_id"):
        out["department_id"] = row.department_id
        out["department"] = lookup_out(row.department) if row.department else None
    if hasattr(row, "logo_url"):
        out["logo_url"] = row.logo_url
    return out


def product_out(p, minimal: bool = False) -> dict:
    out = {
        "id": p.id,
        "sku": p.sku,
        "name": p.name,
        "price": _num(p.price),
        "in_stock": bool(p.in_stock),
        "cover_image": p.cover_image,
        "category": {"id": p.category.id, "name": p.category.name, "slug": p.category.slug} if p.category else None,
        "brand": {"id": p.brand.id, "name": p.brand.name, "slug": p.brand.slug} if p.brand else None,
    }
    if minimal:
        return out
    out.update({
        "description": p.description,
        "currency": p.currency,
        "stock": p.stock,
        "product_type": p.product_type,
        "tags": p.tags or [],
        "colors": p.colors or [],
        "sizes": p.sizes or [],
        "variants": p.variants or [],
        "category_id": p.category_id,
        "brand_id": p.brand_id,
        "department_id": p.department_id,
        "department": {"id": p.department.id, "name": p.department.name, "slug": p.department.slug} if p.department else None,
        "product_images": [image_out(i) for i in p.images],
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    })
    if out["brand"] is not None:
        out["brand"]["logo_url"] = p.brand.logo_url
    return out


def image_out(i) -> dict:
    return {"id": i.id, "url": i.url, "sort_order": i.sort_order}


def cart_item_out(ci) -> dict:
    return {
        "id": ci.id,
        "user_id": ci.user_id,
        "product_id": ci.product_id,
        "quantity": ci.quantity,
        "selected_options": ci.selected_options,
        "created_at": _iso(ci.created_at),
        "product": product_out(ci.product) if ci.product else None,
    }


def request_item_out(it) -> dict:
    return {
        "id": it.id,
        "product_id": it.product_id,
        "sku_snapshot": it.sku_snapshot,
        "name_snapshot": it.name_snapshot,
        "price_snapshot": _num(it.price_snapshot),
        "quantity_snapshot": it.quantity_snapshot,
        "selected_options_snapshot": it.selected_options_snapshot,
    }


def request_out(r) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "status": r.status,
        "total_sum": _num(r.total_sum),
        "contact_info": r.contact_info,
        "note": r.note,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
        "user": user_brief(r.user),
        "request_items": [request_item_out(i) for i in r.items],
    }


def ticket_message_out(m) -> dict:
    return {
        "id": m.id,
        "ticket_id": m.ticket_id,
        "user_id": m.user_id,
        "message": m.message,
        "attachments": m.attachments,
        "sender_role": m.user.role if m.user else "user",
        "read_by_user": bool(m.read_by_user),
        "read_by_admin": bool(m.read_by_admin),
        "created_at": _iso(m.created_at),
        "user": {"id": m.user.id, "full_name": m.user.full_name, "role": m.user.role} if m.user else None,
    }


def ticket_out(t, last_only: bool = False) -> dict:
    msgs = t.messages[-1:] if last_only else t.messages
    return {
        "id": t.id,
        "user_id": t.user_id,
        "subject": t.subject,
        "status": t.status,
        "priority": t.priority,
        "unread_by_user": bool(t.unread_by_user),
        "unread_by_admin": bool(t.unread_by_admin),
        "last_message_at": _iso(t.last_message_at),
        "created_at": _iso(t.created_at),
        "user": user_brief(t.user),
        "ticket_messages": [ticket_message_out(m) for m in msgs],
    }


def verification_out(v) -> dict:
    return {
        "id": v.id,
        "user_id": v.user_id,
        "photo_url": v.photo_url,
        "hand_gesture": v.hand_gesture,
        "status": v.status,
        "submitted_at": _iso(v.submitted_at),
        "reviewed_at": _iso(v.reviewed_at),
        "reviewed_by": v.reviewed_by,
        "rejection_reason": v.rejection_reason,
    }


def template_out(t) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "trigger_status": t.trigger_status,
        "message_template": t.message_template,
        "is_active": bool(t.is_active),
        "created_at": _iso(t.created_at),
    }


def vip_plan_out(p) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "price": _num(p.price),
        "duration_days": p.duration_days,
        "benefits": p.benefits or [],
        "is_active": bool(p.is_active),
    }


def chat_message_out(m) -> dict:
    return {
        "id": m.id,
        "session_id": m.session_id,
        "sender": m.sender,
        "sender_id": m.sender_id,
        "content": m.content,
        "is_read": bool(m.is_read),
        "created_at": _iso(m.created_at),
    }


def chat_session_out(s, last_message=None, unread: int = 0) -> dict:
    u = s.user
    return {
        "id": s.id,
        "user_id": s.user_id,
        "status": s.status,
        "created_at": _iso(s.created_at),
        "updated_at": _iso(s.updated_at),
        "user": {"id": u.id, "full_name": u.full_name, "email": u.email, "rank": u.rank} if u else None,
        "messages": [chat_message_out(last_message)] if last_message else [],
        "_count": {"messages": unread},
    }


def paginated(rows: list, total: int, page: int, limit: Optional[int]) -> dict:
    return {
        "data": rows,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": -(-total // limit) if limit else 1,
    }
