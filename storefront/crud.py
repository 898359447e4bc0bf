# storefront/crud.py
import logging
from decimal import Decimal
from typing import List, Dict, Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    User, Product, CartItem, Request, RequestItem, VerificationRequest,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class InvalidCartItem(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


# ---------- listing helpers ----------
def apply_sort(stmt, model, sort: Optional[str], default: str):
    """Order ``stmt`` by ``field`` (asc) or ``-field`` (desc); unknown fields fall back to ``default``."""
    sort = sort or default
    desc = sort.startswith("-")
    field = sort.lstrip("-")
    col = getattr(model, field, None)
    if col is None or not hasattr(col, "desc"):
        desc = default.startswith("-")
        col = getattr(model, default.lstrip("-"))
    return stmt.order_by(col.desc() if desc else col.asc())


async def paginate(db: AsyncSession, stmt, page: int = 1, limit: Optional[int] = None) -> Tuple[list, int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()
    if limit:
        stmt = stmt.limit(limit).offset((page - 1) * limit)
    r = await db.execute(stmt)
    return list(r.scalars().all()), total


# ---------- users ----------
async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    r = await db.execute(select(User).where(User.id == user_id))
    return r.scalar_one_or_none()


async def get_user_by_telegram(db: AsyncSession, telegram_id: str) -> Optional[User]:
    r = await db.execute(select(User).where(User.telegram_id == str(telegram_id)))
    return r.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    r = await db.execute(select(User).where(User.email == email))
    return r.scalar_one_or_none()


async def get_user_by_login(db: AsyncSession, identifier: str) -> Optional[User]:
    q = select(User).where(or_(User.email == identifier, User.username == identifier)).limit(1)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def create_user(db: AsyncSession, **fields) -> User:
    password = fields.pop("password", None)
    user = User(**{k: v for k, v in fields.items() if v is not None})
    if password:
        user.password_hash = hash_password(password)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def update_user_fields(db: AsyncSession, user: User, fields: Dict) -> User:
    changed = False
    for k, v in fields.items():
        if v:
            setattr(user, k, v)
            changed = True
    if changed:
        await db.commit()
        await db.refresh(user)
    return user


# ---------- products ----------
async def get_product(db: AsyncSession, product_id: str) -> Optional[Product]:
    r = await db.execute(select(Product).where(Product.id == product_id))
    return r.scalar_one_or_none()


async def get_product_by_sku(db: AsyncSession, sku: str) -> Optional[Product]:
    r = await db.execute(select(Product).where(Product.sku == sku))
    return r.scalar_one_or_none()


# ---------- cart ----------
async def list_cart(db: AsyncSession, user_id: str) -> List[CartItem]:
    q = select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at.desc())
    r = await db.execute(q)
    return list(r.scalars().all())


async def get_cart_item(db: AsyncSession, item_id: str) -> Optional[CartItem]:
    r = await db.execute(select(CartItem).where(CartItem.id == item_id))
    return r.scalar_one_or_none()


async def add_to_cart(db: AsyncSession, user_id: str, product_id: str, quantity: int = 1,
                      selected_options: Optional[Dict] = None) -> CartItem:
    """Insert a cart row, or add ``quantity`` onto the existing row for the same product."""
    q = select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    existing = (await db.execute(q)).scalar_one_or_none()
    if existing:
        existing.quantity = existing.quantity + quantity
        if selected_options:
            existing.selected_options = selected_options
        item = existing
    else:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity,
                        selected_options=selected_options or None)
        db.add(item)
    await db.commit()
    db.expunge(item)
    return await get_cart_item(db, item.id)


async def clear_cart(db: AsyncSession, user_id: str) -> int:
    r = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.commit()
    return r.rowcount or 0


# ---------- requests ----------
async def get_request(db: AsyncSession, request_id: str) -> Optional[Request]:
    r = await db.execute(select(Request).where(Request.id == request_id))
    return r.scalar_one_or_none()


async def create_request_from_cart(db: AsyncSession, user_id: str, contact_info: Dict,
                                   note: Optional[str], cart_item_ids: List[str]) -> Request:
    """Turn the given cart rows into a pending request in one transaction.

    Prices and names are snapshotted from the current product rows and the
    consumed cart rows are deleted. Raises InvalidCartItem when any id is
    unknown or belongs to another user.
    """
    cart_rows = []
    for cid in cart_item_ids:
        ci = await get_cart_item(db, cid)
        if ci is None or ci.user_id != user_id or ci.product is None:
            raise InvalidCartItem(cid)
        cart_rows.append(ci)

    total = sum((Decimal(ci.product.price) * ci.quantity for ci in cart_rows), Decimal("0"))
    try:
        req = Request(
            user_id=user_id,
            status="pending",
            total_sum=total,
            contact_info=contact_info,
            note=note or None,
        )
        db.add(req)
        await db.flush()
        for ci in cart_rows:
            db.add(RequestItem(
                request_id=req.id,
                product_id=ci.product_id,
                sku_snapshot=ci.product.sku,
                name_snapshot=ci.product.name,
                price_snapshot=ci.product.price,
                quantity_snapshot=ci.quantity,
                selected_options_snapshot=ci.selected_options,
            ))
        await db.execute(delete(CartItem).where(CartItem.id.in_([c.id for c in cart_rows])))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    # reload with items
    db.expunge(req)
    return await get_request(db, req.id)


async def lifetime_spend(db: AsyncSession, user_id: str) -> Decimal:
    q = select(func.coalesce(func.sum(Request.total_sum), 0)).where(
        Request.user_id == user_id,
        Request.status.in_(("completed", "shipped")),
    )
    r = await db.execute(q)
    return Decimal(str(r.scalar_one() or 0))


# ---------- verification ----------
async def latest_verification(db: AsyncSession, user_id: str) -> Optional[VerificationRequest]:
    q = (
        select(VerificationRequest)
        .where(VerificationRequest.user_id == user_id)
        .order_by(VerificationRequest.submitted_at.desc())
        .limit(1)
    )
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def pending_verification(db: AsyncSession, user_id: str) -> Optional[VerificationRequest]:
    q = (
        select(VerificationRequest)
        .where(VerificationRequest.user_id == user_id, VerificationRequest.status == "pending")
        .order_by(VerificationRequest.submitted_at.desc())
        .limit(1)
    )
    r = await db.execute(q)
    return r.scalar_one_or_none()
