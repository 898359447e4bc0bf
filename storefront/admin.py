# storefront/admin.py
"""Back-office dashboards and management endpoints (admin only)."""
import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import config, crud, notifications
from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import (
    User, Product, Category, Brand, Department, Request, RequestItem, Ticket, VerificationRequest, utcnow,
)
from storefront.schemas import BulkImportIn, TelegramTestIn, VipToggleIn, request_out, product_out, user_out, user_brief, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

SOLD = ("completed", "shipped")


def _json_value(value):
    # accepts lists/objects or their JSON-string form
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


async def _count(db: AsyncSession, model, *where) -> int:
    q = select(func.count()).select_from(model)
    for w in where:
        q = q.where(w)
    return (await db.execute(q)).scalar_one()


async def _revenue_since(db: AsyncSession, since: Optional[datetime] = None) -> float:
    q = select(func.coalesce(func.sum(Request.total_sum), 0)).where(Request.status.in_(SOLD))
    if since is not None:
        q = q.where(Request.created_at >= since)
    return float((await db.execute(q)).scalar_one() or 0)


async def _top_product_rows(db: AsyncSession, limit: int):
    q = (
        select(
            RequestItem.product_id,
            func.count(RequestItem.product_id).label("order_count"),
            func.coalesce(func.sum(RequestItem.quantity_snapshot), 0).label("total_quantity"),
        )
        .where(RequestItem.product_id.is_not(None))
        .group_by(RequestItem.product_id)
        .order_by(func.count(RequestItem.product_id).desc())
        .limit(limit)
    )
    return (await db.execute(q)).all()


@router.get("/stats")
async def stats(db: AsyncSession = Depends(get_db)):
    now = utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    overview = {
        "products": await _count(db, Product),
        "orders": await _count(db, Request),
        "categories": await _count(db, Category),
        "brands": await _count(db, Brand),
        "tickets": await _count(db, Ticket),
        "users": await _count(db, User),
        "vipUsers": await _count(db, User, User.is_vip.is_(True)),
        "openTickets": await _count(db, Ticket, Ticket.status.in_(("open", "in_progress"))),
        "pendingOrders": await _count(db, Request, Request.status == "pending"),
    }
    revenue = {
        "total": await _revenue_since(db),
        "today": await _revenue_since(db, today),
        "week": await _revenue_since(db, now - timedelta(days=7)),
        "month": await _revenue_since(db, now - timedelta(days=30)),
    }

    recent = (await db.execute(select(Request).order_by(Request.created_at.desc()).limit(5))).scalars().all()
    top_ids = [row.product_id for row in await _top_product_rows(db, 5)]
    top_products = []
    if top_ids:
        products = (await db.execute(select(Product).where(Product.id.in_(top_ids)))).scalars().all()
        by_id = {p.id: p for p in products}
        top_products = [product_out(by_id[i]) for i in top_ids if i in by_id]

    return {
        "overview": overview,
        "revenue": revenue,
        "recentOrders": [request_out(r) for r in recent],
        "topProducts": top_products,
    }


@router.get("/diagnostics")
async def diagnostics(db: AsyncSession = Depends(get_db)):
    return {
        "ok": True,
        "timestamp": utcnow().isoformat(),
        "counts": {
            "products": await _count(db, Product),
            "categories": await _count(db, Category),
            "brands": await _count(db, Brand),
            "departments": await _count(db, Department),
            "users": await _count(db, User),
            "requests": await _count(db, Request),
            "tickets": await _count(db, Ticket),
            "verificationRequests": await _count(db, VerificationRequest),
        },
        "env": {
            "appEnv": config.APP_ENV,
            "hasDatabaseUrl": bool(config.DATABASE_URL),
            "hasCronSecret": bool(config.CRON_SECRET),
            "hasTelegramBotToken": bool(config.TELEGRAM_BOT_TOKEN),
            "rateLimitEnabled": config.RATE_LIMIT_ENABLED,
            "geminiEnabled": bool(config.USE_GEMINI and config.GEMINI_API_KEY),
        },
    }


@router.get("/sales-data")
async def sales_data(period: int = Query(30, ge=1, le=3650), db: AsyncSession = Depends(get_db)):
    since = utcnow() - timedelta(days=period)
    q = (
        select(Request.created_at, Request.total_sum)
        .where(Request.status.in_(SOLD), Request.created_at >= since)
        .order_by(Request.created_at.asc())
    )
    rows = (await db.execute(q)).all()
    return {
        "period": period,
        "data": [{"date": r.created_at.isoformat(), "revenue": float(r.total_sum or 0)} for r in rows],
    }


@router.get("/top-products")
async def top_products(limit: int = Query(10, ge=1, le=100), db: AsyncSession = Depends(get_db)):
    rows = await _top_product_rows(db, limit)
    ids = [r.product_id for r in rows]
    products = {}
    if ids:
        products = {p.id: p for p in (await db.execute(select(Product).where(Product.id.in_(ids)))).scalars().all()}
    out = []
    for r in rows:
        p = products.get(r.product_id)
        if p is None:
            continue
        out.append({
            "product": {"id": p.id, "name": p.name, "sku": p.sku, "cover_image": p.cover_image, "price": float(p.price)},
            "orderCount": r.order_count,
            "totalQuantity": int(r.total_quantity or 0),
        })
    return out


@router.get("/category-revenue")
async def category_revenue(period: int = Query(30, ge=1, le=3650), db: AsyncSession = Depends(get_db)):
    since = utcnow() - timedelta(days=period)
    q = (
        select(RequestItem, Product.category_id, Category.name)
        .join(Request, Request.id == RequestItem.request_id)
        .join(Product, Product.id == RequestItem.product_id)
        .outerjoin(Category, Category.id == Product.category_id)
        .where(Request.status.in_(SOLD), Request.created_at >= since)
    )
    buckets = {}
    for item, category_id, category_name in (await db.execute(q)).all():
        if not category_id:
            continue
        b = buckets.setdefault(category_id, {
            "id": category_id, "name": category_name or "Unbekannt", "revenue": 0.0, "count": 0,
        })
        b["revenue"] += float(item.price_snapshot or 0) * (item.quantity_snapshot or 0)
        b["count"] += item.quantity_snapshot or 0
    return sorted(buckets.values(), key=lambda b: b["revenue"], reverse=True)


@router.get("/user-growth")
async def user_growth(period: int = Query(30, ge=1, le=3650), db: AsyncSession = Depends(get_db)):
    since = utcnow() - timedelta(days=period)
    q = select(User.created_at).where(User.created_at >= since).order_by(User.created_at.asc())
    by_day = {}
    for (created_at,) in (await db.execute(q)).all():
        day = created_at.date().isoformat()
        by_day[day] = by_day.get(day, 0) + 1
    return [{"date": d, "count": c} for d, c in by_day.items()]


@router.get("/recent-activity")
async def recent_activity(db: AsyncSession = Depends(get_db)):
    orders = (await db.execute(select(Request).order_by(Request.created_at.desc()).limit(5))).scalars().all()
    tickets = (await db.execute(select(Ticket).order_by(Ticket.created_at.desc()).limit(5))).scalars().all()
    users = (await db.execute(select(User).order_by(User.created_at.desc()).limit(5))).scalars().all()
    return {
        "orders": [request_out(r) for r in orders],
        "tickets": [
            {"id": t.id, "subject": t.subject, "status": t.status, "priority": t.priority,
             "created_at": t.created_at.isoformat(), "user": user_brief(t.user)}
            for t in tickets
        ],
        "users": [
            {"id": u.id, "full_name": u.full_name, "email": u.email, "created_at": u.created_at.isoformat()}
            for u in users
        ],
    }


@router.get("/users")
async def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_vip: Optional[bool] = None,
    sort: str = "-created_at",
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_db),
):
    q = select(User)
    if search:
        pattern = f"%{search}%"
        q = q.where(or_(User.full_name.ilike(pattern), User.email.ilike(pattern), User.username.ilike(pattern)))
    if role:
        q = q.where(User.role == role)
    if is_vip is not None:
        q = q.where(User.is_vip.is_(is_vip))
    q = crud.apply_sort(q, User, sort, "-created_at")
    rows, total = await crud.paginate(db, q, page, limit)

    data = []
    for u in rows:
        item = user_out(u)
        item["_count"] = {
            "requests": await _count(db, Request, Request.user_id == u.id),
            "tickets": await _count(db, Ticket, Ticket.user_id == u.id),
        }
        data.append(item)
    return paginated(data, total, page, limit)


@router.patch("/users/{user_id}/vip")
async def toggle_vip(user_id: str, payload: VipToggleIn, db: AsyncSession = Depends(get_db)):
    user = await crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if payload.is_vip is not None:
        user.is_vip = payload.is_vip
    user.vip_expires_at = payload.vip_expires_at.replace(tzinfo=None) if payload.vip_expires_at else None
    await db.commit()
    logger.info("[ADMIN] user %s vip=%s", user.id, user.is_vip)
    return user_out(user)


@router.get("/telegram/config")
async def telegram_config(db: AsyncSession = Depends(get_db)):
    info = await notifications.telegram_bot_info()
    admin_chat = (await db.execute(
        select(User.telegram_id).where(User.role == "admin", User.telegram_id.is_not(None)).limit(1)
    )).scalar_one_or_none()
    return {**info, "enabled": bool(config.TELEGRAM_BOT_TOKEN), "adminChatId": admin_chat}


@router.post("/telegram/test-notification")
async def telegram_test_notification(payload: TelegramTestIn, db: AsyncSession = Depends(get_db)):
    user = await crud.get_user(db, payload.userId) or await crud.get_user_by_telegram(db, payload.userId)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.telegram_id:
        raise HTTPException(status_code=400, detail="User has no Telegram account")
    try:
        result = await notifications.telegram_send_message(
            user.telegram_id, f"🔔 Test-Benachrichtigung für {user.full_name or user.username or user.telegram_id}",
        )
    except httpx.HTTPError as e:
        logger.error("[ADMIN] telegram test to %s failed: %s", user.id, e)
        raise HTTPException(status_code=502, detail="Telegram request failed")
    if not result.get("ok"):
        reason = result.get("error") or "unknown error"
        raise HTTPException(status_code=503, detail=f"Telegram notification not sent: {reason}")
    logger.info("[ADMIN] telegram test sent to %s", user.id)
    return {"success": True, "message": "Test notification sent"}


def _product_fields(row: dict) -> dict:
    price = row.get("price")
    if price is None or price == "":
        raise ValueError("price is required")
    try:
        price = Decimal(str(price))
    except InvalidOperation:
        raise ValueError(f"invalid price: {row.get('price')!r}")
    if not row.get("name"):
        raise ValueError("name is required")
    return {
        "name": row["name"],
        "description": row.get("description") or "",
        "price": price,
        "in_stock": row.get("in_stock") is not False,
        "cover_image": row.get("cover_image"),
        "tags": _json_value(row.get("tags") or []),
    }


@router.post("/products/bulk-import")
async def bulk_import(payload: BulkImportIn, db: AsyncSession = Depends(get_db)):
    if not payload.products:
        raise HTTPException(status_code=400, detail="Products array is required")

    results = {"created": 0, "updated": 0, "errors": []}
    for row in payload.products:
        sku = row.get("sku")
        try:
            if not sku:
                raise ValueError("sku is required")
            fields = _product_fields(row)
            for key in ("department_id", "category_id", "brand_id"):
                if row.get(key):
                    fields[key] = row[key]
            product = await crud.get_product_by_sku(db, sku)
            if product:
                for k, v in fields.items():
                    setattr(product, k, v)
                await db.commit()
                results["updated"] += 1
            else:
                db.add(Product(
                    sku=sku,
                    currency=row.get("currency") or "EUR",
                    product_type=row.get("product_type") or "other",
                    colors=_json_value(row.get("colors") or []),
                    sizes=_json_value(row.get("sizes") or []),
                    variants=_json_value(row.get("variants") or []),
                    **fields,
                ))
                await db.commit()
                results["created"] += 1
        except (ValueError, SQLAlchemyError) as e:
            await db.rollback()
            logger.warning("[ADMIN] bulk import row %s failed: %s", sku, e)
            results["errors"].append({"sku": sku, "error": str(e)})

    return {"message": "Bulk import completed", **results}
