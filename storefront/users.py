# storefront/users.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import User, Request, CartItem
from storefront.schemas import UserUpdateIn, user_out, request_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"], dependencies=[Depends(require_admin)])


async def _user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("")
async def list_users(db: AsyncSession = Depends(get_db)):
    counts = (
        select(Request.user_id, func.count(Request.id).label("n"))
        .group_by(Request.user_id)
        .subquery()
    )
    q = (
        select(User, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.user_id == User.id)
        .order_by(User.created_at.desc())
    )
    users = []
    for user, n in (await db.execute(q)).all():
        item = user_out(user)
        item["_count"] = {"requests": n}
        users.append(item)
    return {"users": users}


@router.get("/{user_id}")
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    user = await _user_or_404(db, user_id)
    recent = (await db.execute(
        select(Request).where(Request.user_id == user_id).order_by(Request.created_at.desc()).limit(10)
    )).scalars().all()
    n_requests = (await db.execute(select(func.count()).select_from(Request).where(Request.user_id == user_id))).scalar_one()
    n_cart = (await db.execute(select(func.count()).select_from(CartItem).where(CartItem.user_id == user_id))).scalar_one()
    out = user_out(user)
    out["requests"] = [request_out(r) for r in recent]
    out["_count"] = {"requests": n_requests, "cart_items": n_cart}
    return out


@router.patch("/{user_id}")
async def update_user(user_id: str, payload: UserUpdateIn, admin: User = Depends(require_admin),
                      db: AsyncSession = Depends(get_db)):
    user = await _user_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("role") == "user" and user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
    for k, v in changes.items():
        if k == "vip_expires_at" and v is not None:
            v = v.replace(tzinfo=None)
        elif k in ("is_vip", "role") and v is None:
            continue
        setattr(user, k, v)
    await db.commit()
    logger.info("[USERS] %s updated %s", user.id, sorted(changes))
    return user_out(user)


@router.delete("/{user_id}")
async def delete_user(user_id: str, admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    user = await _user_or_404(db, user_id)
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    await db.delete(user)
    await db.commit()
    logger.info("[USERS] %s deleted by %s", user_id, admin.id)
    return {"message": "User deleted"}
