# storefront/requests.py
"""Customer requests (orders) built from the cart."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud, ranking
from storefront.db import get_db
from storefront.deps import get_current_user, require_admin
from storefront.models import Request, User
from storefront.notifications import send_notification, notify_admins_new_request, IN_APP, TELEGRAM
from storefront.realtime import notify_user, publish_table_change
from storefront.schemas import RequestIn, RequestStatusIn, RequestUpdateIn, request_out, paginated
from storefront.templates import render_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/requests", tags=["requests"])

STATUS_LABELS = {
    "pending": "Ausstehend",
    "confirmed": "Bestätigt",
    "processing": "In Bearbeitung",
    "shipped": "Versendet",
    "completed": "Abgeschlossen",
    "cancelled": "Storniert",
}


@router.get("")
async def list_requests(
    status: Optional[str] = None,
    sort: str = "-created_at",
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: int = Query(1, ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Request)
    if user.role != "admin":
        q = q.where(Request.user_id == user.id)
    if status:
        q = q.where(Request.status == status)
    q = crud.apply_sort(q, Request, sort, "-created_at")
    rows, total = await crud.paginate(db, q, page, limit)
    return paginated([request_out(r) for r in rows], total, page, limit)


@router.get("/{request_id}")
async def get_request(request_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    req = await crud.get_request(db, request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Order not found")
    if req.user_id != user.id and user.role != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return request_out(req)


@router.post("", status_code=201)
async def create_request(payload: RequestIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    try:
        req = await crud.create_request_from_cart(
            db,
            user.id,
            payload.contact_info.model_dump(exclude_none=True),
            payload.note,
            [c.id for c in payload.cart_items],
        )
    except crud.InvalidCartItem:
        raise HTTPException(status_code=400, detail="Invalid cart item")

    logger.info("[REQUEST] %s created by %s total=%s", req.id, user.id, req.total_sum)
    await notify_user(user.id, "cart:update", {"action": "refresh", "user_id": user.id})
    await publish_table_change("requests", "INSERT", new={"id": req.id, "user_id": user.id, "status": req.status})
    await notify_admins_new_request(db, req)
    return request_out(req)


async def _change_status(db: AsyncSession, req: Request, status: str, message: Optional[str]) -> dict:
    """Commit a status change, re-rank the owner and optionally tell them about it."""
    old_status = req.status
    req.status = status
    await db.commit()
    logger.info("[REQUEST] %s status %s -> %s", req.id, old_status, status)

    rank_change = None
    if req.user_id:
        rank_change = await ranking.update_rank_for_user(db, req.user_id)

    notified = {}
    if message and message.strip() and req.user:
        text = render_message(message, req)
        notified = await send_notification(
            req.user,
            f"📦 Status Update - Bestellung #{req.id[:8]}",
            text,
            channels=(IN_APP, TELEGRAM),
            data={"request_id": req.id, "status": req.status},
        )

    await publish_table_change("requests", "UPDATE",
                               new={"id": req.id, "user_id": req.user_id, "status": req.status},
                               old={"id": req.id, "user_id": req.user_id, "status": old_status})
    return {"notified": notified, "rank_change": rank_change}


async def _request_or_404(db: AsyncSession, request_id: str) -> Request:
    req = await crud.get_request(db, request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Order not found")
    return req


async def _render_updated(db: AsyncSession, request_id: str, outcome: dict) -> dict:
    db.expunge_all()
    out = request_out(await crud.get_request(db, request_id))
    out["status_label"] = STATUS_LABELS.get(out["status"], out["status"])
    out["notified"] = outcome["notified"]
    if outcome["rank_change"]:
        out["rank_change"] = outcome["rank_change"]
    return out


@router.patch("/{request_id}/status", dependencies=[Depends(require_admin)])
async def update_request_status(request_id: str, payload: RequestStatusIn, db: AsyncSession = Depends(get_db)):
    req = await _request_or_404(db, request_id)
    outcome = await _change_status(db, req, payload.status, payload.message)
    return await _render_updated(db, request_id, outcome)


@router.patch("/{request_id}", dependencies=[Depends(require_admin)])
async def update_request(request_id: str, payload: RequestUpdateIn, db: AsyncSession = Depends(get_db)):
    req = await _request_or_404(db, request_id)
    changes = payload.model_dump(exclude_unset=True)
    if "note" in changes:
        req.note = changes["note"]
        await db.commit()
    outcome = {"notified": {}, "rank_change": None}
    if changes.get("status"):
        outcome = await _change_status(db, req, changes["status"], changes.get("message"))
    return await _render_updated(db, request_id, outcome)


@router.delete("/{request_id}", dependencies=[Depends(require_admin)])
async def delete_request(request_id: str, db: AsyncSession = Depends(get_db)):
    req = await _request_or_404(db, request_id)
    user_id, status = req.user_id, req.status
    await db.delete(req)
    await db.commit()
    logger.info("[REQUEST] %s deleted", request_id)
    if user_id:
        await ranking.update_rank_for_user(db, user_id)
    await publish_table_change("requests", "DELETE", old={"id": request_id, "user_id": user_id, "status": status})
    return {"message": "Order deleted"}
