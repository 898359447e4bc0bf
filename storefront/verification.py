# storefront/verification.py
"""Hand-gesture photo verification for Telegram users."""
import random
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import User, VerificationRequest, utcnow
from storefront.notifications import send_notification, IN_APP, TELEGRAM
from storefront.schemas import (
    VerificationSubmitIn, VerificationStartIn, ApproveIn, RejectIn,
    verification_out, user_out, paginated,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/verification", tags=["verification"])

HAND_GESTURES = ["👍", "✌️", "👌", "🤞", "🤙", "👈", "👉", "👆", "👇", "✊", "🤝", "🙌"]


def random_gesture() -> str:
    return random.choice(HAND_GESTURES)


async def create_verification_request(db: AsyncSession, telegram_id: str) -> VerificationRequest:
    """Find or create the user and return their pending request, creating one with a fresh gesture if needed."""
    user = await crud.get_user_by_telegram(db, telegram_id)
    if not user:
        user = await crud.create_user(db, telegram_id=telegram_id, role="user", verification_status="pending")

    pending = await crud.pending_verification(db, user.id)
    if pending:
        return pending

    gesture = random_gesture()
    req = VerificationRequest(user_id=user.id, hand_gesture=gesture, status="pending")
    db.add(req)
    user.verification_status = "pending"
    user.verification_hand_gesture = gesture
    await db.commit()
    await db.refresh(req)
    logger.info("[VERIFY] new request %s for %s (%s)", req.id, user.id, gesture)
    return req


async def _user_by_telegram_or_404(db: AsyncSession, telegram_id: str) -> User:
    user = await crud.get_user_by_telegram(db, telegram_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _pending_request_or_error(db: AsyncSession, request_id: str) -> VerificationRequest:
    r = await db.execute(select(VerificationRequest).where(VerificationRequest.id == request_id))
    req = r.scalar_one_or_none()
    if not req:
        raise HTTPException(status_code=404, detail="Verification request not found")
    if req.status != "pending":
        raise HTTPException(status_code=400, detail="Verification request is not pending")
    return req


@router.post("/start")
async def start_verification(payload: VerificationStartIn, db: AsyncSession = Depends(get_db)):
    req = await create_verification_request(db, payload.telegram_id)
    return {"request": verification_out(req), "hand_gesture": req.hand_gesture}


@router.post("/submit")
async def submit_verification(payload: VerificationSubmitIn, db: AsyncSession = Depends(get_db)):
    if not payload.photo_url:
        raise HTTPException(status_code=400, detail="Photo URL is required")
    user = await _user_by_telegram_or_404(db, payload.telegram_id)
    pending = await crud.pending_verification(db, user.id)
    if not pending:
        raise HTTPException(status_code=400, detail="No pending verification request found")

    pending.photo_url = payload.photo_url
    user.verification_submitted_at = utcnow()
    await db.commit()
    return {"message": "Verification photo submitted successfully", "request": verification_out(pending)}


@router.get("/status")
async def verification_status(telegram_id: str = Query(...), db: AsyncSession = Depends(get_db)):
    user = await _user_by_telegram_or_404(db, telegram_id)
    latest = await crud.latest_verification(db, user.id)
    return {
        "verification_status": user.verification_status,
        "verification_hand_gesture": user.verification_hand_gesture,
        "verification_submitted_at": user.verification_submitted_at.isoformat() if user.verification_submitted_at else None,
        "verified_at": user.verified_at.isoformat() if user.verified_at else None,
        "rejection_reason": user.rejection_reason,
        "latest_request": verification_out(latest) if latest else None,
    }


@router.get("/pending", dependencies=[Depends(require_admin)])
async def pending_verifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    q = (
        select(VerificationRequest)
        .where(VerificationRequest.status == "pending")
        .order_by(VerificationRequest.submitted_at.asc())
    )
    rows, total = await crud.paginate(db, q, page, limit)
    data = []
    for v in rows:
        item = verification_out(v)
        item["user"] = user_out(v.user) if v.user else None
        data.append(item)
    return paginated(data, total, page, limit)


@router.post("/approve/{request_id}")
async def approve_verification(request_id: str, payload: ApproveIn = ApproveIn(),
                               admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    req = await _pending_request_or_error(db, request_id)
    now = utcnow()
    req.status = "approved"
    req.reviewed_at = now
    req.reviewed_by = admin.id
    user = req.user
    user.verification_status = "verified"
    user.verified_at = now
    user.verified_by = admin.id
    user.rejection_reason = None
    await db.commit()
    logger.info("[VERIFY] %s approved by %s", req.id, admin.id)

    await send_notification(user, "✅ Verifizierung erfolgreich",
                            "Dein Konto wurde verifiziert. Viel Spaß beim Shoppen!",
                            channels=(IN_APP, TELEGRAM))
    return {"message": "Verification approved successfully", "user": user_out(user)}


@router.post("/reject/{request_id}")
async def reject_verification(request_id: str, payload: RejectIn = RejectIn(),
                              admin: User = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    reason = (payload.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")
    req = await _pending_request_or_error(db, request_id)
    req.status = "rejected"
    req.reviewed_at = utcnow()
    req.reviewed_by = admin.id
    req.rejection_reason = reason
    user = req.user
    user.verification_status = "rejected"
    user.rejection_reason = reason
    await db.commit()
    logger.info("[VERIFY] %s rejected by %s", req.id, admin.id)

    await send_notification(user, "❌ Verifizierung abgelehnt", f"Grund: {reason}", channels=(IN_APP, TELEGRAM))
    return {"message": "Verification rejected successfully", "user": user_out(user)}
