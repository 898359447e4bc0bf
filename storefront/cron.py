# storefront/cron.py
"""Maintenance endpoints triggered by an external scheduler."""
import os
import time
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import config
from storefront.db import get_db
from storefront.models import VerificationRequest, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])

APPROVED_RETENTION_DAYS = 30
REJECTED_RETENTION_DAYS = 7
ORPHAN_PHOTO_MIN_AGE_DAYS = 7
VERIFICATION_PHOTO_DIR = "verify"


def is_authorized_cron(authorization: str) -> bool:
    if config.CRON_SECRET:
        return authorization == f"Bearer {config.CRON_SECRET}"
    # without a secret the endpoint only runs outside production
    return not config.IS_PRODUCTION


def _photo_path(photo_url: Optional[str]) -> Optional[str]:
    """Local file behind an ``/uploads/...`` url, or None when it points anywhere else."""
    if not photo_url or not photo_url.startswith("/uploads/"):
        return None
    root = os.path.realpath(config.UPLOAD_DIR)
    path = os.path.realpath(os.path.join(root, photo_url[len("/uploads/"):]))
    if os.path.commonpath([root, path]) != root or path == root:
        logger.warning("[CRON] photo url outside upload dir ignored: %s", photo_url)
        return None
    return path


async def cleanup_old_verifications(db: AsyncSession) -> dict:
    now = utcnow()
    q = select(VerificationRequest).where(or_(
        and_(VerificationRequest.status == "approved",
             VerificationRequest.submitted_at < now - timedelta(days=APPROVED_RETENTION_DAYS)),
        and_(VerificationRequest.status == "rejected",
             VerificationRequest.submitted_at < now - timedelta(days=REJECTED_RETENTION_DAYS)),
    ))
    deleted = photos = 0
    for req in (await db.execute(q)).scalars().all():
        path = _photo_path(req.photo_url)
        if path:
            try:
                if os.path.isfile(path):
                    os.remove(path)
                    photos += 1
            except OSError as e:
                logger.warning("[CRON] could not delete photo for %s: %s", req.id, e)
        await db.delete(req)
        deleted += 1
    await db.commit()
    if deleted:
        logger.info("[CRON] deleted %d verification requests and %d photos", deleted, photos)
    return {"deletedRequests": deleted, "deletedPhotos": photos}


async def cleanup_orphaned_photos(db: AsyncSession, now: Optional[float] = None) -> int:
    """Delete verification photos no request points at any more."""
    photo_dir = os.path.join(config.UPLOAD_DIR, VERIFICATION_PHOTO_DIR)
    if not os.path.isdir(photo_dir):
        return 0
    urls = (await db.execute(
        select(VerificationRequest.photo_url).where(VerificationRequest.photo_url.is_not(None))
    )).scalars().all()
    referenced = {p for p in map(_photo_path, urls) if p}

    cutoff = (now if now is not None else time.time()) - ORPHAN_PHOTO_MIN_AGE_DAYS * 86400
    deleted = 0
    for name in os.listdir(photo_dir):
        path = os.path.realpath(os.path.join(photo_dir, name))
        if path in referenced or not os.path.isfile(path):
            continue
        try:
            if os.path.getmtime(path) < cutoff:
                os.remove(path)
                deleted += 1
        except OSError as e:
            logger.warning("[CRON] could not delete orphaned photo %s: %s", name, e)
    if deleted:
        logger.info("[CRON] deleted %d orphaned verification photos", deleted)
    return deleted


@router.get("/cleanup")
async def cleanup(request: Request, db: AsyncSession = Depends(get_db)):
    if not is_authorized_cron(request.headers.get("authorization", "")):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    result = await cleanup_old_verifications(db)
    result["deletedOrphanedPhotos"] = await cleanup_orphaned_photos(db)
    return {"ok": True, **result}
