# storefront/uploads.py
import os
import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File

from storefront import config
from storefront.deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def save_upload(filename: str, content: bytes, subdir: str = "") -> dict:
    ext = os.path.splitext(filename or "")[1].lower() or ".bin"
    name = f"{uuid.uuid4().hex}{ext}"
    target_dir = os.path.join(config.UPLOAD_DIR, subdir) if subdir else config.UPLOAD_DIR
    os.makedirs(target_dir, exist_ok=True)
    path = os.path.join(target_dir, name)
    with open(path, "wb") as f:
        f.write(content)
    rel = f"{subdir}/{name}" if subdir else name
    return {"url": f"/uploads/{rel}", "path": path, "filename": name, "size": len(content)}


@router.post("", dependencies=[Depends(get_current_user)])
async def upload_file(file: UploadFile = File(None)):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed!")
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext and ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only image files are allowed!")
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 5MB)")

    saved = save_upload(file.filename, content)
    logger.info("[UPLOAD] %s (%d bytes)", saved["filename"], saved["size"])
    return {
        "url": saved["url"],
        "file_url": saved["url"],
        "path": saved["path"],
        "filename": saved["filename"],
        "size": saved["size"],
        "mimetype": file.content_type,
    }
