# storefront/auth.py
import hmac
import json
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import config, crud
from storefront.db import get_db
from storefront.deps import get_current_user
from storefront.models import User
from storefront.schemas import LoginIn, RegisterIn, TelegramWebAppIn, MeUpdateIn, user_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def create_access_token(data: dict, expires_delta: int = config.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def token_for(user: User) -> str:
    return create_access_token({"sub": user.id, "telegram_id": user.telegram_id, "role": user.role})


def set_token_cookie(response: Response, token: str):
    response.set_cookie(
        config.TOKEN_COOKIE,
        token,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="strict" if config.IS_PRODUCTION else "lax",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


def check_webapp_signature(init_data: str, bot_token: str) -> bool:
    """Validate Telegram WebApp ``initData`` against the bot token."""
    params = dict(parse_qsl(init_data, keep_blank_values=True))
    received = params.pop("hash", None)
    if not received:
        return False
    data_check = "\n".join(f"{k}={params[k]}" for k in sorted(params))
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    calculated = hmac.new(secret, data_check.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(calculated, received)


@router.post("/login")
async def login(payload: LoginIn, response: Response, db: AsyncSession = Depends(get_db)):
    if payload.telegram_id:
        user = await crud.get_user_by_telegram(db, payload.telegram_id)
        if not user:
            user = await crud.create_user(
                db,
                telegram_id=payload.telegram_id,
                username=payload.username,
                full_name=payload.full_name,
                email=payload.email,
                phone=payload.phone,
                role="user",
            )
            logger.info("[AUTH] created telegram user %s", user.id)
        else:
            user = await crud.update_user_fields(db, user, {
                "username": payload.username,
                "full_name": payload.full_name,
                "email": payload.email,
                "phone": payload.phone,
            })
    else:
        identifier = payload.email or payload.username
        if not identifier or not payload.password:
            raise HTTPException(status_code=400, detail="Telegram ID or credentials are required")
        user = await crud.get_user_by_login(db, identifier)
        if not user or not crud.verify_password(payload.password, user.password_hash):
            logger.info("[AUTH] failed login for %s", identifier)
            raise HTTPException(status_code=401, detail="Invalid credentials")

    token = token_for(user)
    set_token_cookie(response, token)
    return {"token": token, "user": user_out(user)}


@router.post("/register", status_code=201)
async def register(payload: RegisterIn, response: Response, db: AsyncSession = Depends(get_db)):
    if not payload.telegram_id and not payload.email:
        raise HTTPException(status_code=400, detail="Telegram ID or email is required")
    if payload.email and not payload.password:
        raise HTTPException(status_code=400, detail="Password is required")

    existing = None
    if payload.telegram_id:
        existing = await crud.get_user_by_telegram(db, payload.telegram_id)
    if not existing and payload.email:
        existing = await crud.get_user_by_email(db, payload.email)
    if existing:
        raise HTTPException(status_code=409, detail="User already exists")

    user = await crud.create_user(
        db,
        telegram_id=payload.telegram_id,
        username=payload.username,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        password=payload.password,
        role="user",
    )
    token = token_for(user)
    set_token_cookie(response, token)
    return {"token": token, "user": user_out(user)}


@router.post("/telegram-webapp")
async def telegram_webapp(payload: TelegramWebAppIn, response: Response, db: AsyncSession = Depends(get_db)):
    if not payload.initData:
        raise HTTPException(status_code=400, detail="Telegram WebApp initData is required")
    if config.TELEGRAM_BOT_TOKEN and not check_webapp_signature(payload.initData, config.TELEGRAM_BOT_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid Telegram WebApp signature")

    params = dict(parse_qsl(payload.initData, keep_blank_values=True))
    try:
        tg_user = json.loads(params.get("user") or "{}")
    except ValueError:
        tg_user = {}
    telegram_id = str(tg_user["id"]) if tg_user.get("id") else None
    if not telegram_id:
        raise HTTPException(status_code=400, detail="Invalid Telegram WebApp data")

    full_name = f"{tg_user.get('first_name') or ''} {tg_user.get('last_name') or ''}".strip() or None
    user = await crud.get_user_by_telegram(db, telegram_id)
    if not user:
        user = await crud.create_user(
            db,
            telegram_id=telegram_id,
            username=tg_user.get("username"),
            full_name=full_name,
            role="user",
            verification_status="pending",
        )
    else:
        user = await crud.update_user_fields(db, user, {"username": tg_user.get("username"), "full_name": full_name})

    if user.verification_status != "verified":
        return JSONResponse(status_code=403, content={
            "error": "Forbidden",
            "message": "User not verified",
            "verification_status": user.verification_status,
            "verification_hand_gesture": user.verification_hand_gesture,
        })

    token = token_for(user)
    set_token_cookie(response, token)
    return {"token": token, "user": user_out(user)}


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return user_out(user)


@router.patch("/me")
async def update_me(payload: MeUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await crud.update_user_fields(db, user, payload.model_dump(exclude_none=True))
    return user_out(user)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(
        config.TOKEN_COOKIE,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="strict" if config.IS_PRODUCTION else "lax",
        path="/",
    )
    return {"message": "Logged out successfully"}
