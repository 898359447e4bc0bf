# storefront/app.py

import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException
from http import HTTPStatus

from storefront import config
from storefront.db import engine, Base
from storefront.models import utcnow
from storefront.ratelimit import build_limiter, rate_limit_middleware
from storefront import (
    auth, catalog, cart, requests, tickets, verification, admin, users,
    templates, vip, wishlist, uploads, cron, livechat,
)

logger = logging.getLogger("storefront")


def configure_logging(level: str = config.LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


limiter = build_limiter() if config.RATE_LIMIT_ENABLED else None


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_env()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[APP] started (%s)", config.APP_ENV)
    yield
    if limiter is not None:
        await limiter.redis.aclose()
    await engine.dispose()

app = FastAPI(
    title="Nebula Supply Storefront API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if limiter is not None:
    app.middleware("http")(rate_limit_middleware(limiter))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start
    if duration > config.SLOW_REQUEST_SECONDS:
        logger.warning("[HTTP] slow request %s %s -> %s %.0fms",
                       request.method, request.url.path, response.status_code, duration * 1000)
    else:
        logger.info("[HTTP] %s %s -> %s %.0fms",
                    request.method, request.url.path, response.status_code, duration * 1000)
    return response


# ---------- error mapping ----------
def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route {request.method} {request.url.path} not found"
    else:
        message = exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": _reason(exc.status_code), "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation Error",
            "message": "Invalid input data",
            "details": jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        },
    )


@app.exception_handler(IntegrityError)
async def integrity_error(request: Request, exc: IntegrityError):
    logger.warning("[DB] integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"error": "Conflict", "message": "Duplicate entry"})


@app.exception_handler(NoResultFound)
async def not_found_error(request: Request, exc: NoResultFound):
    return JSONResponse(status_code=404, content={"error": "Not Found", "message": "Record not found"})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("[APP] unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "Something went wrong" if config.IS_PRODUCTION else str(exc),
        },
    )


# Routers
app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(catalog.categories_router)
app.include_router(catalog.brands_router)
app.include_router(catalog.departments_router)
app.include_router(cart.router)
app.include_router(requests.router)
app.include_router(tickets.router)
app.include_router(verification.router)
app.include_router(admin.router)
app.include_router(livechat.router)
app.include_router(livechat.ws_router)
app.include_router(users.router)
app.include_router(templates.router)
app.include_router(vip.router)
app.include_router(wishlist.router)
app.include_router(uploads.router)
app.include_router(cron.router)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}


def main():
    configure_logging()
    uvicorn.run(
        "storefront.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=not config.IS_PRODUCTION,
    )


if __name__ == "__main__":
    main()
