# storefront/seed_db.py
import os
import json
import asyncio
import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import engine, AsyncSessionLocal, Base
from storefront.models import Department, Category, Brand, Product, NotificationTemplate, VipPlan
from storefront.templates import DEFAULT_MESSAGES, SEED_TEMPLATES
from storefront.vip import SEED_PLANS

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
CATALOG_FILE = DATA_DIR / "catalog.json"


async def _upsert_by_slug(db: AsyncSession, model, rows: list, extra=None) -> dict:
    out = {}
    for row in rows:
        fields = {k: v for k, v in row.items() if not k.endswith("_slug")}
        if extra:
            fields.update(extra(row))
        obj = (await db.execute(select(model).where(model.slug == row["slug"]))).scalar_one_or_none()
        if obj:
            for k, v in fields.items():
                setattr(obj, k, v)
        else:
            obj = model(**fields)
            db.add(obj)
        await db.flush()
        out[row["slug"]] = obj
    return out


async def seed_catalog(db: AsyncSession, catalog: dict) -> dict:
    departments = await _upsert_by_slug(db, Department, catalog.get("departments", []))
    categories = await _upsert_by_slug(
        db, Category, catalog.get("categories", []),
        extra=lambda r: {"department_id": departments[r["department_slug"]].id} if r.get("department_slug") else {},
    )
    brands = await _upsert_by_slug(db, Brand, catalog.get("brands", []))

    created = updated = 0
    for p in catalog.get("products", []):
        fields = {k: v for k, v in p.items() if not k.endswith("_slug")}
        if p.get("department_slug"):
            fields["department_id"] = departments[p["department_slug"]].id
        if p.get("category_slug"):
            fields["category_id"] = categories[p["category_slug"]].id
        if p.get("brand_slug"):
            fields["brand_id"] = brands[p["brand_slug"]].id
        product = await crud.get_product_by_sku(db, p["sku"])
        if product:
            for k, v in fields.items():
                setattr(product, k, v)
            updated += 1
        else:
            db.add(Product(**fields))
            created += 1
    await db.commit()
    return {
        "departments": len(departments),
        "categories": len(categories),
        "brands": len(brands),
        "products_created": created,
        "products_updated": updated,
    }


async def seed_extras(db: AsyncSession):
    for plan in SEED_PLANS:
        if not (await db.execute(select(VipPlan).where(VipPlan.id == plan["id"]))).scalar_one_or_none():
            db.add(VipPlan(is_active=True, **plan))
    for tpl in SEED_TEMPLATES:
        if not (await db.execute(select(NotificationTemplate).where(NotificationTemplate.id == tpl["id"]))).scalar_one_or_none():
            db.add(NotificationTemplate(
                message_template=DEFAULT_MESSAGES[tpl["trigger_status"]], is_active=True, **tpl,
            ))
    await db.commit()


async def seed_admin(db: AsyncSession):
    email = os.getenv("ADMIN_EMAIL", "admin@nebula.supply")
    password = os.getenv("ADMIN_PASSWORD")
    admin = await crud.get_user_by_email(db, email)
    if admin:
        admin.role = "admin"
        admin.verification_status = "verified"
        if password:
            admin.password_hash = crud.hash_password(password)
        await db.commit()
        return admin
    return await crud.create_user(
        db,
        email=email,
        username="admin",
        full_name="Admin User",
        password=password,
        telegram_id=os.getenv("ADMIN_TELEGRAM_ID"),
        role="admin",
        is_vip=True,
        verification_status="verified",
    )


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with open(CATALOG_FILE, "r", encoding="utf-8") as f:
        catalog = json.load(f)

    async with AsyncSessionLocal() as session:
        admin = await seed_admin(session)
        summary = await seed_catalog(session, catalog)
        await seed_extras(session)
    logger.info("[SEED] admin %s ready", admin.email)
    logger.info("[SEED] %s", summary)
    return summary


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    asyncio.run(seed())


if __name__ == "__main__":
    main()
