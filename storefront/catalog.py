# storefront/catalog.py
import re
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud, ai
from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import Product, ProductImage, Category, Brand, Department
from storefront.schemas import (
    ProductIn, ProductUpdateIn, LookupIn, LookupUpdateIn,
    product_out, image_out, lookup_out, paginated,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "item"


async def _product_or_404(db: AsyncSession, product_id: str) -> Product:
    product = await crud.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("")
async def list_products(
    category_id: Optional[str] = None,
    brand_id: Optional[str] = None,
    department_id: Optional[str] = None,
    in_stock: Optional[bool] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    tags: Optional[List[str]] = Query(None),
    minimal: bool = False,
    sort: str = "-created_at",
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_db),
):
    q = select(Product)
    if category_id:
        q = q.where(Product.category_id == category_id)
    if brand_id:
        q = q.where(Product.brand_id == brand_id)
    if department_id:
        q = q.where(Product.department_id == department_id)
    if in_stock is not None:
        q = q.where(Product.in_stock.is_(in_stock))
    if min_price is not None:
        q = q.where(Product.price >= min_price)
    if max_price is not None:
        q = q.where(Product.price <= max_price)
    if search:
        pattern = f"%{search}%"
        q = q.where(or_(
            Product.name.ilike(pattern),
            Product.description.ilike(pattern),
            Product.sku.ilike(pattern),
        ))
    q = crud.apply_sort(q, Product, sort, "-created_at")

    if tags:
        # JSON containment differs per backend, so tags are matched here
        rows = list((await db.execute(q)).scalars().all())
        wanted = set(tags)
        rows = [p for p in rows if wanted.issubset(set(p.tags or []))]
        total = len(rows)
        if limit:
            rows = rows[(page - 1) * limit:page * limit]
    else:
        rows, total = await crud.paginate(db, q, page, limit)

    data = [product_out(p, minimal=minimal) for p in rows]
    if not limit and page == 1:
        return data
    return paginated(data, total, page, limit)


@router.get("/{product_id}")
async def get_product(product_id: str, db: AsyncSession = Depends(get_db)):
    return product_out(await _product_or_404(db, product_id))


@router.get("/{product_id}/images")
async def get_product_images(product_id: str, db: AsyncSession = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    return [image_out(i) for i in product.images]


@router.get("/{product_id}/hype")
async def get_product_hype(product_id: str, db: AsyncSession = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    return {"product_id": product.id, "hype": await ai.product_hype(product)}


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
async def create_product(payload: ProductIn, db: AsyncSession = Depends(get_db)):
    data = payload.model_dump(exclude={"images"})
    product = Product(**data)
    product.images = [ProductImage(url=url, sort_order=i) for i, url in enumerate(payload.images)]
    if not product.cover_image and payload.images:
        product.cover_image = payload.images[0]
    db.add(product)
    await db.commit()
    logger.info("[CATALOG] product created %s (%s)", product.id, product.sku)
    db.expunge(product)
    return product_out(await crud.get_product(db, product.id))


@router.patch("/{product_id}", dependencies=[Depends(require_admin)])
async def update_product(product_id: str, payload: ProductUpdateIn, db: AsyncSession = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(product, k, v)
    await db.commit()
    db.expunge(product)
    return product_out(await crud.get_product(db, product_id))


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
async def delete_product(product_id: str, db: AsyncSession = Depends(get_db)):
    product = await _product_or_404(db, product_id)
    await db.delete(product)
    await db.commit()
    return {"message": "Product deleted"}


# ---------- categories / brands / departments ----------
def lookup_router(model, prefix: str, label: str) -> APIRouter:
    """Public list/get plus admin create/patch/delete for a name+slug table."""
    r = APIRouter(prefix=prefix, tags=[prefix.rsplit("/", 1)[-1]])

    async def _get_or_404(db: AsyncSession, row_id: str):
        row = (await db.execute(select(model).where(model.id == row_id))).scalar_one_or_none()
        if not row:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return row

    def _fields(data: dict) -> dict:
        return {k: v for k, v in data.items() if hasattr(model, k)}

    @r.get("")
    async def list_rows(
        sort: str = "sort_order",
        department_id: Optional[str] = None,
        db: AsyncSession = Depends(get_db),
    ):
        q = select(model)
        if department_id and hasattr(model, "department_id"):
            q = q.where(model.department_id == department_id)
        q = crud.apply_sort(q, model, sort, "sort_order")
        rows = (await db.execute(q)).scalars().all()
        return [lookup_out(row) for row in rows]

    @r.get("/{row_id}")
    async def get_row(row_id: str, db: AsyncSession = Depends(get_db)):
        return lookup_out(await _get_or_404(db, row_id))

    @r.post("", status_code=201, dependencies=[Depends(require_admin)])
    async def create_row(payload: LookupIn, db: AsyncSession = Depends(get_db)):
        data = _fields(payload.model_dump())
        data["slug"] = data.get("slug") or slugify(payload.name)
        row = model(**data)
        db.add(row)
        await db.commit()
        db.expunge(row)
        return lookup_out(await _get_or_404(db, row.id))

    @r.patch("/{row_id}", dependencies=[Depends(require_admin)])
    async def update_row(row_id: str, payload: LookupUpdateIn, db: AsyncSession = Depends(get_db)):
        row = await _get_or_404(db, row_id)
        for k, v in _fields(payload.model_dump(exclude_unset=True)).items():
            setattr(row, k, v)
        await db.commit()
        db.expunge(row)
        return lookup_out(await _get_or_404(db, row_id))

    @r.delete("/{row_id}", dependencies=[Depends(require_admin)])
    async def delete_row(row_id: str, db: AsyncSession = Depends(get_db)):
        row = await _get_or_404(db, row_id)
        await db.delete(row)
        await db.commit()
        return {"message": f"{label} deleted"}

    return r


categories_router = lookup_router(Category, "/api/categories", "Category")
brands_router = lookup_router(Brand, "/api/brands", "Brand")
departments_router = lookup_router(Department, "/api/departments", "Department")
