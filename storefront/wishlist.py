# storefront/wishlist.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import get_current_user
from storefront.models import User, WishlistItem
from storefront.schemas import product_out

router = APIRouter(prefix="/api/wishlist-items", tags=["wishlist"])


def wishlist_out(w) -> dict:
    return {
        "id": w.id,
        "user_id": w.user_id,
        "product_id": w.product_id,
        "created_at": w.created_at.isoformat() if w.created_at else None,
        "product": product_out(w.product) if w.product else None,
    }


@router.get("")
async def list_wishlist(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    q = select(WishlistItem).where(WishlistItem.user_id == user.id).order_by(WishlistItem.created_at.desc())
    return [wishlist_out(w) for w in (await db.execute(q)).scalars().all()]


@router.post("/{product_id}", status_code=201)
async def add_to_wishlist(product_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    if not await crud.get_product(db, product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    q = select(WishlistItem).where(WishlistItem.user_id == user.id, WishlistItem.product_id == product_id)
    if (await db.execute(q)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Product already in wishlist")
    item = WishlistItem(user_id=user.id, product_id=product_id)
    db.add(item)
    await db.commit()
    db.expunge(item)
    return wishlist_out((await db.execute(q)).scalar_one())


@router.delete("/{product_id}")
async def remove_from_wishlist(product_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    r = await db.execute(
        delete(WishlistItem).where(WishlistItem.user_id == user.id, WishlistItem.product_id == product_id)
    )
    await db.commit()
    if not r.rowcount:
        raise HTTPException(status_code=404, detail="Product not in wishlist")
    return {"message": "Removed from wishlist"}
