# storefront/cart.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import get_current_user
from storefront.models import User
from storefront.realtime import notify_user, publish_table_change
from storefront.schemas import CartItemIn, CartItemUpdateIn, cart_item_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart-items", tags=["cart"])


def _row(ci) -> dict:
    return {"id": ci.id, "user_id": ci.user_id, "product_id": ci.product_id, "quantity": ci.quantity}


async def _broadcast(user_id: str, kind: str, new=None, old=None):
    await notify_user(user_id, "cart:update", {"action": "refresh", "user_id": user_id})
    await publish_table_change("cart_items", kind, new=new, old=old, notify_owner=False)


async def _own_item_or_404(db: AsyncSession, item_id: str, user: User):
    item = await crud.get_cart_item(db, item_id)
    if not item or item.user_id != user.id:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item


@router.get("")
async def get_cart(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return [cart_item_out(ci) for ci in await crud.list_cart(db, user.id)]


@router.post("", status_code=201)
async def add_to_cart(payload: CartItemIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    product = await crud.get_product(db, payload.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    item = await crud.add_to_cart(db, user.id, payload.product_id, payload.quantity, payload.selected_options)
    logger.info("[CART] user %s product %s qty now %s", user.id, payload.product_id, item.quantity)
    await _broadcast(user.id, "UPSERT", new=_row(item))
    return cart_item_out(item)


@router.patch("/{item_id}")
async def update_cart_item(item_id: str, payload: CartItemUpdateIn, user: User = Depends(get_current_user),
                           db: AsyncSession = Depends(get_db)):
    item = await _own_item_or_404(db, item_id, user)
    old = _row(item)
    for k, v in payload.model_dump(exclude_unset=True).items():
        if k == "quantity" and v is None:
            continue
        setattr(item, k, v)
    await db.commit()
    await _broadcast(user.id, "UPDATE", new=_row(item), old=old)
    return cart_item_out(item)


@router.delete("/{item_id}")
async def remove_cart_item(item_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    item = await _own_item_or_404(db, item_id, user)
    old = _row(item)
    await db.delete(item)
    await db.commit()
    await _broadcast(user.id, "DELETE", old=old)
    return {"message": "Item removed from cart"}


@router.delete("")
async def clear_cart(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    removed = await crud.clear_cart(db, user.id)
    logger.info("[CART] cleared %d rows for %s", removed, user.id)
    await _broadcast(user.id, "DELETE", old={"user_id": user.id})
    return {"message": "Cart cleared"}
