# storefront/templates.py
"""Notification templates sent to customers when a request changes status."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import require_admin
from storefront.models import NotificationTemplate
from storefront.schemas import TemplateIn, TemplateUpdateIn, TemplateRenderIn, template_out

router = APIRouter(prefix="/api/notification-templates", tags=["templates"], dependencies=[Depends(require_admin)])

DEFAULT_MESSAGES = {
    "confirmed": "✅ Deine Bestellung wurde bestätigt!\n\nWir bearbeiten deine Anfrage und melden uns bald bei dir.\n\nBestellung: #{order_id}\nGesamtsumme: {total}€\n\n🌟 Nebula Supply",
    "processing": "⚙️ Deine Bestellung wird bearbeitet!\n\nWir kümmern uns gerade um deine Artikel.\n\nBestellung: #{order_id}\n\n🌟 Nebula Supply",
    "shipped": "🚚 Deine Bestellung wurde versandt!\n\nDein Paket ist unterwegs zu dir.\n\nBestellung: #{order_id}\nGesamtsumme: {total}€\n\n🌟 Nebula Supply",
    "completed": "🎉 Bestellung abgeschlossen!\n\nVielen Dank für deinen Einkauf bei Nebula Supply!\n\nBestellung: #{order_id}\n\n🌟 Nebula Supply",
    "cancelled": "❌ Bestellung storniert\n\nDeine Bestellung wurde storniert.\n\nBestellung: #{order_id}\n\nBei Fragen melde dich gerne!\n\n🌟 Nebula Supply",
}

SEED_TEMPLATES = [
    {"id": "order-confirmed", "name": "Order Confirmed", "trigger_status": "confirmed"},
    {"id": "order-shipped", "name": "Order Shipped", "trigger_status": "shipped"},
    {"id": "order-completed", "name": "Order Completed", "trigger_status": "completed"},
]


def render_message(text: str, request_row) -> str:
    """Fill ``{customer_name}``, ``{order_id}`` and ``{total}`` from a request."""
    if request_row is None:
        return text
    contact = request_row.contact_info or {}
    return (
        text.replace("{customer_name}", contact.get("name") or "Kunde")
        .replace("{order_id}", request_row.id[:8])
        .replace("{total}", f"{float(request_row.total_sum or 0):.2f}")
    )


async def template_for_status(db: AsyncSession, status: str) -> Optional[str]:
    """Active template text for ``status``, falling back to the built-in default."""
    q = (
        select(NotificationTemplate)
        .where(NotificationTemplate.trigger_status == status, NotificationTemplate.is_active.is_(True))
        .order_by(NotificationTemplate.created_at.asc())
        .limit(1)
    )
    tpl = (await db.execute(q)).scalar_one_or_none()
    if tpl:
        return tpl.message_template
    return DEFAULT_MESSAGES.get(status)


async def _get_or_404(db: AsyncSession, template_id: str) -> NotificationTemplate:
    r = await db.execute(select(NotificationTemplate).where(NotificationTemplate.id == template_id))
    tpl = r.scalar_one_or_none()
    if not tpl:
        raise HTTPException(status_code=404, detail="Template not found")
    return tpl


@router.get("")
async def list_templates(trigger_status: Optional[str] = None, is_active: Optional[bool] = None,
                         db: AsyncSession = Depends(get_db)):
    q = select(NotificationTemplate)
    if trigger_status:
        q = q.where(NotificationTemplate.trigger_status == trigger_status)
    if is_active is not None:
        q = q.where(NotificationTemplate.is_active.is_(is_active))
    q = q.order_by(NotificationTemplate.created_at.asc())
    r = await db.execute(q)
    return [template_out(t) for t in r.scalars().all()]


@router.get("/defaults")
async def default_templates():
    return DEFAULT_MESSAGES


@router.post("/render")
async def render_template(payload: TemplateRenderIn, db: AsyncSession = Depends(get_db)):
    req = await crud.get_request(db, payload.request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Order not found")
    if payload.message_template is not None:
        text = payload.message_template
    elif payload.template_id:
        text = (await _get_or_404(db, payload.template_id)).message_template
    else:
        text = await template_for_status(db, req.status) or ""
    return {"message": render_message(text, req)}


@router.get("/{template_id}")
async def get_template(template_id: str, db: AsyncSession = Depends(get_db)):
    return template_out(await _get_or_404(db, template_id))


@router.post("", status_code=201)
async def create_template(payload: TemplateIn, db: AsyncSession = Depends(get_db)):
    tpl = NotificationTemplate(**payload.model_dump())
    db.add(tpl)
    await db.commit()
    await db.refresh(tpl)
    return template_out(tpl)


@router.patch("/{template_id}")
async def update_template(template_id: str, payload: TemplateUpdateIn, db: AsyncSession = Depends(get_db)):
    tpl = await _get_or_404(db, template_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(tpl, k, v)
    await db.commit()
    await db.refresh(tpl)
    return template_out(tpl)


@router.delete("/{template_id}")
async def delete_template(template_id: str, db: AsyncSession = Depends(get_db)):
    tpl = await _get_or_404(db, template_id)
    await db.delete(tpl)
    await db.commit()
    return {"message": "Template deleted"}
