# storefront/tickets.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.db import get_db
from storefront.deps import get_current_user, require_admin
from storefront.models import Ticket, TicketMessage, User, utcnow
from storefront.realtime import notify_user, notify_role
from storefront.schemas import TicketIn, TicketMessageIn, TicketStatusIn, ticket_out, ticket_message_out, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


async def _load(db: AsyncSession, ticket_id: str) -> Optional[Ticket]:
    r = await db.execute(select(Ticket).where(Ticket.id == ticket_id))
    return r.scalar_one_or_none()


async def _accessible(db: AsyncSession, ticket_id: str, user: User) -> Ticket:
    ticket = await _load(db, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if ticket.user_id != user.id and user.role != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return ticket


async def _reload(db: AsyncSession, ticket_id: str) -> Ticket:
    db.expunge_all()
    return await _load(db, ticket_id)


@router.get("")
async def list_tickets(
    status: Optional[str] = None,
    sort: str = "-last_message_at",
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: int = Query(1, ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Ticket)
    if user.role != "admin":
        q = q.where(Ticket.user_id == user.id)
    if status:
        q = q.where(Ticket.status == status)
    q = crud.apply_sort(q, Ticket, sort, "-last_message_at")
    rows, total = await crud.paginate(db, q, page, limit)
    return paginated([ticket_out(t, last_only=True) for t in rows], total, page, limit)


@router.get("/{ticket_id}")
async def get_ticket(ticket_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    ticket = await _accessible(db, ticket_id, user)
    out = ticket_out(ticket)
    if user.role == "admin":
        ticket.unread_by_admin = False
    else:
        ticket.unread_by_user = False
    await db.commit()
    return out


@router.post("", status_code=201)
async def create_ticket(payload: TicketIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    priority = payload.priority
    if priority is None:
        # VIP customers get priority support
        priority = "high" if user.is_vip else "medium"
    ticket = Ticket(
        user_id=user.id,
        subject=payload.subject,
        status="open",
        priority=priority,
        unread_by_admin=True,
        unread_by_user=False,
        last_message_at=utcnow(),
    )
    ticket.messages = [TicketMessage(user_id=user.id, message=payload.message, read_by_user=True, read_by_admin=False)]
    db.add(ticket)
    await db.commit()
    logger.info("[TICKET] %s opened by %s (%s)", ticket.id, user.id, priority)
    ticket = await _reload(db, ticket.id)
    out = ticket_out(ticket)
    await notify_role("admin", "ticket:new", {"id": ticket.id, "subject": ticket.subject, "priority": ticket.priority})
    return out


@router.post("/{ticket_id}/messages", status_code=201)
async def send_message(ticket_id: str, payload: TicketMessageIn, user: User = Depends(get_current_user),
                       db: AsyncSession = Depends(get_db)):
    ticket = await _accessible(db, ticket_id, user)
    is_admin = user.role == "admin"
    msg = TicketMessage(
        ticket_id=ticket.id,
        user_id=user.id,
        message=payload.message,
        attachments=payload.attachments or None,
        read_by_user=not is_admin,
        read_by_admin=is_admin,
    )
    db.add(msg)
    ticket.last_message_at = utcnow()
    ticket.unread_by_user = is_admin
    ticket.unread_by_admin = not is_admin
    if is_admin and ticket.status == "solved":
        ticket.status = "open"
    owner_id = ticket.user_id
    await db.commit()
    db.expunge(msg)

    r = await db.execute(select(TicketMessage).where(TicketMessage.id == msg.id))
    out = ticket_message_out(r.scalar_one())
    if is_admin:
        await notify_user(owner_id, "ticket:message", out)
    else:
        await notify_role("admin", "ticket:message", out)
    return out


@router.patch("/{ticket_id}/status", dependencies=[Depends(require_admin)])
async def update_ticket_status(ticket_id: str, payload: TicketStatusIn, db: AsyncSession = Depends(get_db)):
    ticket = await _load(db, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if payload.status:
        ticket.status = payload.status
    if payload.priority:
        ticket.priority = payload.priority
    await db.commit()
    return ticket_out(await _reload(db, ticket_id))
