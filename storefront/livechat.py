# storefront/livechat.py
"""Live support chat between customers and admins over the ``/ws`` socket."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud, config
from storefront.db import AsyncSessionLocal, get_db
from storefront.deps import decode_token, require_admin
from storefront.models import ChatSession, ChatMessage, utcnow
from storefront.realtime import manager
from storefront.schemas import chat_message_out, chat_session_out

logger = logging.getLogger(__name__)

ws_router = APIRouter(tags=["realtime"])
router = APIRouter(prefix="/api/admin/chats", tags=["livechat"], dependencies=[Depends(require_admin)])

WS_UNAUTHORIZED = 4401


class ChatError(Exception):
    pass


def _session_id(data) -> Optional[str]:
    if isinstance(data, dict):
        return data.get("sessionId") or data.get("session_id")
    if isinstance(data, str):
        return data
    return None


async def _unread_count(db: AsyncSession, session_id: str) -> int:
    q = select(func.count()).select_from(ChatMessage).where(
        ChatMessage.session_id == session_id,
        ChatMessage.is_read.is_(False),
        ChatMessage.sender == "user",
    )
    return (await db.execute(q)).scalar_one()


async def _get_session(db: AsyncSession, session_id: str) -> Optional[ChatSession]:
    r = await db.execute(select(ChatSession).where(ChatSession.id == session_id))
    return r.scalar_one_or_none()


async def _open_session_for(db: AsyncSession, user_id: str):
    """Return ``(session, created)`` for the user's open chat."""
    q = (
        select(ChatSession)
        .where(ChatSession.user_id == user_id, ChatSession.status == "open")
        .order_by(ChatSession.updated_at.desc())
        .limit(1)
    )
    session = (await db.execute(q)).scalar_one_or_none()
    if session:
        return session, False
    session = ChatSession(user_id=user_id, status="open")
    db.add(session)
    await db.flush()
    return session, True


# ---------- socket event handlers ----------
async def handle_user_message(user: dict, content: str):
    async with AsyncSessionLocal() as db:
        session, created = await _open_session_for(db, user["id"])
        msg = ChatMessage(session_id=session.id, sender="user", sender_id=user["id"], content=content)
        db.add(msg)
        session.updated_at = utcnow()
        await db.commit()
        session_id = session.id
        db.expunge_all()
        session = await _get_session(db, session_id)
        msg_out = chat_message_out(msg)
        session_out = chat_session_out(session, last_message=msg, unread=await _unread_count(db, session_id))

    logger.info("[CHAT] user %s -> session %s%s", user["id"], session_id, " (new)" if created else "")
    if created:
        await manager.emit("role_admin", "admin:new_session", session_out)
    await manager.emit(f"session_{session_id}", "chat:message", msg_out)
    await manager.emit(f"user_{user['id']}", "chat:message", msg_out)
    await manager.emit("role_admin", "admin:message_received", {"sessionId": session_id, "message": msg_out})


async def handle_admin_message(user: dict, session_id: Optional[str], content: str):
    if not session_id:
        raise ChatError("sessionId is required")
    async with AsyncSessionLocal() as db:
        session = await _get_session(db, session_id)
        if not session:
            raise ChatError("Chat session not found")
        msg = ChatMessage(session_id=session.id, sender="admin", sender_id=user["id"], content=content, is_read=True)
        db.add(msg)
        session.updated_at = utcnow()
        owner_id = session.user_id
        await db.commit()
        msg_out = chat_message_out(msg)

    await manager.emit(f"session_{session_id}", "chat:message", msg_out)
    await manager.emit(f"user_{owner_id}", "chat:message", msg_out)


async def handle_join_session(ws: WebSocket, user: dict, session_id: Optional[str]):
    if user["role"] != "admin":
        raise ChatError("Admin access required")
    if not session_id:
        raise ChatError("sessionId is required")
    async with AsyncSessionLocal() as db:
        if not await _get_session(db, session_id):
            raise ChatError("Chat session not found")
        await db.execute(
            update(ChatMessage)
            .where(ChatMessage.session_id == session_id, ChatMessage.sender == "user", ChatMessage.is_read.is_(False))
            .values(is_read=True)
        )
        await db.commit()
    manager.join(ws, f"session_{session_id}")
    await manager.send(ws, "admin:session_joined", {"sessionId": session_id})


async def handle_typing(ws: WebSocket, user: dict, data):
    data = data if isinstance(data, dict) else {}
    is_typing = bool(data.get("is_typing", True))
    if user["role"] == "admin":
        session_id = _session_id(data)
        if not session_id:
            raise ChatError("sessionId is required")
        async with AsyncSessionLocal() as db:
            session = await _get_session(db, session_id)
            if not session:
                raise ChatError("Chat session not found")
            owner_id = session.user_id
        await manager.emit(f"user_{owner_id}", "typing",
                           {"sessionId": session_id, "sender": "admin", "is_typing": is_typing})
        return

    session_id = _session_id(data)
    if not session_id:
        async with AsyncSessionLocal() as db:
            q = (
                select(ChatSession.id)
                .where(ChatSession.user_id == user["id"], ChatSession.status == "open")
                .order_by(ChatSession.updated_at.desc())
                .limit(1)
            )
            session_id = (await db.execute(q)).scalar_one_or_none()
    if session_id:
        await manager.emit(f"session_{session_id}", "typing",
                           {"sessionId": session_id, "sender": "user", "user_id": user["id"], "is_typing": is_typing},
                           skip=ws)


async def dispatch(ws: WebSocket, user: dict, event: str, data):
    if event == "chat:message":
        content = (data.get("content") if isinstance(data, dict) else data) or ""
        content = str(content).strip()
        if not content:
            raise ChatError("Message content is required")
        if user["role"] == "admin":
            await handle_admin_message(user, _session_id(data), content)
        else:
            await handle_user_message(user, content)
    elif event == "admin:join_session":
        await handle_join_session(ws, user, _session_id(data))
    elif event == "admin:leave_session":
        session_id = _session_id(data)
        if session_id:
            manager.leave(ws, f"session_{session_id}")
    elif event == "typing":
        await handle_typing(ws, user, data)
    elif event == "ping":
        await manager.send(ws, "pong", data)
    else:
        raise ChatError(f"Unknown event: {event}")


async def authenticate_socket(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        user_id = decode_token(token)
    except HTTPException:
        return None
    async with AsyncSessionLocal() as db:
        user = await crud.get_user(db, user_id)
    if not user:
        return None
    return {"id": user.id, "role": user.role, "full_name": user.full_name}


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    user = await authenticate_socket(token or websocket.cookies.get(config.TOKEN_COOKIE))
    if user is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    manager.join(websocket, f"user_{user['id']}")
    manager.join(websocket, f"role_{user['role']}")
    logger.info("[WS] connected %s (%s)", user["id"], user["role"])
    await manager.send(websocket, "connected", {"user_id": user["id"], "role": user["role"]})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                event = frame["event"]
            except (ValueError, KeyError, TypeError):
                await manager.send(websocket, "error", {"message": "Invalid frame"})
                continue
            try:
                await dispatch(websocket, user, event, frame.get("data"))
            except ChatError as e:
                await manager.send(websocket, "error", {"event": event, "message": str(e)})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
        logger.info("[WS] disconnected %s", user["id"])


# ---------- admin REST ----------
@router.get("")
async def list_chat_sessions(db: AsyncSession = Depends(get_db)):
    sessions = (await db.execute(select(ChatSession).order_by(ChatSession.updated_at.desc()))).scalars().all()
    out = []
    for s in sessions:
        last = (await db.execute(
            select(ChatMessage).where(ChatMessage.session_id == s.id).order_by(ChatMessage.created_at.desc()).limit(1)
        )).scalar_one_or_none()
        out.append(chat_session_out(s, last_message=last, unread=await _unread_count(db, s.id)))
    return out


@router.get("/{session_id}/messages")
async def chat_history(session_id: str, db: AsyncSession = Depends(get_db)):
    q = select(ChatMessage).where(ChatMessage.session_id == session_id).order_by(ChatMessage.created_at.asc())
    return [chat_message_out(m) for m in (await db.execute(q)).scalars().all()]
