from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from market.database import get_db
from market import schemas, models
from market.auth import get_current_user, require_admin
from market.services import chat

router = APIRouter()

@router.get("/chats", response_model=List[schemas.ChatSessionOut])
async def list_sessions(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return chat.list_sessions(db, current_user.id)

@router.post("/chats/read-all")
async def mark_all_read(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    flipped = chat.mark_all_as_read(db, current_user.id)
    return {"marked": flipped}

@router.post("/chats/start", response_model=schemas.ChatSessionOut)
async def start_chat(
    body: schemas.StartChatRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return chat.start_chat(db, current_user.id, body.product_id)

@router.get("/chats/{session_id}/messages", response_model=List[schemas.ChatMessageOut])
async def list_messages(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return chat.list_messages(db, session_id, current_user.id)

@router.post("/chats/{session_id}/messages", response_model=schemas.ChatMessageOut)
async def send_message(
    session_id: int,
    body: schemas.SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return chat.send_message(db, session_id, current_user.id, body.content, body.type)

@router.post("/system/notifications", response_model=schemas.ChatMessageOut)
async def send_system_notification(
    body: schemas.SystemNotificationRequest,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin)
):
    return chat.send_system_message_to_user(db, body.user_id, body.content)
