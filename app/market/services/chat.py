"""Conversation store: buyer/seller sessions, messages and read flags.

Sessions keep a denormalized summary (``last_message``/``last_time``) that is
written in the same transaction as every message insert. A session whose
``product_id`` is NULL is the system-notification channel of its buyer.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market import models, schemas
from market.config import settings
from market.exceptions import Forbidden, NotFound, Validation
from market.services.products import find_product_by_id, thumbnail_of
from market.services.users import display_info, find_user_by_id

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = settings.SYSTEM_USER_ID


def _is_participant(session: models.ChatSession, user_id: int) -> bool:
    return user_id in (session.buyer_id, session.seller_id)


def _require_session(db: Session, session_id: int) -> models.ChatSession:
    session = db.query(models.ChatSession).filter(models.ChatSession.id == session_id).first()
    if session is None:
        raise NotFound("Chat session not found")
    return session


def _find_session(db: Session, buyer_id: int, seller_id: int,
                  product_id: Optional[int]) -> Optional[models.ChatSession]:
    query = db.query(models.ChatSession).filter(
        models.ChatSession.buyer_id == buyer_id,
        models.ChatSession.seller_id == seller_id,
    )
    if product_id is None:
        query = query.filter(models.ChatSession.product_id.is_(None))
    else:
        query = query.filter(models.ChatSession.product_id == product_id)
    return query.first()


def _find_or_create_session(db: Session, buyer_id: int, seller_id: int,
                            product_id: Optional[int]) -> models.ChatSession:
    session = _find_session(db, buyer_id, seller_id, product_id)
    if session is not None:
        return session
    try:
        with db.begin_nested():
            session = models.ChatSession(
                buyer_id=buyer_id,
                seller_id=seller_id,
                product_id=product_id,
                last_time=datetime.utcnow(),
            )
            db.add(session)
    except IntegrityError:
        logger.info(f"Chat session ({buyer_id}, {seller_id}, {product_id}) created concurrently, reusing it")
        return _find_session(db, buyer_id, seller_id, product_id)
    return session


def _append_message(db: Session, session: models.ChatSession, sender_id: int, content: str,
                    message_type: models.MessageType = models.MessageType.TEXT) -> models.ChatMessage:
    now = datetime.utcnow()
    message = models.ChatMessage(
        session_id=session.id,
        sender_id=sender_id,
        type=message_type,
        content=content,
        is_read=False,
        created_at=now,
    )
    db.add(message)
    session.last_message = content[:settings.LAST_MESSAGE_MAX_LENGTH]
    session.last_time = now
    db.flush()
    return message


def _mark_read(db: Session, session_id: int, viewer_id: int) -> int:
    return (
        db.query(models.ChatMessage)
        .filter(
            models.ChatMessage.session_id == session_id,
            models.ChatMessage.sender_id != viewer_id,
            models.ChatMessage.is_read.is_(False),
        )
        .update({models.ChatMessage.is_read: True}, synchronize_session=False)
    )


def unread_count(db: Session, session_id: int, viewer_id: int) -> int:
    return (
        db.query(func.count(models.ChatMessage.id))
        .filter(
            models.ChatMessage.session_id == session_id,
            models.ChatMessage.sender_id != viewer_id,
            models.ChatMessage.is_read.is_(False),
        )
        .scalar()
    )


def to_message_out(message: models.ChatMessage) -> schemas.ChatMessageOut:
    return schemas.ChatMessageOut(
        id=message.id,
        sender_id=message.sender_id,
        type=message.type,
        content=message.content,
        read=bool(message.is_read),
        created_at=message.created_at,
    )


def to_session_out(db: Session, session: models.ChatSession, viewer_id: int) -> schemas.ChatSessionOut:
    partner_id = session.seller_id if session.buyer_id == viewer_id else session.buyer_id
    partner_name, partner_avatar = display_info(db, partner_id)
    if partner_name is None and partner_id == SYSTEM_USER_ID:
        partner_name = settings.SYSTEM_DISPLAY_NAME
        partner_avatar = settings.SYSTEM_AVATAR_URL

    out = schemas.ChatSessionOut(
        id=session.id,
        partner_id=partner_id,
        partner_name=partner_name,
        partner_avatar=partner_avatar,
        product_id=session.product_id,
        last_message=session.last_message,
        last_time=session.last_time,
        unread_count=unread_count(db, session.id, viewer_id),
    )
    if session.product_id is not None:
        product = find_product_by_id(db, session.product_id)
        if product is not None:
            out.product_title = product.title
            out.product_thumbnail = thumbnail_of(db, product.id)
            out.product_price = product.price
    return out


def list_sessions(db: Session, user_id: int) -> List[schemas.ChatSessionOut]:
    sessions = (
        db.query(models.ChatSession)
        .filter(or_(models.ChatSession.buyer_id == user_id, models.ChatSession.seller_id == user_id))
        .order_by(models.ChatSession.last_time.desc(), models.ChatSession.id.desc())
        .all()
    )
    return [to_session_out(db, s, user_id) for s in sessions]


def start_chat(db: Session, user_id: int, product_id: Optional[int]) -> schemas.ChatSessionOut:
    if product_id is None:
        raise Validation("product_id must not be empty")
    product = find_product_by_id(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.seller_id == user_id:
        raise Forbidden("You cannot start a chat with yourself")

    session = _find_or_create_session(db, user_id, product.seller_id, product.id)
    db.commit()
    return to_session_out(db, session, user_id)


def send_message(db: Session, session_id: int, user_id: int, content: Optional[str],
                 message_type: models.MessageType = models.MessageType.TEXT) -> schemas.ChatMessageOut:
    session = _require_session(db, session_id)
    if not _is_participant(session, user_id):
        raise Forbidden("You are not a participant of this chat")
    if content is None or not content.strip():
        raise Validation("Message content must not be blank")

    message = _append_message(db, session, user_id, content, message_type or models.MessageType.TEXT)
    db.commit()
    db.refresh(message)
    return to_message_out(message)


def list_messages(db: Session, session_id: int, user_id: int) -> List[schemas.ChatMessageOut]:
    session = _require_session(db, session_id)
    if not _is_participant(session, user_id):
        raise Forbidden("You are not allowed to view this chat")

    _mark_read(db, session.id, user_id)
    db.commit()

    messages = (
        db.query(models.ChatMessage)
        .filter(models.ChatMessage.session_id == session.id)
        .order_by(models.ChatMessage.created_at.asc(), models.ChatMessage.id.asc())
        .all()
    )
    return [to_message_out(m) for m in messages]


def mark_all_as_read(db: Session, user_id: int) -> int:
    session_ids = [
        row.id
        for row in db.query(models.ChatSession.id).filter(
            or_(models.ChatSession.buyer_id == user_id, models.ChatSession.seller_id == user_id)
        )
    ]
    flipped = 0
    for session_id in session_ids:
        flipped += _mark_read(db, session_id, user_id)
    db.commit()
    logger.info(f"Marked {flipped} messages read for user {user_id}")
    return flipped


def send_system_message_to_user(db: Session, target_user_id: int, content: Optional[str]) -> schemas.ChatMessageOut:
    """Post a platform notice into the target's system channel.

    Trusted callers only: the HTTP route in front of it requires an ADMIN.
    """
    if content is None or not content.strip():
        raise Validation("Message content must not be blank")
    if find_user_by_id(db, target_user_id) is None:
        raise NotFound("User not found")

    session = _find_or_create_session(db, target_user_id, SYSTEM_USER_ID, None)
    message = _append_message(db, session, SYSTEM_USER_ID, content)
    db.commit()
    db.refresh(message)
    logger.info(f"System notice {message.id} sent to user {target_user_id}")
    return to_message_out(message)


def send_order_event_message(db: Session, buyer_id: int, seller_id: int, product_id: int, sender_id: int,
                             content: str) -> models.ChatMessage:
    """Notification bridge used by the order engine.

    Does not commit: the message lands in the caller's transaction together
    with the order transition that produced it.
    """
    session = _find_or_create_session(db, buyer_id, seller_id, product_id)
    message = _append_message(db, session, sender_id, content)
    logger.info(f"Order event message posted to session {session.id} by user {sender_id}")
    return message
