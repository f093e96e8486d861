"""Order engine.

Orders move ``PENDING -> SHIPPED -> DONE`` with a ``PENDING -> DONE`` shortcut
for buyers who confirm without a shipping step (see
``models.ORDER_TRANSITIONS``). Every transition checks the caller's identity
before the order's status, then writes the new status with a conditional
UPDATE on the current one so two concurrent requests cannot both win.

Each operation commits once: the order row, the product SOLD flip and the
chat notification are applied together or not at all.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from market import models, schemas
from market.exceptions import Forbidden, InvalidState, NotFound, Validation
from market.services import chat
from market.services.products import find_product_by_id, thumbnail_of
from market.services.users import display_info

logger = logging.getLogger(__name__)

ORDER_PLACED_MESSAGE = "I've placed an order, please ship soon~"
ORDER_SHIPPED_MESSAGE = "I've shipped the item, please watch for it~"
ORDER_DONE_MESSAGE = "I've received the item, this deal is complete~"


def find_order_by_id(db: Session, order_id: int) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def _require_order(db: Session, order_id: int) -> models.Order:
    order = find_order_by_id(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def _transition(db: Session, order: models.Order, target: models.OrderStatus):
    if not models.can_transition(order.status, target):
        raise InvalidState(f"Order in status {order.status.value} cannot move to {target.value}")

    updated = (
        db.query(models.Order)
        .filter(models.Order.id == order.id, models.Order.status.in_(list(models.order_sources(target))))
        .update(
            {models.Order.status: target, models.Order.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if updated == 0:
        # another request changed the status between our read and write
        db.rollback()
        raise InvalidState(f"Order {order.id} was modified concurrently")
    db.refresh(order)


def _mark_product_sold(db: Session, product_id: int) -> bool:
    updated = (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.status != models.ProductStatus.SOLD)
        .update(
            {models.Product.status: models.ProductStatus.SOLD, models.Product.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    return updated > 0


def to_order_out(db: Session, order: models.Order) -> schemas.OrderOut:
    buyer_name, buyer_avatar = display_info(db, order.buyer_id)
    seller_name, seller_avatar = display_info(db, order.seller_id)
    out = schemas.OrderOut(
        id=order.id,
        status=order.status,
        product_id=order.product_id,
        buyer_id=order.buyer_id,
        buyer_name=buyer_name,
        buyer_avatar=buyer_avatar,
        seller_id=order.seller_id,
        seller_name=seller_name,
        seller_avatar=seller_avatar,
        price=order.price_snapshot,
        meet_location=order.meet_location,
        meet_time=order.meet_time,
        created_at=order.created_at,
    )
    product = find_product_by_id(db, order.product_id)
    if product is not None:
        out.product_title = product.title
        out.product_image = thumbnail_of(db, product.id)
    return out


def create_order(db: Session, buyer_id: int, product_id: Optional[int]) -> schemas.OrderOut:
    if product_id is None:
        raise Validation("product_id must not be empty")

    product = find_product_by_id(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.seller_id == buyer_id:
        raise Forbidden("You cannot buy your own product")
    if product.status != models.ProductStatus.ON_SALE:
        raise InvalidState("This product is not available for purchase")

    now = datetime.utcnow()
    order = models.Order(
        buyer_id=buyer_id,
        seller_id=product.seller_id,
        product_id=product.id,
        price_snapshot=product.price,
        meet_location=product.location,
        status=models.OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    db.flush()

    chat.send_order_event_message(db, order.buyer_id, order.seller_id, order.product_id,
                                  order.buyer_id, ORDER_PLACED_MESSAGE)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.id} created: buyer {buyer_id}, product {product_id}, price {order.price_snapshot}")
    return to_order_out(db, order)


def ship_order(db: Session, user_id: int, order_id: int) -> schemas.OrderOut:
    order = _require_order(db, order_id)
    if order.seller_id != user_id:
        raise Forbidden("Only the seller can ship this order")

    _transition(db, order, models.OrderStatus.SHIPPED)
    chat.send_order_event_message(db, order.buyer_id, order.seller_id, order.product_id,
                                  order.seller_id, ORDER_SHIPPED_MESSAGE)
    db.commit()
    logger.info(f"Order {order.id} shipped by seller {user_id}")
    return to_order_out(db, order)


def confirm_receive(db: Session, user_id: int, order_id: int) -> schemas.OrderOut:
    order = _require_order(db, order_id)
    if order.buyer_id != user_id:
        raise Forbidden("Only the buyer can confirm receipt")

    _transition(db, order, models.OrderStatus.DONE)
    if _mark_product_sold(db, order.product_id):
        logger.info(f"Product {order.product_id} marked SOLD by order {order.id}")
    chat.send_order_event_message(db, order.buyer_id, order.seller_id, order.product_id,
                                  order.buyer_id, ORDER_DONE_MESSAGE)
    db.commit()
    logger.info(f"Order {order.id} completed by buyer {user_id}")
    return to_order_out(db, order)


def list_my_orders(db: Session, user_id: int, role: Optional[str] = None,
                   status: Optional[str] = None) -> List[schemas.OrderOut]:
    query = db.query(models.Order)
    if (role or "BUY").strip().upper() == "SELL":
        query = query.filter(models.Order.seller_id == user_id)
    else:
        query = query.filter(models.Order.buyer_id == user_id)

    if status is not None and status.strip() and status.strip().upper() != "ALL":
        try:
            wanted = models.OrderStatus(status.strip().upper())
        except ValueError:
            return []
        query = query.filter(models.Order.status == wanted)

    orders = query.order_by(models.Order.created_at.desc(), models.Order.id.desc()).all()
    return [to_order_out(db, o) for o in orders]


def get_order_detail(db: Session, user_id: int, order_id: int) -> schemas.OrderOut:
    order = _require_order(db, order_id)
    if user_id not in (order.buyer_id, order.seller_id):
        raise Forbidden("You are not allowed to view this order")
    return to_order_out(db, order)
