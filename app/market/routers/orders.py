from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from market.database import get_db
from market import schemas, models
from market.auth import get_current_user
from market.services import orders

router = APIRouter(prefix="/orders")

@router.post("", response_model=schemas.OrderOut)
async def create_order(
    body: schemas.OrderCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return orders.create_order(db, current_user.id, body.product_id)

@router.get("/me", response_model=List[schemas.OrderOut])
async def list_my_orders(
    role: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return orders.list_my_orders(db, current_user.id, role, status)

@router.get("/{order_id}", response_model=schemas.OrderOut)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return orders.get_order_detail(db, current_user.id, order_id)

@router.post("/{order_id}/ship", response_model=schemas.OrderOut)
async def ship_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return orders.ship_order(db, current_user.id, order_id)

@router.post("/{order_id}/confirm", response_model=schemas.OrderOut)
async def confirm_receive(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return orders.confirm_receive(db, current_user.id, order_id)
