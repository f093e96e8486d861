from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from market.database import get_db
from market import schemas, models
from market.auth import get_current_user
from market.services import products, users

router = APIRouter(prefix="/users")

@router.get("/me", response_model=schemas.UserProfileOut)
async def read_my_profile(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return users.build_profile(db, current_user)

@router.put("/me", response_model=schemas.UserProfileOut)
async def update_my_profile(
    body: schemas.UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return users.update_profile(db, current_user, body)

@router.get("/me/products", response_model=schemas.Page[schemas.ProductListItem])
async def read_my_products(
    status: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return products.list_by_seller(db, current_user.id, status, page, size)

@router.get("/{user_id}", response_model=schemas.UserProfileOut)
async def read_profile(user_id: int, db: Session = Depends(get_db)):
    return users.get_profile(db, user_id)

@router.get("/{user_id}/products", response_model=schemas.Page[schemas.ProductListItem])
async def read_user_products(
    user_id: int,
    status: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    # 404 для несуществующего пользователя
    users.get_profile(db, user_id)
    return products.list_by_seller(db, user_id, status, page, size)
