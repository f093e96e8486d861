from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from market.database import get_db
from market import schemas, models
from market.auth import get_current_user
from market.services import favorites

router = APIRouter(prefix="/favorites")

@router.get("", response_model=List[schemas.ProductListItem])
async def list_my_favorites(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return favorites.list_my_favorites(db, current_user.id)

@router.post("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def add_favorite(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    favorites.add_favorite(db, current_user.id, product_id)
    return None

@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_favorite(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    favorites.remove_favorite(db, current_user.id, product_id)
    return None
