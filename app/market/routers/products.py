from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from market.database import get_db
from market import schemas, models
from market.auth import get_current_user
from market.services import products

router = APIRouter()

@router.get("/products/latest", response_model=List[schemas.ProductListItem])
async def latest_products(limit: int = Query(8, ge=1, le=50), db: Session = Depends(get_db)):
    return products.list_latest(db, limit)

@router.get("/products", response_model=schemas.Page[schemas.ProductListItem])
async def list_products(
    category_id: Optional[int] = None,
    keyword: Optional[str] = None,
    sort: str = "latest",
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    return products.list_products(db, category_id, keyword, sort, page, size)

@router.get("/products/{product_id}", response_model=schemas.ProductOut)
async def get_product(product_id: int, db: Session = Depends(get_db)):
    return products.get_detail(db, product_id)

@router.post("/products/{product_id}/view", status_code=status.HTTP_204_NO_CONTENT)
async def view_product(product_id: int, db: Session = Depends(get_db)):
    products.increase_view_count(db, product_id)
    return None

@router.post("/products", response_model=schemas.ProductOut)
async def create_product(
    product: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return products.create_product(db, current_user.id, product)

@router.put("/products/{product_id}", response_model=schemas.ProductOut)
async def update_product(
    product_id: int,
    product_data: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return products.update_product(db, product_id, current_user.id, product_data)

@router.patch("/products/{product_id}/status", response_model=schemas.ProductOut)
async def update_product_status(
    product_id: int,
    body: schemas.ProductStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return products.update_status(db, product_id, current_user.id, body.status)

@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    products.soft_delete_product(db, product_id, current_user.id)
    return None

@router.get("/categories", response_model=List[schemas.CategoryOut])
async def list_categories(db: Session = Depends(get_db)):
    return products.list_categories(db)
