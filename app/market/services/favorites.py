import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market import models, schemas
from market.exceptions import InvalidState, NotFound
from market.services.products import find_product_by_id, to_list_item

logger = logging.getLogger(__name__)


def _find(db: Session, user_id: int, product_id: int):
    return (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user_id, models.Favorite.product_id == product_id)
        .first()
    )


def add_favorite(db: Session, user_id: int, product_id: int):
    if _find(db, user_id, product_id) is not None:
        return

    product = find_product_by_id(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.status == models.ProductStatus.DELETED:
        raise InvalidState("Product has been deleted")

    db.add(models.Favorite(user_id=user_id, product_id=product_id))
    try:
        db.commit()
    except IntegrityError:
        # lost a race with an identical request; the pair already exists
        db.rollback()
        return
    logger.info(f"User {user_id} favorited product {product_id}")


def remove_favorite(db: Session, user_id: int, product_id: int):
    favorite = _find(db, user_id, product_id)
    if favorite is None:
        return
    db.delete(favorite)
    db.commit()


def list_my_favorites(db: Session, user_id: int) -> List[schemas.ProductListItem]:
    rows = (
        db.query(models.Product)
        .join(models.Favorite, models.Favorite.product_id == models.Product.id)
        .filter(models.Favorite.user_id == user_id, models.Product.status != models.ProductStatus.DELETED)
        .order_by(models.Favorite.created_at.desc(), models.Favorite.id.desc())
        .all()
    )
    return [to_list_item(db, product) for product in rows]
