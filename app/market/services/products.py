"""Catalog store: listings, their images, categories and the listing status machine."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from market import models, schemas
from market.exceptions import Forbidden, InvalidState, NotFound, Validation
from market.services.users import display_info

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}

_SORTS = {
    "latest": (models.Product.created_at.desc(), models.Product.id.desc()),
    "priceasc": (models.Product.price.asc(), models.Product.id.asc()),
    "pricedesc": (models.Product.price.desc(), models.Product.id.desc()),
    "viewdesc": (models.Product.view_count.desc(), models.Product.id.desc()),
}


def find_product_by_id(db: Session, product_id: int) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def find_images_by_product_id(db: Session, product_id: int) -> List[models.ProductImage]:
    return (
        db.query(models.ProductImage)
        .filter(models.ProductImage.product_id == product_id)
        .order_by(models.ProductImage.sort_order.asc(), models.ProductImage.id.asc())
        .all()
    )


def thumbnail_of(db: Session, product_id: int) -> Optional[str]:
    images = find_images_by_product_id(db, product_id)
    return images[0].url if images else None


def get_or_create_category(db: Session, name: str) -> models.Category:
    """Upsert a category by its unique name and return the stored row.

    Concurrent writers may race on the same name; the unique constraint plus
    ``ON CONFLICT DO NOTHING`` leaves exactly one row either way.
    """
    name = name.strip()
    insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(models.Category).values(name=name).on_conflict_do_nothing(index_elements=["name"])
        db.execute(stmt)
    elif db.query(models.Category).filter(models.Category.name == name).first() is None:
        try:
            with db.begin_nested():
                db.add(models.Category(name=name))
        except IntegrityError:
            logger.info(f"Category {name!r} created concurrently, reusing it")
    return db.query(models.Category).filter(models.Category.name == name).one()


def _resolve_category_id(db: Session, request: schemas.ProductCreate) -> Optional[int]:
    if request.category_id is not None:
        return request.category_id
    if request.category_name is not None and request.category_name.strip():
        return get_or_create_category(db, request.category_name).id
    return None


def _replace_images(db: Session, product_id: int, urls: List[str]):
    db.query(models.ProductImage).filter(models.ProductImage.product_id == product_id).delete(
        synchronize_session=False
    )
    sort = 0
    for url in urls:
        if url is None or not url.strip():
            continue
        db.add(models.ProductImage(product_id=product_id, url=url, sort_order=sort))
        sort += 1


def _require_owned(db: Session, product_id: int, seller_id: int) -> models.Product:
    product = find_product_by_id(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.seller_id != seller_id:
        raise Forbidden("You are not allowed to modify this product")
    return product


def _require_listed(product: models.Product):
    # DELETED is terminal
    if product.status == models.ProductStatus.DELETED:
        raise InvalidState("Product has been deleted")


def to_list_item(db: Session, product: models.Product) -> schemas.ProductListItem:
    seller_name, seller_avatar = display_info(db, product.seller_id)
    return schemas.ProductListItem(
        id=product.id,
        title=product.title,
        description=product.description,
        price=product.price,
        thumbnail=thumbnail_of(db, product.id),
        location=product.location,
        created_at=product.created_at,
        status=product.status,
        view_count=product.view_count or 0,
        seller_id=product.seller_id,
        seller_name=seller_name,
        seller_avatar=seller_avatar,
    )


def get_detail(db: Session, product_id: int) -> schemas.ProductOut:
    product = find_product_by_id(db, product_id)
    if product is None:
        raise NotFound("Product not found")

    seller_name, seller_avatar = display_info(db, product.seller_id)
    return schemas.ProductOut(
        id=product.id,
        title=product.title,
        price=product.price,
        original_price=product.original_price,
        description=product.description,
        category_id=product.category_id,
        category_name=product.category.name if product.category is not None else None,
        status=product.status,
        location=product.location,
        created_at=product.created_at,
        images=[image.url for image in find_images_by_product_id(db, product.id)],
        view_count=product.view_count or 0,
        seller_id=product.seller_id,
        seller_name=seller_name,
        seller_avatar=seller_avatar,
    )


def create_product(db: Session, seller_id: int, request: schemas.ProductCreate) -> schemas.ProductOut:
    if request.title is None or not request.title.strip():
        raise Validation("title must not be blank")
    if request.description is None or not request.description.strip():
        raise Validation("description must not be blank")
    if request.price is None:
        raise Validation("price is required")

    now = datetime.utcnow()
    product = models.Product(
        seller_id=seller_id,
        title=request.title,
        description=request.description,
        price=request.price,
        original_price=request.original_price,
        location=request.location,
        category_id=_resolve_category_id(db, request),
        status=models.ProductStatus.ON_SALE,
        view_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(product)
    db.flush()

    if request.image_urls:
        _replace_images(db, product.id, request.image_urls)

    db.commit()
    logger.info(f"Product {product.id} listed by seller {seller_id}")
    return get_detail(db, product.id)


def update_product(db: Session, product_id: int, seller_id: int,
                   request: schemas.ProductUpdate) -> schemas.ProductOut:
    product = _require_owned(db, product_id, seller_id)
    _require_listed(product)

    if request.title is not None and request.title.strip():
        product.title = request.title
    if request.description is not None and request.description.strip():
        product.description = request.description
    if request.price is not None:
        product.price = request.price
    if request.original_price is not None:
        product.original_price = request.original_price

    category_id = _resolve_category_id(db, request)
    if category_id is not None:
        product.category_id = category_id

    if request.location is not None:
        product.location = request.location

    product.updated_at = datetime.utcnow()

    if request.image_urls is not None:
        _replace_images(db, product.id, request.image_urls)

    db.commit()
    db.refresh(product)
    return get_detail(db, product_id)


def update_status(db: Session, product_id: int, seller_id: int, status: str) -> schemas.ProductOut:
    product = _require_owned(db, product_id, seller_id)

    try:
        target = models.ProductStatus((status or "").strip().upper())
    except ValueError:
        raise Validation(f"Unsupported product status: {status}")
    if target not in models.SELLER_SETTABLE_STATUSES:
        raise Validation(f"Unsupported product status: {status}")
    if target != models.ProductStatus.DELETED:
        _require_listed(product)

    product.status = target
    product.updated_at = datetime.utcnow()
    db.commit()
    logger.info(f"Product {product_id} status set to {target.value} by seller {seller_id}")
    return get_detail(db, product_id)


def soft_delete_product(db: Session, product_id: int, seller_id: int):
    product = _require_owned(db, product_id, seller_id)
    product.status = models.ProductStatus.DELETED
    product.updated_at = datetime.utcnow()
    db.commit()
    logger.info(f"Product {product_id} soft-deleted by seller {seller_id}")


def increase_view_count(db: Session, product_id: int):
    updated = (
        db.query(models.Product)
        .filter(models.Product.id == product_id)
        .update(
            {
                models.Product.view_count: models.Product.view_count + 1,
                models.Product.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated > 0


def list_latest(db: Session, limit: int = 8) -> List[schemas.ProductListItem]:
    products = (
        db.query(models.Product)
        .filter(models.Product.status == models.ProductStatus.ON_SALE)
        .order_by(models.Product.created_at.desc(), models.Product.id.desc())
        .limit(limit)
        .all()
    )
    return [to_list_item(db, p) for p in products]


def list_products(db: Session, category_id: Optional[int] = None, keyword: Optional[str] = None,
                  sort: str = "latest", page: int = 0, size: int = 20) -> schemas.Page[schemas.ProductListItem]:
    query = db.query(models.Product).filter(models.Product.status != models.ProductStatus.DELETED)

    if category_id is not None:
        query = query.filter(models.Product.category_id == category_id)
    if keyword is not None and keyword.strip():
        query = query.filter(func.lower(models.Product.title).contains(keyword.strip().lower(), autoescape=True))

    total = query.count()
    order_by = _SORTS.get((sort or "latest").lower(), _SORTS["latest"])
    products = query.order_by(*order_by).offset(page * size).limit(size).all()

    return schemas.Page[schemas.ProductListItem](
        items=[to_list_item(db, p) for p in products], total=total, page=page, size=size
    )


def _parse_status_filter(status: Optional[str]):
    """None means unfiltered; an unknown name yields False so the caller returns nothing."""
    if status is None or not status.strip() or status.strip().upper() == "ALL":
        return None
    try:
        return models.ProductStatus(status.strip().upper())
    except ValueError:
        return False


def list_by_seller(db: Session, seller_id: int, status: Optional[str] = None, page: int = 0,
                   size: int = 20) -> schemas.Page[schemas.ProductListItem]:
    wanted = _parse_status_filter(status)
    if wanted is False:
        return schemas.Page[schemas.ProductListItem](items=[], total=0, page=page, size=size)

    query = db.query(models.Product).filter(models.Product.seller_id == seller_id)
    if wanted is None:
        query = query.filter(models.Product.status != models.ProductStatus.DELETED)
    else:
        query = query.filter(models.Product.status == wanted)

    total = query.count()
    products = (
        query.order_by(models.Product.created_at.desc(), models.Product.id.desc())
        .offset(page * size)
        .limit(size)
        .all()
    )
    return schemas.Page[schemas.ProductListItem](
        items=[to_list_item(db, p) for p in products], total=total, page=page, size=size
    )


def count_by_seller(db: Session, seller_id: int, status: models.ProductStatus) -> int:
    return (
        db.query(func.count(models.Product.id))
        .filter(models.Product.seller_id == seller_id, models.Product.status == status)
        .scalar()
    )


def list_categories(db: Session) -> List[schemas.CategoryOut]:
    categories = db.query(models.Category).order_by(models.Category.id.asc()).all()
    return [schemas.CategoryOut(id=c.id, name=c.name) for c in categories]
