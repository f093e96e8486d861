import os

os.environ["DATABASE_URL"] = "sqlite:///./test_market.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient

from market.main import app
from market.database import Base, engine, SessionLocal
from market import auth, models


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(username, nickname=None, phone=None, password="secret123", role=models.UserRole.USER):
        user = models.User(
            username=username,
            phone=phone,
            password_hash=auth.get_password_hash(password),
            role=role,
            enabled=True,
        )
        db.add(user)
        db.flush()
        db.add(models.UserProfile(user_id=user.id, nickname=nickname or username.capitalize()))
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_product(db):
    def _make(seller, price=100.0, status=models.ProductStatus.ON_SALE, title="Desk lamp",
              location="North library", images=("https://img.example/lamp-1.jpg",)):
        product = models.Product(
            seller_id=seller.id,
            title=title,
            description=f"{title}, lightly used",
            price=price,
            status=status,
            location=location,
            view_count=0,
        )
        db.add(product)
        db.flush()
        for index, url in enumerate(images):
            db.add(models.ProductImage(product_id=product.id, url=url, sort_order=index))
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {auth.create_access_token(user)}"}
    return _headers
