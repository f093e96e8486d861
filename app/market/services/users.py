"""Identity store: accounts, credentials and profile records."""
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from market import auth, models, schemas
from market.exceptions import NotFound, Validation

logger = logging.getLogger(__name__)


def find_user_by_id(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def find_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def find_user_by_phone(db: Session, phone: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.phone == phone).first()


def find_profile_by_user_id(db: Session, user_id: int) -> Optional[models.UserProfile]:
    return db.query(models.UserProfile).filter(models.UserProfile.user_id == user_id).first()


def display_info(db: Session, user_id: int) -> Tuple[Optional[str], Optional[str]]:
    """Nickname and avatar for denormalized views; ``(None, None)`` without a profile."""
    profile = find_profile_by_user_id(db, user_id)
    if profile is None:
        return None, None
    return profile.nickname, profile.avatar_url


def nickname_of(db: Session, user: models.User) -> str:
    profile = find_profile_by_user_id(db, user.id)
    return profile.nickname if profile is not None else user.username


def register(db: Session, request: schemas.RegisterRequest) -> models.User:
    username = request.username.strip()
    nickname = request.nickname.strip()
    phone = request.phone.strip() if request.phone and request.phone.strip() else None
    if not username or not nickname or not request.password.strip():
        raise Validation("username, password and nickname are required")

    if find_user_by_username(db, username) is not None:
        raise Validation("Username already registered")
    if phone is not None and find_user_by_phone(db, phone) is not None:
        raise Validation("Phone number already registered")

    user = models.User(
        username=username,
        phone=phone,
        password_hash=auth.get_password_hash(request.password),
        role=models.UserRole.USER,
        enabled=True,
    )
    db.add(user)
    db.flush()

    db.add(models.UserProfile(user_id=user.id, nickname=nickname))
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.id} ({user.username})")
    return user


def authenticate(db: Session, username_or_phone: str, password: str) -> Optional[models.User]:
    """Username first, then phone. Returns None on any credential mismatch."""
    user = find_user_by_username(db, username_or_phone) or find_user_by_phone(db, username_or_phone)
    if user is None or not auth.verify_password(password, user.password_hash):
        return None
    if not user.enabled:
        logger.warning(f"Login attempt for disabled user {user.id}")
        return None
    return user


def reset_password(db: Session, request: schemas.ResetPasswordRequest):
    user = find_user_by_username(db, request.username)
    if user is None:
        raise NotFound("Username is not registered")
    if user.phone is None or user.phone != request.phone:
        raise Validation("Phone number does not match the registered one")

    user.password_hash = auth.get_password_hash(request.new_password)
    db.commit()
    logger.info(f"Password reset for user {user.id}")


def build_profile(db: Session, user: models.User) -> schemas.UserProfileOut:
    # imported here: products imports this module for display_info
    from market.services import products

    profile = find_profile_by_user_id(db, user.id)
    out = schemas.UserProfileOut(
        id=user.id,
        username=user.username,
        nickname=profile.nickname if profile is not None else user.username,
        selling_count=products.count_by_seller(db, user.id, models.ProductStatus.ON_SALE),
        sold_count=products.count_by_seller(db, user.id, models.ProductStatus.SOLD),
    )
    if profile is not None:
        out.avatar_url = profile.avatar_url
        out.major = profile.major
        out.grade = profile.grade
        out.campus = profile.campus
        out.credit = profile.credit
        out.bio = profile.bio
        out.join_at = profile.created_at
    return out


def get_profile(db: Session, user_id: int) -> schemas.UserProfileOut:
    user = find_user_by_id(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return build_profile(db, user)


def update_profile(db: Session, user: models.User, request: schemas.UpdateProfileRequest) -> schemas.UserProfileOut:
    profile = find_profile_by_user_id(db, user.id)
    if profile is None:
        profile = models.UserProfile(user_id=user.id, nickname=user.username)
        db.add(profile)

    if request.nickname is not None and request.nickname.strip():
        profile.nickname = request.nickname.strip()
    for field in ("avatar_url", "major", "grade", "campus", "bio"):
        value = getattr(request, field)
        if value is not None:
            setattr(profile, field, value)

    db.commit()
    return build_profile(db, user)
