from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
import logging

from market.database import get_db
from market import schemas, models, auth
from market.auth import limiter
from market.config import settings
from market.services import users

router = APIRouter(prefix="/auth")
logger = logging.getLogger(__name__)

def _auth_response(db: Session, user: models.User, token=None) -> schemas.AuthResponse:
    return schemas.AuthResponse(
        access_token=token,
        user_id=user.id,
        username=user.username,
        nickname=users.nickname_of(db, user),
        role=user.role.value,
    )

@router.post("/register", response_model=schemas.AuthResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(
    request: Request,
    body: schemas.RegisterRequest,
    db: Session = Depends(get_db)
):
    user = users.register(db, body)
    # Регистрация сразу выдает токен, клиент считает это входом
    return _auth_response(db, user, auth.create_access_token(user))

@router.post("/login", response_model=schemas.AuthResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(
    request: Request,
    body: schemas.LoginRequest,
    db: Session = Depends(get_db)
):
    user = users.authenticate(db, body.username_or_phone, body.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    logger.info(f"User {user.id} logged in")
    return _auth_response(db, user, auth.create_access_token(user))

@router.get("/me", response_model=schemas.AuthResponse)
async def me(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    return _auth_response(db, current_user)

@router.post("/reset-password")
async def reset_password(
    body: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    users.reset_password(db, body)
    return {"message": "Password reset successfully"}
