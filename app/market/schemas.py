from pydantic import BaseModel, Field
from typing import Optional, List, Generic, TypeVar
from datetime import datetime

from market.models import MessageType, OrderStatus, ProductStatus

T = TypeVar("T")

# Auth

class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    password: str = Field(min_length=1)
    nickname: str = Field(min_length=1, max_length=50)

class LoginRequest(BaseModel):
    username_or_phone: str = Field(min_length=1)
    password: str = Field(min_length=1)

class ResetPasswordRequest(BaseModel):
    username: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=50)

class AuthResponse(BaseModel):
    access_token: Optional[str] = None
    token_type: str = "bearer"
    user_id: int
    username: str
    nickname: str
    role: str

# Users

class UpdateProfileRequest(BaseModel):
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None
    major: Optional[str] = None
    grade: Optional[str] = None
    campus: Optional[str] = None
    bio: Optional[str] = None

class UserProfileOut(BaseModel):
    id: int
    username: str
    nickname: str
    avatar_url: Optional[str] = None
    major: Optional[str] = None
    grade: Optional[str] = None
    campus: Optional[str] = None
    credit: Optional[int] = None
    bio: Optional[str] = None
    join_at: Optional[datetime] = None
    selling_count: int = 0
    sold_count: int = 0

# Products

class CategoryOut(BaseModel):
    id: int
    name: str

class ProductCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    location: Optional[str] = None
    image_urls: Optional[List[str]] = None

class ProductUpdate(ProductCreate):
    pass

class ProductStatusUpdate(BaseModel):
    status: str

class ProductListItem(BaseModel):
    id: int
    title: str
    description: str
    price: float
    thumbnail: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime
    status: ProductStatus
    view_count: int
    seller_id: int
    seller_name: Optional[str] = None
    seller_avatar: Optional[str] = None

class ProductOut(BaseModel):
    id: int
    title: str
    price: float
    original_price: Optional[float] = None
    description: str
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    status: ProductStatus
    location: Optional[str] = None
    created_at: datetime
    images: List[str] = []
    view_count: int
    seller_id: int
    seller_name: Optional[str] = None
    seller_avatar: Optional[str] = None

class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    size: int

# Orders

class OrderCreate(BaseModel):
    product_id: Optional[int] = None

class OrderOut(BaseModel):
    id: int
    status: OrderStatus
    product_id: int
    product_title: Optional[str] = None
    product_image: Optional[str] = None
    buyer_id: int
    buyer_name: Optional[str] = None
    buyer_avatar: Optional[str] = None
    seller_id: int
    seller_name: Optional[str] = None
    seller_avatar: Optional[str] = None
    price: float
    meet_location: Optional[str] = None
    meet_time: Optional[datetime] = None
    created_at: datetime

# Chat

class StartChatRequest(BaseModel):
    product_id: Optional[int] = None

class SendMessageRequest(BaseModel):
    type: MessageType = MessageType.TEXT
    content: Optional[str] = None

class SystemNotificationRequest(BaseModel):
    user_id: int
    content: Optional[str] = None

class ChatMessageOut(BaseModel):
    id: int
    sender_id: int
    type: MessageType
    content: str
    read: bool
    created_at: datetime

class ChatSessionOut(BaseModel):
    id: int
    partner_id: int
    partner_name: Optional[str] = None
    partner_avatar: Optional[str] = None
    product_id: Optional[int] = None
    product_title: Optional[str] = None
    product_thumbnail: Optional[str] = None
    product_price: Optional[float] = None
    last_message: Optional[str] = None
    last_time: Optional[datetime] = None
    unread_count: int = 0
