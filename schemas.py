"""
Database Schemas for the Course Store

Each Pydantic model below describes the documents of one MongoDB collection.
Request and response models used by the API live at the bottom of the file.

Collections:
- accounts (credentials)
- users (profile: role, wishlist)
- courses
- transactions
- reviews
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"


class Account(BaseModel):
    """
    Credentials collection schema
    Collection: "accounts"
    """
    email: EmailStr = Field(..., description="Unique sign-in email")
    password_hash: str = Field(..., description="Password hash (not plain text)")
    display_name: Optional[str] = Field(None, description="Name given at registration")
    created_at: str = Field(..., description="Account creation time, ISO 8601")


class UserProfile(BaseModel):
    """
    Profile collection schema, keyed by account id
    Collection: "users"
    """
    username: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Email address")
    role: UserRole = Field(UserRole.USER, description="Role: user or admin")
    created_at: str = Field(..., description="Profile creation time, ISO 8601")
    wishlist: List[int] = Field(default_factory=list, description="Wishlisted course ids")


class User(BaseModel):
    id: str
    username: str
    email: str
    role: UserRole
    created_at: str
    wishlist: List[int] = Field(default_factory=list)


class CourseIn(BaseModel):
    name: str = Field(..., min_length=1, description="Course name, also the purchase key")
    description: str = Field("", description="Course description")
    price: float = Field(..., ge=0, description="Price in INR")
    image: Optional[str] = Field(None, description="Cover image URL")
    trailer_url: Optional[str] = Field(None, description="Trailer video URL")
    instructor: str = Field("", description="Instructor name")


class Course(CourseIn):
    """
    Courses collection schema, `_id` is the integer course id
    Collection: "courses"
    """
    id: int = Field(..., ge=1)
    image: str = ""


class TransactionDraft(BaseModel):
    user_id: Optional[str] = None
    customer_name: str
    payer_email: EmailStr
    transaction_id: str = Field(..., description="Payment reference supplied by the payer")
    courses: List[str] = Field(default_factory=list, description="Purchased course names")
    total_amount: float = Field(..., ge=0)


class Transaction(TransactionDraft):
    """
    Transactions collection schema
    Collection: "transactions"
    """
    id: str
    status: OrderStatus = OrderStatus.CONFIRMED
    timestamp: str


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class Review(ReviewIn):
    """
    Reviews collection schema
    Collection: "reviews"
    """
    course_id: int
    user_id: str
    user_name: str
    date: str


# Requests / responses

class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User


class CheckoutRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    transaction_id: str = Field(..., description="Bank/UPI reference of the payment")
    course_ids: List[int] = Field(..., min_length=1, description="Cart contents")


class CheckoutResponse(BaseModel):
    transaction: Transaction
    receipt_emailed: bool
    receipt_url: Optional[str] = None


class PriceUpdate(BaseModel):
    price: float = Field(..., ge=0)


class WishlistUpdate(BaseModel):
    wishlist: List[int]
    saved: bool


class ReviewList(BaseModel):
    reviews: List[Review]
    average_rating: float
    count: int


class CourseRevenue(BaseModel):
    name: str
    revenue: float


class SalesSummary(BaseModel):
    total_revenue: float
    total_orders: int
    average_order_value: float
    top_courses: List[CourseRevenue]
