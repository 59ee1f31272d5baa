"""
Database Schemas for Product Review Manager

Each Pydantic model describes a stored document. Reviews and products are both
kept in the "posts" collection and told apart by their `type` field; users live
in "users" and the settings record is stored as an option.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PositiveInt, field_validator

POSTS = "posts"
USERS = "users"

REVIEW_TYPE = "product_review"
PRODUCT_TYPE = "product"

PostStatus = Literal["publish", "draft"]
Role = Literal["administrator", "editor", "subscriber"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Dates without an offset are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password (bcrypt)")
    role: Role = Field("subscriber", description="administrator | editor | subscriber")


class Product(BaseModel):
    type: Literal["product"] = PRODUCT_TYPE
    title: str = Field(..., min_length=1, max_length=200)
    slug: str
    status: PostStatus = "publish"
    date: datetime = Field(default_factory=utcnow)


class ReviewMeta(BaseModel):
    product_id: Optional[int] = Field(None, description="The ID of the product being reviewed")
    rating: Optional[float] = Field(None, ge=0, le=5, description="The rating given in the review (1-5)")
    reviewer_name: Optional[str] = Field(None, description="The name of the reviewer")


class Review(BaseModel):
    type: Literal["product_review"] = REVIEW_TYPE
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field("", max_length=20000)
    slug: str
    status: PostStatus = "publish"
    date: datetime = Field(default_factory=utcnow)
    thumbnail: Optional[str] = Field(None, description="URL to thumbnail image")
    categories: List[PositiveInt] = Field(default_factory=list)
    tags: List[PositiveInt] = Field(default_factory=list)
    author_id: Optional[int] = None
    meta: ReviewMeta = Field(default_factory=ReviewMeta)

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        return as_utc(value)


class SettingsRecord(BaseModel):
    """The plugin's single settings object."""
    model_config = ConfigDict(extra="forbid")

    setting1: str = Field("", description="Setting 1")
    setting2: str = Field("", description="Setting 2")
