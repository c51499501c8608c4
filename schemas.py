"""
Request payload shapes.

Each model validates one JSON body before it reaches the storage. Field
aliases follow the camelCase wire format used by the web client.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import InvalidInput
from models import MAX_ID


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class UserCreate(_Payload):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    display_name: Optional[str] = Field(None, alias="displayName", max_length=120)
    avatar: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None


class LoginRequest(_Payload):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class VideoCreate(_Payload):
    user_id: Optional[int] = Field(None, alias="userId")
    category_id: Optional[int] = Field(None, alias="categoryId", ge=1, le=MAX_ID)
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    thumbnail_url: Optional[str] = Field(None, alias="thumbnailUrl", max_length=500)
    video_url: str = Field(..., alias="videoUrl", min_length=1, max_length=500)
    duration: Optional[int] = Field(None, ge=0, le=MAX_ID)


class CommentCreate(_Payload):
    video_id: int = Field(..., alias="videoId")
    user_id: int = Field(..., alias="userId")
    content: str = Field(..., min_length=1, max_length=5000)
    parent_id: Optional[int] = Field(None, alias="parentId", ge=1, le=MAX_ID)


class SubscriptionCreate(_Payload):
    subscriber_id: int = Field(..., alias="subscriberId")
    publisher_id: int = Field(..., alias="publisherId")


class CategoryCreate(_Payload):
    name: str = Field(..., min_length=1, max_length=120)


def parse(schema, data, message="Invalid data"):
    """Validate ``data`` against ``schema``; details stay out of the response."""
    try:
        return schema.model_validate(data or {})
    except ValidationError:
        raise InvalidInput(message)
