"""
Wire models used by the API client.

The server wraps every payload in `{success, message, data, timestamp, errors}`;
these models describe the `data` part. Unknown fields are ignored so older
clients keep working when the backend grows new attributes.
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Envelope(WireModel):
    success: bool = False
    message: str = ""
    data: Any = None
    errors: Optional[List[str]] = None


class UserSummary(WireModel):
    id: str = Field(..., min_length=1)
    username: str
    email: str
    roles: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    display_name: Optional[str] = None
    author_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class LoginData(WireModel):
    token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1, alias="refreshToken")
    user: UserSummary


class NovelDto(WireModel):
    id: str
    title: str
    description: str = ""
    author_name: str = ""
    author_id: Optional[str] = None
    cover_image: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    status: str = "DRAFT"
    is_r18: bool = False
    view_count: int = 0
    follow_count: int = 0
    comment_count: int = 0
    rating: float = 0.0
    rating_count: int = 0
    word_count: int = 0
    chapter_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChapterDto(WireModel):
    id: str
    novel_id: str
    chapter_title: str
    chapter_number: int
    content: str = ""
    word_count: int = 0
    view_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InteractionDto(WireModel):
    id: str
    user_id: str
    novel_id: str
    has_following: bool = False
    in_wishlist: bool = False
    notify: bool = False
    current_chapter_number: Optional[int] = None
    current_chapter_id: Optional[str] = None
    last_read_at: Optional[datetime] = None
    total_chapter_reads: int = 0


class Page(WireModel, Generic[T]):
    content: List[T] = Field(default_factory=list)
    page: int = 0
    size: int = 0
    total_elements: int = Field(0, alias="totalElements")
    total_pages: int = Field(0, alias="totalPages")


JsonDict = Dict[str, Any]
