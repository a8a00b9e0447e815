"""
Database Schemas for the Novel Reading Platform

Each Pydantic model corresponds to a MongoDB collection (lowercased class name):
- User -> "user"
- Novel -> "novel"
- Chapter -> "chapter"
- Comment -> "comment"
- Review -> "review"
- Notification -> "notification"
- Interaction -> "interaction"
- Image -> "image"
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UserRole(str, Enum):
    USER = "USER"
    AUTHOR = "AUTHOR"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BANNED = "BANNED"


class NovelStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    HIATUS = "HIATUS"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    NEW_CHAPTER = "NEW_CHAPTER"
    COMMENT_REPLY = "COMMENT_REPLY"
    NEW_REVIEW = "NEW_REVIEW"
    SYSTEM = "SYSTEM"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    username: str = Field(..., min_length=3, description="Login name")
    email: str = Field(..., description="Unique email address")
    password: str = Field(..., description="PBKDF2 hash, never the raw password")
    roles: List[UserRole] = Field(default_factory=lambda: [UserRole.USER])
    status: UserStatus = Field(UserStatus.ACTIVE)
    avatar_url: Optional[str] = Field(None, description="Profile image URL")
    background_url: Optional[str] = None
    author_name: Optional[str] = Field(None, description="Pen name once upgraded to author")
    bio: Optional[str] = None
    display_name: Optional[str] = Field(None, description="Public-facing name; defaults to username")


class Novel(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    title: str = Field(..., description="Novel title")
    description: str = Field("", description="Short synopsis")
    author_name: str = Field(..., description="Author's display name")
    author_id: Optional[str] = Field(None, description="Owning user id")
    cover_image: Optional[str] = Field(None, description="Cover image URL")
    categories: List[str] = Field(default_factory=list, description="High-level categories")
    status: NovelStatus = Field(NovelStatus.DRAFT)
    is_r18: bool = False
    view_count: int = 0
    follow_count: int = 0
    comment_count: int = 0
    rating: float = 0.0
    rating_count: int = 0
    word_count: int = 0
    chapter_count: int = 0


class Chapter(BaseModel):
    novel_id: str = Field(..., description="Parent novel id")
    chapter_title: str = Field(..., description="Chapter title")
    chapter_number: int = Field(..., ge=1, description="Sequential number (1-based)")
    content: str = Field(..., description="Markdown or text content")
    word_count: int = 0
    view_count: int = 0


class Comment(BaseModel):
    novel_id: str = Field(..., description="Target novel id")
    user_id: str = Field(..., description="Commenter id")
    username: str = Field(..., description="Commenter's name at time of posting")
    content: str = Field(..., min_length=1, description="Comment text")
    chapter_id: Optional[str] = None
    parent_id: Optional[str] = Field(None, description="Parent comment id for replies")
    reply_count: int = 0


REVIEW_CATEGORIES = (
    "writing_quality",
    "stability_of_updates",
    "story_development",
    "character_design",
    "world_background",
)


class Review(BaseModel):
    user_id: str
    novel_id: str
    overall_rating: float = Field(..., ge=1.0, le=5.0)
    writing_quality: int = Field(..., ge=1, le=5)
    stability_of_updates: int = Field(..., ge=1, le=5)
    story_development: int = Field(..., ge=1, le=5)
    character_design: int = Field(..., ge=1, le=5)
    world_background: int = Field(..., ge=1, le=5)
    review_text: str = Field(..., min_length=1)
    word_count: int = 0
    chapters_read_when_reviewed: int = 0
    total_chapters_at_review: int = 0

    @model_validator(mode="before")
    @classmethod
    def derive_overall_and_words(cls, values):
        if isinstance(values, dict):
            ratings = [values.get(k) for k in REVIEW_CATEGORIES]
            if values.get("overall_rating") is None and all(isinstance(r, int) for r in ratings):
                values["overall_rating"] = round(sum(ratings) / len(ratings), 2)
            if not values.get("word_count"):
                values["word_count"] = len(str(values.get("review_text") or "").split())
        return values


class Notification(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: str = Field(..., description="Recipient")
    type: NotificationType = NotificationType.SYSTEM
    title: str
    message: str
    read: bool = False
    entity_id: Optional[str] = None
    entity_type: Optional[str] = Field(None, description="NOVEL | CHAPTER | COMMENT | REVIEW")
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    link: Optional[str] = None


class Interaction(BaseModel):
    user_id: str
    novel_id: str
    has_following: bool = False
    in_wishlist: bool = False
    notify: bool = False
    current_chapter_number: Optional[int] = None
    current_chapter_id: Optional[str] = None
    last_read_at: Optional[datetime] = None
    total_chapter_reads: int = 0


class Image(BaseModel):
    original_filename: str
    content_type: str
    file_size: int = Field(..., ge=0)
    storage_key: str = Field(..., description="Key in the external blob store")
    owner_id: str
    owner_type: str = Field(..., description="USER | NOVEL | CHAPTER")
    active: bool = True
