import logging
import math
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import ReturnDocument
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import get_settings
from database import create_document, utcnow
from schemas import (
    Chapter,
    Comment,
    Image,
    Interaction,
    Notification,
    NotificationType,
    Novel,
    NovelStatus,
    Review,
    User,
    UserRole,
    UserStatus,
)
from security import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_token,
    ensure_self_or_admin,
    get_current_user,
    hash_password,
    is_admin,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Novel Reading API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

TOP_LIMIT = 10


# -------------------- Helpers --------------------

def col(name: str):
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return database.db[name]


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid ID format")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out = {**doc}
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    out.pop("password", None)
    for k, v in list(out.items()):
        if isinstance(v, ObjectId):
            out[k] = str(v)
    return out


def ok(data: Any = None, message: str = "Success") -> Dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": utcnow().isoformat(),
        "errors": None,
    }


def find_or_404(collection: str, doc_id: str, label: str) -> Dict[str, Any]:
    doc = col(collection).find_one({"_id": to_obj_id(doc_id)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def paginate(collection: str, filter_dict: Dict[str, Any], sort: List[tuple], page: int, size: int) -> Dict[str, Any]:
    total = col(collection).count_documents(filter_dict)
    cursor = col(collection).find(filter_dict).sort(sort).skip(page * size).limit(size)
    return {
        "content": [serialize(d) for d in cursor],
        "page": page,
        "size": size,
        "totalElements": total,
        "totalPages": math.ceil(total / size) if size else 0,
    }


def ensure_owner_or_admin(user: Dict[str, Any], owner_id: Optional[str]) -> None:
    if owner_id != str(user["_id"]) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Only the owner or an admin can do this")


def word_count(text: str) -> int:
    return len(text.split())


def login_payload(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "token": create_access_token(user),
        "refreshToken": create_refresh_token(user),
        "user": serialize(user),
    }


def touch(collection: str, doc_id: ObjectId, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply an update document, bump updated_at, and return the new document."""
    update = {**update}
    update.setdefault("$set", {})["updated_at"] = utcnow()
    return col(collection).find_one_and_update(
        {"_id": doc_id}, update, return_document=ReturnDocument.AFTER
    )


# -------------------- Errors --------------------

def error_response(status_code: int, message: str, errors: Optional[List[str]] = None,
                   headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    body = {
        "success": False,
        "message": message,
        "data": None,
        "timestamp": utcnow().isoformat(),
        "errors": errors,
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return error_response(400, "Validation failed", errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        500,
        "An unexpected error occurred",
        ["Please try again later or contact support if the problem persists"],
    )


# -------------------- Startup --------------------

@app.on_event("startup")
def ensure_admin_user() -> None:
    settings = get_settings()
    if database.db is None or not (settings.admin_username and settings.admin_password):
        return
    if database.db["user"].find_one({"username": settings.admin_username}):
        return
    admin = User(
        username=settings.admin_username,
        email=settings.admin_email or f"{settings.admin_username}@localhost",
        password=hash_password(settings.admin_password.get_secret_value()),
        roles=[UserRole.USER, UserRole.ADMIN],
    )
    create_document("user", admin)
    logger.info("Bootstrapped admin user %s", settings.admin_username)


# -------------------- Health --------------------

@app.get("/")
def read_root():
    return {"message": "Novel Reading Backend running"}


@app.get("/api/health")
def health():
    return ok({"status": "UP"}, "Service is healthy")


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name if hasattr(database.db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    settings = get_settings()
    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    return response


# -------------------- Schemas (Requests) --------------------

def reject_null(value):
    # partial updates may omit a field, but not null out a required one
    if value is None:
        raise ValueError("may not be null")
    return value


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username_or_email: str = Field(..., alias="usernameOrEmail")
    password: str


class UserUpdate(BaseModel):
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    avatar_url: Optional[str] = None
    background_url: Optional[str] = None
    bio: Optional[str] = None
    display_name: Optional[str] = None
    # admin only
    roles: Optional[List[UserRole]] = None
    status: Optional[UserStatus] = None

    @field_validator("email", "roles", "status")
    @classmethod
    def required_not_null(cls, value):
        return reject_null(value)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)
    confirm_password: str


class BecomeAuthorRequest(BaseModel):
    author_name: str = Field(..., min_length=1)


class NovelCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    author_name: Optional[str] = None
    cover_image: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    status: NovelStatus = NovelStatus.DRAFT
    is_r18: bool = False


class NovelUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    author_name: Optional[str] = None
    cover_image: Optional[str] = None
    categories: Optional[List[str]] = None
    status: Optional[NovelStatus] = None
    is_r18: Optional[bool] = None

    @field_validator("title", "description", "author_name", "categories", "status", "is_r18")
    @classmethod
    def required_not_null(cls, value):
        return reject_null(value)


class NovelSearch(BaseModel):
    query: Optional[str] = None
    categories: Optional[List[str]] = None
    status: Optional[NovelStatus] = None
    author_name: Optional[str] = None
    sort_by: str = "updated_at"
    sort_direction: str = Field("desc", pattern="^(asc|desc)$")
    page: int = Field(0, ge=0)
    size: int = Field(20, ge=1, le=100)


class RatingRequest(BaseModel):
    rating: float = Field(..., ge=1.0, le=5.0)


class ChapterCreate(BaseModel):
    chapter_title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    chapter_number: Optional[int] = Field(None, ge=1)


class ChapterUpdate(BaseModel):
    chapter_title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    chapter_number: Optional[int] = Field(None, ge=1)

    @field_validator("chapter_title", "content", "chapter_number")
    @classmethod
    def required_not_null(cls, value):
        return reject_null(value)


class CommentCreate(BaseModel):
    novel_id: str
    content: str = Field(..., min_length=1)
    chapter_id: Optional[str] = None


class CommentReply(BaseModel):
    content: str = Field(..., min_length=1)


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class ReviewCreate(BaseModel):
    novel_id: str
    writing_quality: int = Field(..., ge=1, le=5)
    stability_of_updates: int = Field(..., ge=1, le=5)
    story_development: int = Field(..., ge=1, le=5)
    character_design: int = Field(..., ge=1, le=5)
    world_background: int = Field(..., ge=1, le=5)
    review_text: str = Field(..., min_length=1)
    chapters_read_when_reviewed: int = Field(0, ge=0)


class NotificationCreate(BaseModel):
    user_id: str
    type: NotificationType = NotificationType.SYSTEM
    title: str
    message: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    link: Optional[str] = None


class InteractionUpdate(BaseModel):
    has_following: Optional[bool] = None
    in_wishlist: Optional[bool] = None
    notify: Optional[bool] = None
    current_chapter_number: Optional[int] = Field(None, ge=1)
    current_chapter_id: Optional[str] = None

    @field_validator("has_following", "in_wishlist", "notify")
    @classmethod
    def required_not_null(cls, value):
        return reject_null(value)


class ReadingProgressUpdate(BaseModel):
    chapter_id: str
    chapter_number: int = Field(..., ge=1)


class ImageCreate(BaseModel):
    original_filename: str
    content_type: str = Field(..., pattern=r"^image/")
    file_size: int = Field(..., ge=0, le=10 * 1024 * 1024)
    storage_key: str
    owner_id: str
    owner_type: str = Field(..., pattern="^(USER|NOVEL|CHAPTER)$")


# -------------------- Users & Auth --------------------

@app.post("/api/users/register", status_code=201)
def register(body: UserCreate):
    users = col("user")
    if users.find_one({"username": body.username}):
        raise HTTPException(status_code=409, detail="Username is already taken")
    if users.find_one({"email": body.email.lower()}):
        raise HTTPException(status_code=409, detail="Email is already registered")
    user = User(
        username=body.username,
        email=body.email.lower(),
        password=hash_password(body.password),
        display_name=body.username,
    )
    user_id = create_document("user", user)
    logger.info("Registered user %s", body.username)
    return ok(serialize(users.find_one({"_id": ObjectId(user_id)})), "User registered successfully")


@app.post("/api/users/login")
def login(body: LoginRequest):
    ident = body.username_or_email.strip()
    user = col("user").find_one({"$or": [{"username": ident}, {"email": ident.lower()}]})
    if not user or not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Invalid username/email or password")
    if user.get("status") == UserStatus.BANNED.value:
        raise HTTPException(status_code=403, detail="Account is banned")
    return ok(login_payload(user), "Login successful")


@app.post("/api/users/refresh")
def refresh_token(refreshToken: str = Query(..., min_length=1)):
    try:
        payload = decode_token(refreshToken, "refresh")
    except TokenError as e:
        logger.info("Refresh rejected: %s", e)
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = col("user").find_one({"_id": to_obj_id(payload["userId"])})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    return ok(login_payload(user), "Token refreshed successfully")


@app.get("/api/users")
def list_users(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    q: Optional[str] = None,
    admin: Dict[str, Any] = Depends(require_admin),
):
    filter_dict: Dict[str, Any] = {}
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filter_dict["$or"] = [{"username": pattern}, {"email": pattern}]
    return ok(paginate("user", filter_dict, [("created_at", -1)], page, size), "Users retrieved successfully")


@app.get("/api/users/me")
def get_me(user: Dict[str, Any] = Depends(get_current_user)):
    return ok(serialize(user), "User retrieved successfully")


@app.get("/api/users/by-username/{username}")
def get_user_by_username(username: str):
    user = col("user").find_one({"username": username})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return ok(serialize(user), "User retrieved successfully")


@app.get("/api/users/by-email/{email}")
def get_user_by_email(email: str):
    user = col("user").find_one({"email": email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return ok(serialize(user), "User retrieved successfully")


@app.get("/api/users/{user_id}")
def get_user(user_id: str):
    return ok(serialize(find_or_404("user", user_id, "User")), "User retrieved successfully")


@app.put("/api/users/{user_id}")
def update_user(user_id: str, body: UserUpdate, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    target = find_or_404("user", user_id, "User")
    changes = body.model_dump(exclude_unset=True, mode="json")
    if ("roles" in changes or "status" in changes) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Only admins can change roles or status")
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        clash = col("user").find_one({"email": changes["email"], "_id": {"$ne": target["_id"]}})
        if clash:
            raise HTTPException(status_code=409, detail="Email is already registered")
    if "display_name" in changes:
        changes["last_display_name_changed_at"] = utcnow()
    updated = touch("user", target["_id"], {"$set": changes})
    return ok(serialize(updated), "User updated successfully")


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    target = find_or_404("user", user_id, "User")
    col("user").delete_one({"_id": target["_id"]})
    col("interaction").delete_many({"user_id": user_id})
    col("notification").delete_many({"user_id": user_id})
    logger.info("Admin %s deleted user %s", admin["username"], target["username"])
    return ok(None, "User deleted successfully")


@app.put("/api/users/{user_id}/change-password")
def change_password(user_id: str, body: ChangePasswordRequest, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    target = find_or_404("user", user_id, "User")
    if body.new_password != body.confirm_password:
        raise HTTPException(status_code=400, detail="New password and confirmation do not match")
    if not verify_password(body.current_password, target.get("password", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    touch("user", target["_id"], {"$set": {"password": hash_password(body.new_password)}})
    return ok(None, "Password changed successfully")


@app.post("/api/users/{user_id}/become-author")
def become_author(user_id: str, body: BecomeAuthorRequest, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    target = find_or_404("user", user_id, "User")
    roles = list(target.get("roles") or [])
    if UserRole.AUTHOR.value not in roles:
        roles.append(UserRole.AUTHOR.value)
    updated = touch("user", target["_id"], {"$set": {"roles": roles, "author_name": body.author_name}})
    # roles are baked into the access token, so hand out a fresh pair
    return ok(login_payload(updated), "Upgraded to author successfully")


# -------------------- Novels --------------------

@app.post("/api/novels", status_code=201)
def create_novel(body: NovelCreate, user: Dict[str, Any] = Depends(get_current_user)):
    author_name = body.author_name or user.get("author_name") or user["username"]
    if col("novel").find_one({"title": body.title, "author_name": author_name}):
        raise HTTPException(status_code=409, detail="A novel with the same title and author already exists")
    novel = Novel(
        title=body.title,
        description=body.description,
        author_name=author_name,
        author_id=str(user["_id"]),
        cover_image=body.cover_image,
        categories=body.categories,
        status=body.status,
        is_r18=body.is_r18,
    )
    novel_id = create_document("novel", novel)
    return ok(serialize(col("novel").find_one({"_id": ObjectId(novel_id)})), "Novel created successfully")


@app.get("/api/novels")
def list_novels(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    status: Optional[NovelStatus] = None,
    sort_by: str = "updated_at",
    sort_direction: str = Query("desc", pattern="^(asc|desc)$"),
):
    filter_dict: Dict[str, Any] = {}
    if status:
        filter_dict["status"] = status.value
    direction = -1 if sort_direction == "desc" else 1
    return ok(paginate("novel", filter_dict, [(sort_by, direction)], page, size), "Novels retrieved successfully")


@app.post("/api/novels/search")
def search_novels(body: NovelSearch):
    filter_dict: Dict[str, Any] = {}
    if body.query:
        filter_dict["title"] = {"$regex": re.escape(body.query), "$options": "i"}
    if body.categories:
        filter_dict["categories"] = {"$in": body.categories}
    if body.status:
        filter_dict["status"] = body.status.value
    if body.author_name:
        filter_dict["author_name"] = {"$regex": re.escape(body.author_name), "$options": "i"}
    direction = -1 if body.sort_direction == "desc" else 1
    result = paginate("novel", filter_dict, [(body.sort_by, direction)], body.page, body.size)
    return ok(result, "Novels retrieved successfully")


def _top_novels(field: str) -> List[Dict[str, Any]]:
    cursor = col("novel").find({"status": {"$ne": NovelStatus.DRAFT.value}}).sort([(field, -1)]).limit(TOP_LIMIT)
    return [serialize(d) for d in cursor]


@app.get("/api/novels/top/view-count")
def top_by_view_count():
    return ok(_top_novels("view_count"), "Top novels by view count retrieved successfully")


@app.get("/api/novels/top/follow-count")
def top_by_follow_count():
    return ok(_top_novels("follow_count"), "Top novels by follow count retrieved successfully")


@app.get("/api/novels/top/rating")
def top_by_rating():
    return ok(_top_novels("rating"), "Top novels by rating retrieved successfully")


@app.get("/api/novels/recent")
def recently_updated():
    return ok(_top_novels("updated_at"), "Recently updated novels retrieved successfully")


@app.get("/api/novels/author/{author_id}")
def novels_by_author(author_id: str, page: int = Query(0, ge=0), size: int = Query(20, ge=1, le=100)):
    return ok(paginate("novel", {"author_id": author_id}, [("updated_at", -1)], page, size),
              "Novels retrieved successfully")


@app.get("/api/novels/{novel_id}")
def get_novel(novel_id: str):
    return ok(serialize(find_or_404("novel", novel_id, "Novel")), "Novel retrieved successfully")


@app.put("/api/novels/{novel_id}")
def update_novel(novel_id: str, body: NovelUpdate, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", novel_id, "Novel")
    ensure_owner_or_admin(user, novel.get("author_id"))
    changes = body.model_dump(exclude_unset=True, mode="json")
    if not changes:
        return ok(serialize(novel), "Nothing to update")
    updated = touch("novel", novel["_id"], {"$set": changes})
    return ok(serialize(updated), "Novel updated successfully")


@app.delete("/api/novels/{novel_id}")
def delete_novel(novel_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", novel_id, "Novel")
    ensure_owner_or_admin(user, novel.get("author_id"))
    col("novel").delete_one({"_id": novel["_id"]})
    for name in ("chapter", "comment", "review", "interaction"):
        col(name).delete_many({"novel_id": novel_id})
    logger.info("Deleted novel %s and its dependents", novel_id)
    return ok(None, "Novel deleted successfully")


@app.post("/api/novels/{novel_id}/rating")
def rate_novel(novel_id: str, body: RatingRequest, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", novel_id, "Novel")
    count = int(novel.get("rating_count") or 0)
    average = float(novel.get("rating") or 0.0)
    new_average = round((average * count + body.rating) / (count + 1), 2)
    updated = touch("novel", novel["_id"], {"$set": {"rating": new_average, "rating_count": count + 1}})
    return ok(serialize(updated), "Rating added successfully")


# -------------------- Chapters --------------------

def _notify_followers(novel: Dict[str, Any], chapter: Dict[str, Any]) -> None:
    novel_id = str(novel["_id"])
    followers = col("interaction").find({"novel_id": novel_id, "has_following": True, "notify": True})
    for it in followers:
        create_document("notification", Notification(
            user_id=it["user_id"],
            type=NotificationType.NEW_CHAPTER,
            title=novel["title"],
            message=f"New chapter {chapter['chapter_number']}: {chapter['chapter_title']}",
            entity_id=str(chapter["_id"]),
            entity_type="CHAPTER",
            actor_id=novel.get("author_id"),
            actor_name=novel.get("author_name"),
            link=f"/novels/{novel_id}/chapters/{chapter['_id']}",
        ))


@app.post("/api/chapters/novels/{novel_id}", status_code=201)
def create_chapter(novel_id: str, body: ChapterCreate, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", novel_id, "Novel")
    ensure_owner_or_admin(user, novel.get("author_id"))
    number = body.chapter_number
    if number is None:
        last = list(col("chapter").find({"novel_id": novel_id}).sort([("chapter_number", -1)]).limit(1))
        number = (last[0]["chapter_number"] + 1) if last else 1
    elif col("chapter").find_one({"novel_id": novel_id, "chapter_number": number}):
        raise HTTPException(status_code=409, detail=f"Chapter {number} already exists")

    words = word_count(body.content)
    chapter_id = create_document("chapter", Chapter(
        novel_id=novel_id,
        chapter_title=body.chapter_title,
        chapter_number=number,
        content=body.content,
        word_count=words,
    ))
    touch("novel", novel["_id"], {"$inc": {"chapter_count": 1, "word_count": words}})
    chapter = col("chapter").find_one({"_id": ObjectId(chapter_id)})
    _notify_followers(novel, chapter)
    return ok(serialize(chapter), "Chapter created successfully")


@app.put("/api/chapters/novels/{novel_id}/{chapter_id}")
def update_chapter(novel_id: str, chapter_id: str, body: ChapterUpdate,
                   user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", novel_id, "Novel")
    ensure_owner_or_admin(user, novel.get("author_id"))
    chapter = find_or_404("chapter", chapter_id, "Chapter")
    if chapter["novel_id"] != novel_id:
        raise HTTPException(status_code=404, detail="Chapter not found")
    changes = body.model_dump(exclude_unset=True)
    number = changes.get("chapter_number")
    if number is not None and number != chapter["chapter_number"]:
        if col("chapter").find_one({"novel_id": novel_id, "chapter_number": number}):
            raise HTTPException(status_code=409, detail=f"Chapter {number} already exists")
    if "content" in changes:
        changes["word_count"] = word_count(changes["content"])
        delta = changes["word_count"] - int(chapter.get("word_count") or 0)
        touch("novel", novel["_id"], {"$inc": {"word_count": delta}})
    updated = touch("chapter", chapter["_id"], {"$set": changes})
    return ok(serialize(updated), "Chapter updated successfully")


@app.delete("/api/chapters/{chapter_id}")
def delete_chapter(chapter_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    chapter = find_or_404("chapter", chapter_id, "Chapter")
    novel = find_or_404("novel", chapter["novel_id"], "Novel")
    ensure_owner_or_admin(user, novel.get("author_id"))
    col("chapter").delete_one({"_id": chapter["_id"]})
    touch("novel", novel["_id"], {"$inc": {"chapter_count": -1, "word_count": -int(chapter.get("word_count") or 0)}})
    return ok(None, "Chapter deleted successfully")


@app.get("/api/chapters/novels/{novel_id}")
def list_chapters(novel_id: str):
    chapters = col("chapter").find({"novel_id": novel_id}).sort([("chapter_number", 1)])
    return ok([serialize(c) for c in chapters], "Chapters retrieved successfully")


@app.get("/api/chapters/{chapter_id}")
def get_chapter(chapter_id: str):
    return ok(serialize(find_or_404("chapter", chapter_id, "Chapter")), "Chapter retrieved successfully")


@app.post("/api/chapters/{chapter_id}/increment-view")
def increment_chapter_view(chapter_id: str):
    chapter = find_or_404("chapter", chapter_id, "Chapter")
    updated = col("chapter").find_one_and_update(
        {"_id": chapter["_id"]}, {"$inc": {"view_count": 1}}, return_document=ReturnDocument.AFTER
    )
    if ObjectId.is_valid(chapter["novel_id"]):
        col("novel").update_one({"_id": ObjectId(chapter["novel_id"])}, {"$inc": {"view_count": 1}})
    return ok(serialize(updated), "Chapter view count incremented")


# -------------------- Comments --------------------

@app.post("/api/comments", status_code=201)
def create_comment(body: CommentCreate, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", body.novel_id, "Novel")
    comment_id = create_document("comment", Comment(
        novel_id=body.novel_id,
        user_id=str(user["_id"]),
        username=user["username"],
        content=body.content,
        chapter_id=body.chapter_id,
    ))
    col("novel").update_one({"_id": novel["_id"]}, {"$inc": {"comment_count": 1}})
    return ok(serialize(col("comment").find_one({"_id": ObjectId(comment_id)})), "Comment created successfully")


@app.post("/api/comments/{comment_id}/reply", status_code=201)
def reply_comment(comment_id: str, body: CommentReply, user: Dict[str, Any] = Depends(get_current_user)):
    parent = find_or_404("comment", comment_id, "Comment")
    reply_id = create_document("comment", Comment(
        novel_id=parent["novel_id"],
        user_id=str(user["_id"]),
        username=user["username"],
        content=body.content,
        chapter_id=parent.get("chapter_id"),
        parent_id=comment_id,
    ))
    col("comment").update_one({"_id": parent["_id"]}, {"$inc": {"reply_count": 1}})
    if parent["user_id"] != str(user["_id"]):
        create_document("notification", Notification(
            user_id=parent["user_id"],
            type=NotificationType.COMMENT_REPLY,
            title="New reply",
            message=f"{user['username']} replied to your comment",
            entity_id=reply_id,
            entity_type="COMMENT",
            actor_id=str(user["_id"]),
            actor_name=user["username"],
        ))
    return ok(serialize(col("comment").find_one({"_id": ObjectId(reply_id)})), "Reply created successfully")


@app.get("/api/comments/novel/{novel_id}")
def list_comments(novel_id: str, page: int = Query(0, ge=0), size: int = Query(20, ge=1, le=100)):
    result = paginate("comment", {"novel_id": novel_id, "parent_id": None}, [("created_at", -1)], page, size)
    return ok(result, "Comments retrieved successfully")


@app.get("/api/comments/{comment_id}/replies")
def list_replies(comment_id: str):
    replies = col("comment").find({"parent_id": comment_id}).sort([("created_at", 1)])
    return ok([serialize(r) for r in replies], "Replies retrieved successfully")


@app.get("/api/comments/{comment_id}")
def get_comment(comment_id: str):
    return ok(serialize(find_or_404("comment", comment_id, "Comment")), "Comment retrieved successfully")


@app.put("/api/comments/{comment_id}")
def update_comment(comment_id: str, body: CommentUpdate, user: Dict[str, Any] = Depends(get_current_user)):
    comment = find_or_404("comment", comment_id, "Comment")
    if comment["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Only the author can edit this comment")
    updated = touch("comment", comment["_id"], {"$set": {"content": body.content}})
    return ok(serialize(updated), "Comment updated successfully")


@app.delete("/api/comments/{comment_id}")
def delete_comment(comment_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    comment = find_or_404("comment", comment_id, "Comment")
    ensure_owner_or_admin(user, comment["user_id"])
    removed_replies = col("comment").delete_many({"parent_id": comment_id}).deleted_count
    col("comment").delete_one({"_id": comment["_id"]})
    if comment.get("parent_id") and ObjectId.is_valid(comment["parent_id"]):
        col("comment").update_one({"_id": ObjectId(comment["parent_id"])}, {"$inc": {"reply_count": -1}})
    else:
        col("novel").update_one({"_id": to_obj_id(comment["novel_id"])}, {"$inc": {"comment_count": -1}})
    logger.debug("Deleted comment %s with %d replies", comment_id, removed_replies)
    return ok(None, "Comment deleted successfully")


# -------------------- Reviews --------------------

def _recompute_novel_rating(novel_id: str) -> None:
    ratings = [r["overall_rating"] for r in col("review").find({"novel_id": novel_id}, {"overall_rating": 1})]
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
    col("novel").update_one(
        {"_id": to_obj_id(novel_id)},
        {"$set": {"rating": average, "rating_count": len(ratings), "updated_at": utcnow()}},
    )


@app.post("/api/reviews", status_code=201)
def create_review(body: ReviewCreate, user: Dict[str, Any] = Depends(get_current_user)):
    novel = find_or_404("novel", body.novel_id, "Novel")
    user_id = str(user["_id"])
    if col("review").find_one({"user_id": user_id, "novel_id": body.novel_id}):
        raise HTTPException(status_code=409, detail="You have already reviewed this novel")
    review = Review(
        user_id=user_id,
        total_chapters_at_review=int(novel.get("chapter_count") or 0),
        **body.model_dump(),
    )
    review_id = create_document("review", review)
    _recompute_novel_rating(body.novel_id)
    return ok(serialize(col("review").find_one({"_id": ObjectId(review_id)})), "Review created successfully")


@app.get("/api/reviews/users/{user_id}/novels/{novel_id}")
def get_review_by_user_and_novel(user_id: str, novel_id: str):
    review = col("review").find_one({"user_id": user_id, "novel_id": novel_id})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return ok(serialize(review), "Review retrieved successfully")


@app.get("/api/reviews/users/{user_id}/count")
def review_count_by_user(user_id: str):
    return ok(col("review").count_documents({"user_id": user_id}), "Review count retrieved successfully")


@app.get("/api/reviews/users/{user_id}")
def reviews_by_user(user_id: str, page: int = Query(0, ge=0), size: int = Query(20, ge=1, le=100)):
    return ok(paginate("review", {"user_id": user_id}, [("created_at", -1)], page, size),
              "Reviews retrieved successfully")


@app.get("/api/reviews/novels/{novel_id}/top")
def top_reviews(novel_id: str, limit: int = Query(5, ge=1, le=50)):
    cursor = col("review").find({"novel_id": novel_id}).sort([("overall_rating", -1), ("word_count", -1)]).limit(limit)
    return ok([serialize(r) for r in cursor], "Top reviews retrieved successfully")


@app.get("/api/reviews/novels/{novel_id}/average-rating")
def average_rating(novel_id: str):
    ratings = [r["overall_rating"] for r in col("review").find({"novel_id": novel_id}, {"overall_rating": 1})]
    average = round(sum(ratings) / len(ratings), 2) if ratings else None
    return ok(average, "Average rating retrieved successfully")


@app.get("/api/reviews/novels/{novel_id}/count")
def review_count_by_novel(novel_id: str):
    return ok(col("review").count_documents({"novel_id": novel_id}), "Review count retrieved successfully")


@app.get("/api/reviews/novels/{novel_id}")
def reviews_by_novel(novel_id: str, page: int = Query(0, ge=0), size: int = Query(20, ge=1, le=100)):
    return ok(paginate("review", {"novel_id": novel_id}, [("created_at", -1)], page, size),
              "Reviews retrieved successfully")


@app.get("/api/reviews/{review_id}")
def get_review(review_id: str):
    return ok(serialize(find_or_404("review", review_id, "Review")), "Review retrieved successfully")


@app.delete("/api/reviews/users/{user_id}/novels/{novel_id}")
def delete_review_by_user_and_novel(user_id: str, novel_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    result = col("review").delete_one({"user_id": user_id, "novel_id": novel_id})
    if not result.deleted_count:
        raise HTTPException(status_code=404, detail="Review not found")
    _recompute_novel_rating(novel_id)
    return ok(None, "Review deleted successfully")


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    review = find_or_404("review", review_id, "Review")
    ensure_owner_or_admin(user, review["user_id"])
    col("review").delete_one({"_id": review["_id"]})
    _recompute_novel_rating(review["novel_id"])
    return ok(None, "Review deleted successfully")


# -------------------- Notifications --------------------

@app.post("/api/notifications", status_code=201)
def create_notification(body: NotificationCreate, admin: Dict[str, Any] = Depends(require_admin)):
    find_or_404("user", body.user_id, "User")
    notification_id = create_document("notification", Notification(
        actor_id=str(admin["_id"]),
        actor_name=admin["username"],
        **body.model_dump(),
    ))
    return ok(serialize(col("notification").find_one({"_id": ObjectId(notification_id)})),
              "Notification created successfully")


@app.get("/api/notifications/users/{user_id}")
def notifications_by_user(
    user_id: str,
    unread_only: bool = False,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
):
    ensure_self_or_admin(user, user_id)
    filter_dict: Dict[str, Any] = {"user_id": user_id}
    if unread_only:
        filter_dict["read"] = False
    return ok(paginate("notification", filter_dict, [("created_at", -1)], page, size),
              "Notifications retrieved successfully")


@app.post("/api/notifications/users/{user_id}/read-all")
def mark_all_read(user_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    result = col("notification").update_many(
        {"user_id": user_id, "read": False}, {"$set": {"read": True, "updated_at": utcnow()}}
    )
    return ok(result.modified_count, "Notifications marked as read")


@app.get("/api/notifications/{notification_id}")
def get_notification(notification_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    notification = find_or_404("notification", notification_id, "Notification")
    ensure_self_or_admin(user, notification["user_id"])
    return ok(serialize(notification), "Notification retrieved successfully")


@app.post("/api/notifications/{notification_id}/read")
def mark_read(notification_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    notification = find_or_404("notification", notification_id, "Notification")
    ensure_self_or_admin(user, notification["user_id"])
    updated = touch("notification", notification["_id"], {"$set": {"read": True}})
    return ok(serialize(updated), "Notification marked as read")


@app.delete("/api/notifications/{notification_id}")
def delete_notification(notification_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    notification = find_or_404("notification", notification_id, "Notification")
    ensure_self_or_admin(user, notification["user_id"])
    col("notification").delete_one({"_id": notification["_id"]})
    return ok(None, "Notification deleted successfully")


# -------------------- Interactions --------------------

def _get_or_create_interaction(user_id: str, novel_id: str) -> Dict[str, Any]:
    defaults = Interaction(user_id=user_id, novel_id=novel_id).model_dump()
    now = utcnow()
    defaults.update({"created_at": now, "updated_at": now})
    for key in ("user_id", "novel_id"):
        defaults.pop(key)
    col("interaction").update_one(
        {"user_id": user_id, "novel_id": novel_id},
        {"$setOnInsert": defaults},
        upsert=True,
    )
    return col("interaction").find_one({"user_id": user_id, "novel_id": novel_id})


@app.get("/api/interactions/users/{user_id}/novels/{novel_id}")
def get_interaction(user_id: str, novel_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    find_or_404("novel", novel_id, "Novel")
    return ok(serialize(_get_or_create_interaction(user_id, novel_id)), "Interaction retrieved successfully")


@app.put("/api/interactions/users/{user_id}/novels/{novel_id}")
def update_interaction(user_id: str, novel_id: str, body: InteractionUpdate,
                       user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    novel = find_or_404("novel", novel_id, "Novel")
    current = _get_or_create_interaction(user_id, novel_id)
    changes = body.model_dump(exclude_unset=True)
    if "has_following" in changes and changes["has_following"] != current.get("has_following"):
        col("novel").update_one({"_id": novel["_id"]}, {"$inc": {"follow_count": 1 if changes["has_following"] else -1}})
    updated = touch("interaction", current["_id"], {"$set": changes})
    return ok(serialize(updated), "Interaction updated successfully")


@app.post("/api/interactions/users/{user_id}/novels/{novel_id}/follow")
def toggle_follow(user_id: str, novel_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    novel = find_or_404("novel", novel_id, "Novel")
    current = _get_or_create_interaction(user_id, novel_id)
    following = not current.get("has_following", False)
    col("novel").update_one({"_id": novel["_id"]}, {"$inc": {"follow_count": 1 if following else -1}})
    updated = touch("interaction", current["_id"], {"$set": {"has_following": following, "notify": following}})
    return ok(serialize(updated), "Followed novel" if following else "Unfollowed novel")


@app.post("/api/interactions/users/{user_id}/novels/{novel_id}/wishlist")
def toggle_wishlist(user_id: str, novel_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    find_or_404("novel", novel_id, "Novel")
    current = _get_or_create_interaction(user_id, novel_id)
    wished = not current.get("in_wishlist", False)
    updated = touch("interaction", current["_id"], {"$set": {"in_wishlist": wished}})
    return ok(serialize(updated), "Added to wishlist" if wished else "Removed from wishlist")


@app.post("/api/interactions/users/{user_id}/novels/{novel_id}/read")
def update_reading_progress(user_id: str, novel_id: str, body: ReadingProgressUpdate,
                            user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    find_or_404("novel", novel_id, "Novel")
    current = _get_or_create_interaction(user_id, novel_id)
    updated = touch("interaction", current["_id"], {
        "$set": {
            "current_chapter_id": body.chapter_id,
            "current_chapter_number": body.chapter_number,
            "last_read_at": utcnow(),
        },
        "$inc": {"total_chapter_reads": 1},
    })
    return ok(serialize(updated), "Reading progress updated")


@app.get("/api/interactions/novels/{novel_id}/follow-count")
def follow_count(novel_id: str):
    return ok(col("interaction").count_documents({"novel_id": novel_id, "has_following": True}),
              "Follow count retrieved successfully")


@app.get("/api/interactions/novels/{novel_id}")
def interactions_by_novel(novel_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    items = col("interaction").find({"novel_id": novel_id})
    return ok([serialize(i) for i in items], "Interactions retrieved successfully")


@app.get("/api/interactions/users/{user_id}/following")
def following_list(user_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    items = col("interaction").find({"user_id": user_id, "has_following": True}).sort([("updated_at", -1)])
    return ok([serialize(i) for i in items], "Following list retrieved successfully")


@app.get("/api/interactions/users/{user_id}/wishlist")
def wishlist(user_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    items = col("interaction").find({"user_id": user_id, "in_wishlist": True}).sort([("updated_at", -1)])
    return ok([serialize(i) for i in items], "Wishlist retrieved successfully")


@app.get("/api/interactions/users/{user_id}")
def interactions_by_user(user_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    ensure_self_or_admin(user, user_id)
    items = col("interaction").find({"user_id": user_id}).sort([("updated_at", -1)])
    return ok([serialize(i) for i in items], "Interactions retrieved successfully")


# -------------------- Images --------------------

@app.post("/api/images", status_code=201)
def create_image(body: ImageCreate, user: Dict[str, Any] = Depends(get_current_user)):
    image_id = create_document("image", Image(**body.model_dump()))
    return ok(serialize(col("image").find_one({"_id": ObjectId(image_id)})), "Image saved successfully")


@app.get("/api/images/owners/{owner_type}/{owner_id}")
def images_by_owner(owner_type: str, owner_id: str):
    items = col("image").find({"owner_type": owner_type, "owner_id": owner_id, "active": True})
    return ok([serialize(i) for i in items], "Images retrieved successfully")


@app.get("/api/images/{image_id}")
def get_image(image_id: str):
    image = find_or_404("image", image_id, "Image")
    if not image.get("active", True):
        raise HTTPException(status_code=404, detail="Image not found")
    return ok(serialize(image), "Image retrieved successfully")


@app.delete("/api/images/{image_id}")
def delete_image(image_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    image = find_or_404("image", image_id, "Image")
    if image["owner_type"] == "USER":
        ensure_owner_or_admin(user, image["owner_id"])
    touch("image", image["_id"], {"$set": {"active": False}})
    return ok(None, "Image deleted successfully")


# -------------------- Admin --------------------

@app.get("/api/admin/stats")
def admin_stats(admin: Dict[str, Any] = Depends(require_admin)):
    stats = {name: col(name).count_documents({}) for name in ("user", "novel", "chapter", "comment", "review")}
    stats["published_novels"] = col("novel").count_documents({"status": {"$ne": NovelStatus.DRAFT.value}})
    return ok(stats, "Statistics retrieved successfully")


if __name__ == "__main__":
    import uvicorn

    from logging_utils import build_uvicorn_log_config

    settings = get_settings()
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=build_uvicorn_log_config(settings.log_level))
