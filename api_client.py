"""
Typed client for the Novel Reading REST API.

All calls go through an `httpx.Client` configured with `TokenAuthenticator`,
so access-token expiry is handled before an error reaches this layer. What
does reach it is raised as `ApiError`, or `UnauthenticatedError` when the
session could not be recovered.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from authenticator import token_expiration_ms
from client_models import ChapterDto, Envelope, InteractionDto, JsonDict, LoginData, NovelDto, Page, UserSummary
from session import SessionStore

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []

    def __str__(self) -> str:
        if self.status_code:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


class UnauthenticatedError(ApiError):
    pass


class NovelApiClient:
    def __init__(self, http: httpx.Client, session: SessionStore) -> None:
        self._http = http
        self.session = session

    # -- plumbing --------------------------------------------------------

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(0, f"Network error: {e}") from e

        try:
            envelope = Envelope.model_validate(response.json())
        except (ValueError, ValidationError):
            envelope = None

        message = envelope.message if envelope and envelope.message else response.reason_phrase
        if response.status_code == 401:
            raise UnauthenticatedError(401, message or "Authentication required")
        if not response.is_success:
            raise ApiError(response.status_code, message, envelope.errors if envelope else None)
        if envelope is None or not envelope.success:
            raise ApiError(response.status_code, message or "Malformed server response")
        return envelope.data

    def _model(self, model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ApiError(0, f"Malformed server response: {e.error_count()} invalid field(s)") from e

    def _novels(self, data: Any) -> List[NovelDto]:
        return [self._model(NovelDto, item) for item in (data or [])]

    # -- auth & users ----------------------------------------------------

    def register(self, username: str, email: str, password: str) -> UserSummary:
        data = self._call("POST", "/users/register", json={"username": username, "email": email, "password": password})
        return self._model(UserSummary, data)

    def login(self, username_or_email: str, password: str) -> LoginData:
        data = self._call("POST", "/users/login", json={"usernameOrEmail": username_or_email, "password": password})
        login = self._model(LoginData, data)
        self._store(login)
        return login

    def logout(self) -> None:
        self.session.clear()

    def _store(self, login: LoginData) -> None:
        self.session.save_session(
            login.token,
            login.refresh_token,
            login.user.id,
            login.user.username,
            login.user.email,
            token_expiration_ms(login.token),
        )

    def me(self) -> UserSummary:
        return self._model(UserSummary, self._call("GET", "/users/me"))

    def get_user(self, user_id: str) -> UserSummary:
        return self._model(UserSummary, self._call("GET", f"/users/{user_id}"))

    def list_users(self, page: int = 0, size: int = 20, q: Optional[str] = None) -> Page[UserSummary]:
        params: Dict[str, Any] = {"page": page, "size": size}
        if q:
            params["q"] = q
        return self._model(Page[UserSummary], self._call("GET", "/users", params=params))

    def update_user(self, user_id: str, **changes: Any) -> UserSummary:
        user = self._model(UserSummary, self._call("PUT", f"/users/{user_id}", json=changes))
        if user.id == self.session.state.user_id:
            self.session.update_identity(username=user.username, email=user.email)
        return user

    def delete_user(self, user_id: str) -> None:
        self._call("DELETE", f"/users/{user_id}")

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        self._call("PUT", f"/users/{user_id}/change-password", json={
            "current_password": current_password,
            "new_password": new_password,
            "confirm_password": new_password,
        })

    def become_author(self, user_id: str, author_name: str) -> LoginData:
        login = self._model(LoginData, self._call("POST", f"/users/{user_id}/become-author",
                                                  json={"author_name": author_name}))
        self._store(login)
        return login

    # -- novels ----------------------------------------------------------

    def list_novels(self, page: int = 0, size: int = 20, status: Optional[str] = None,
                    sort_by: str = "updated_at", sort_direction: str = "desc") -> Page[NovelDto]:
        params: Dict[str, Any] = {"page": page, "size": size, "sort_by": sort_by, "sort_direction": sort_direction}
        if status:
            params["status"] = status
        return self._model(Page[NovelDto], self._call("GET", "/novels", params=params))

    def search_novels(self, query: Optional[str] = None, **filters: Any) -> Page[NovelDto]:
        return self._model(Page[NovelDto], self._call("POST", "/novels/search", json={"query": query, **filters}))

    def top_by_rating(self) -> List[NovelDto]:
        return self._novels(self._call("GET", "/novels/top/rating"))

    def top_by_follow_count(self) -> List[NovelDto]:
        return self._novels(self._call("GET", "/novels/top/follow-count"))

    def top_by_view_count(self) -> List[NovelDto]:
        return self._novels(self._call("GET", "/novels/top/view-count"))

    def recently_updated(self) -> List[NovelDto]:
        return self._novels(self._call("GET", "/novels/recent"))

    def completed(self, page: int = 0, size: int = 20) -> List[NovelDto]:
        return self.list_novels(page=page, size=size, status="COMPLETED").content

    def novels_by_author(self, author_id: str, page: int = 0, size: int = 20) -> Page[NovelDto]:
        return self._model(Page[NovelDto], self._call("GET", f"/novels/author/{author_id}",
                                                      params={"page": page, "size": size}))

    def get_novel(self, novel_id: str) -> NovelDto:
        return self._model(NovelDto, self._call("GET", f"/novels/{novel_id}"))

    def create_novel(self, title: str, **fields: Any) -> NovelDto:
        return self._model(NovelDto, self._call("POST", "/novels", json={"title": title, **fields}))

    def update_novel(self, novel_id: str, **changes: Any) -> NovelDto:
        return self._model(NovelDto, self._call("PUT", f"/novels/{novel_id}", json=changes))

    def delete_novel(self, novel_id: str) -> None:
        self._call("DELETE", f"/novels/{novel_id}")

    def rate_novel(self, novel_id: str, rating: float) -> NovelDto:
        return self._model(NovelDto, self._call("POST", f"/novels/{novel_id}/rating", json={"rating": rating}))

    # -- chapters --------------------------------------------------------

    def list_chapters(self, novel_id: str) -> List[ChapterDto]:
        return [self._model(ChapterDto, c) for c in self._call("GET", f"/chapters/novels/{novel_id}") or []]

    def get_chapter(self, chapter_id: str) -> ChapterDto:
        return self._model(ChapterDto, self._call("GET", f"/chapters/{chapter_id}"))

    def create_chapter(self, novel_id: str, chapter_title: str, content: str,
                       chapter_number: Optional[int] = None) -> ChapterDto:
        body: JsonDict = {"chapter_title": chapter_title, "content": content}
        if chapter_number is not None:
            body["chapter_number"] = chapter_number
        return self._model(ChapterDto, self._call("POST", f"/chapters/novels/{novel_id}", json=body))

    def update_chapter(self, novel_id: str, chapter_id: str, **changes: Any) -> ChapterDto:
        return self._model(ChapterDto, self._call("PUT", f"/chapters/novels/{novel_id}/{chapter_id}", json=changes))

    def delete_chapter(self, chapter_id: str) -> None:
        self._call("DELETE", f"/chapters/{chapter_id}")

    def increment_chapter_view(self, chapter_id: str) -> ChapterDto:
        return self._model(ChapterDto, self._call("POST", f"/chapters/{chapter_id}/increment-view"))

    # -- comments --------------------------------------------------------

    def list_comments(self, novel_id: str, page: int = 0, size: int = 20) -> Page[JsonDict]:
        return self._model(Page[JsonDict], self._call("GET", f"/comments/novel/{novel_id}",
                                                      params={"page": page, "size": size}))

    def list_replies(self, comment_id: str) -> List[JsonDict]:
        return self._call("GET", f"/comments/{comment_id}/replies") or []

    def create_comment(self, novel_id: str, content: str, chapter_id: Optional[str] = None) -> JsonDict:
        return self._call("POST", "/comments", json={"novel_id": novel_id, "content": content, "chapter_id": chapter_id})

    def reply_comment(self, comment_id: str, content: str) -> JsonDict:
        return self._call("POST", f"/comments/{comment_id}/reply", json={"content": content})

    def update_comment(self, comment_id: str, content: str) -> JsonDict:
        return self._call("PUT", f"/comments/{comment_id}", json={"content": content})

    def delete_comment(self, comment_id: str) -> None:
        self._call("DELETE", f"/comments/{comment_id}")

    # -- reviews ---------------------------------------------------------

    def create_review(self, novel_id: str, review_text: str, ratings: Dict[str, int],
                      chapters_read: int = 0) -> JsonDict:
        return self._call("POST", "/reviews", json={
            "novel_id": novel_id,
            "review_text": review_text,
            "chapters_read_when_reviewed": chapters_read,
            **ratings,
        })

    def reviews_by_novel(self, novel_id: str, page: int = 0, size: int = 20) -> Page[JsonDict]:
        return self._model(Page[JsonDict], self._call("GET", f"/reviews/novels/{novel_id}",
                                                      params={"page": page, "size": size}))

    def average_rating(self, novel_id: str) -> Optional[float]:
        return self._call("GET", f"/reviews/novels/{novel_id}/average-rating")

    def delete_review(self, review_id: str) -> None:
        self._call("DELETE", f"/reviews/{review_id}")

    # -- notifications ---------------------------------------------------

    def notifications(self, unread_only: bool = False, page: int = 0, size: int = 20) -> Page[JsonDict]:
        user_id = self._require_user()
        params = {"unread_only": unread_only, "page": page, "size": size}
        return self._model(Page[JsonDict], self._call("GET", f"/notifications/users/{user_id}", params=params))

    def mark_notification_read(self, notification_id: str) -> JsonDict:
        return self._call("POST", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> int:
        return self._call("POST", f"/notifications/users/{self._require_user()}/read-all")

    def delete_notification(self, notification_id: str) -> None:
        self._call("DELETE", f"/notifications/{notification_id}")

    # -- interactions ----------------------------------------------------

    def _require_user(self) -> str:
        user_id = self.session.state.user_id
        if not user_id:
            raise UnauthenticatedError(401, "Not signed in")
        return user_id

    def get_interaction(self, novel_id: str) -> InteractionDto:
        path = f"/interactions/users/{self._require_user()}/novels/{novel_id}"
        return self._model(InteractionDto, self._call("GET", path))

    def toggle_follow(self, novel_id: str) -> InteractionDto:
        path = f"/interactions/users/{self._require_user()}/novels/{novel_id}/follow"
        return self._model(InteractionDto, self._call("POST", path))

    def toggle_wishlist(self, novel_id: str) -> InteractionDto:
        path = f"/interactions/users/{self._require_user()}/novels/{novel_id}/wishlist"
        return self._model(InteractionDto, self._call("POST", path))

    def update_reading_progress(self, novel_id: str, chapter_id: str, chapter_number: int) -> InteractionDto:
        path = f"/interactions/users/{self._require_user()}/novels/{novel_id}/read"
        body = {"chapter_id": chapter_id, "chapter_number": chapter_number}
        return self._model(InteractionDto, self._call("POST", path, json=body))

    def following(self) -> List[InteractionDto]:
        data = self._call("GET", f"/interactions/users/{self._require_user()}/following")
        return [self._model(InteractionDto, item) for item in data or []]

    def wishlist(self) -> List[InteractionDto]:
        data = self._call("GET", f"/interactions/users/{self._require_user()}/wishlist")
        return [self._model(InteractionDto, item) for item in data or []]

    # -- admin -----------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        return self._call("GET", "/admin/stats")
