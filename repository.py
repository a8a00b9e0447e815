"""
Novel listings with a "return cached, then refresh" policy.

Readers get whatever the local cache holds immediately; a refresh fetches
from the API and overwrites the cache. Network failures during a refresh
leave the cached data in place.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from api_client import ApiError, NovelApiClient
from client_models import NovelDto
from novel_cache import NovelCache
from result import LOADING, Error, Result, Success

logger = logging.getLogger(__name__)


class Listing(str, Enum):
    TOP_RATING = "top_rating"
    TOP_FOLLOW = "top_follow"
    TOP_VIEW = "top_view"
    RECENT = "recent"
    COMPLETED = "completed"


class RefreshType(str, Enum):
    HOME = "HOME"
    EXPLORE = "EXPLORE"
    BOOKLIST = "BOOKLIST"
    ALL = "ALL"


# listings each screen shows; BOOKLIST is per-user and never cached
REFRESH_LISTINGS = {
    RefreshType.HOME: (Listing.TOP_RATING, Listing.TOP_FOLLOW, Listing.TOP_VIEW, Listing.RECENT),
    RefreshType.EXPLORE: (Listing.RECENT, Listing.COMPLETED),
    RefreshType.BOOKLIST: (),
    RefreshType.ALL: tuple(Listing),
}


class RefreshManager:
    """Broadcasts refresh requests after create/edit/delete operations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[Callable[[RefreshType], None]] = []

    def subscribe(self, listener: Callable[[RefreshType], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def trigger_refresh(self, refresh_type: RefreshType = RefreshType.ALL) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(refresh_type)
            except Exception:
                logger.exception("Refresh listener %r failed", listener)


class NovelRepository:
    def __init__(self, api: NovelApiClient, cache: NovelCache) -> None:
        self.api = api
        self.cache = cache
        self._fetchers: Dict[Listing, Callable[[], List[NovelDto]]] = {
            Listing.TOP_RATING: api.top_by_rating,
            Listing.TOP_FOLLOW: api.top_by_follow_count,
            Listing.TOP_VIEW: api.top_by_view_count,
            Listing.RECENT: api.recently_updated,
            Listing.COMPLETED: api.completed,
        }

    def cached(self, listing: Listing) -> List[NovelDto]:
        return self.cache.get_listing(listing.value)

    def fetch(self, listing: Listing) -> List[NovelDto]:
        """Fetch `listing` from the API and overwrite the cache; raises ApiError."""
        novels = self._fetchers[listing]()
        self.cache.put_listing(listing.value, novels)
        return novels

    def refresh(self, listing: Listing) -> bool:
        try:
            self.fetch(listing)
        except ApiError as e:
            logger.warning("Refreshing %s failed, keeping cached data: %s", listing.value, e)
            return False
        return True

    def stream(self, listing: Listing) -> Iterator[Result]:
        """Yield Loading, the cached listing if any, then fresh data or an Error."""
        yield LOADING
        cached = self.cached(listing)
        if cached:
            yield Success(cached)
        try:
            yield Success(self.fetch(listing))
        except ApiError as e:
            yield Error(e.message, e)

    def get_novel(self, novel_id: str) -> Optional[NovelDto]:
        return self.cache.get_novel(novel_id)

    def refresh_novel(self, novel_id: str) -> Optional[NovelDto]:
        """Fetch one novel into the cache; falls back to the cached copy when offline."""
        try:
            novel = self.api.get_novel(novel_id)
        except ApiError as e:
            logger.warning("Refreshing novel %s failed: %s", novel_id, e)
            return self.cache.get_novel(novel_id)
        self.cache.put_novels([novel])
        return novel

    def top_by_rating(self) -> List[NovelDto]:
        return self.cached(Listing.TOP_RATING)

    def top_by_follow_count(self) -> List[NovelDto]:
        return self.cached(Listing.TOP_FOLLOW)

    def top_by_view_count(self) -> List[NovelDto]:
        return self.cached(Listing.TOP_VIEW)

    def recently_updated(self) -> List[NovelDto]:
        return self.cached(Listing.RECENT)

    def completed(self) -> List[NovelDto]:
        return self.cached(Listing.COMPLETED)

    def refresh_top_by_rating(self) -> bool:
        return self.refresh(Listing.TOP_RATING)

    def refresh_top_by_follow_count(self) -> bool:
        return self.refresh(Listing.TOP_FOLLOW)

    def refresh_top_by_view_count(self) -> bool:
        return self.refresh(Listing.TOP_VIEW)

    def refresh_recently_updated(self) -> bool:
        return self.refresh(Listing.RECENT)

    def refresh_completed(self) -> bool:
        return self.refresh(Listing.COMPLETED)

    def refresh_all(self) -> Dict[Listing, bool]:
        return {listing: self.refresh(listing) for listing in Listing}

    def on_refresh(self, refresh_type: RefreshType) -> None:
        for listing in REFRESH_LISTINGS[refresh_type]:
            self.refresh(listing)
