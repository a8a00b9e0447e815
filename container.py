"""
Wires the client-side objects together at process start.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from api_client import NovelApiClient
from authenticator import TokenAuthenticator
from config import Settings, get_settings
from novel_cache import NovelCache
from repository import NovelRepository, RefreshManager
from session import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    session: SessionStore
    authenticator: TokenAuthenticator
    http: httpx.Client
    api: NovelApiClient
    cache: NovelCache
    novels: NovelRepository
    refresh_manager: RefreshManager
    _refresh_http: httpx.Client

    def close(self) -> None:
        self.http.close()
        self._refresh_http.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def build_container(settings: Optional[Settings] = None,
                    transport: Optional[httpx.BaseTransport] = None) -> Container:
    settings = settings or get_settings()
    timeout = httpx.Timeout(settings.http_timeout)

    session = SessionStore(settings.session_file)
    # The refresh exchange must not go through the authenticator itself
    refresh_http = httpx.Client(base_url=settings.api_base_url, timeout=timeout, transport=transport)
    authenticator = TokenAuthenticator(session, refresh_http)
    http = httpx.Client(
        base_url=settings.api_base_url,
        timeout=timeout,
        auth=authenticator,
        headers={"Accept": "application/json"},
        transport=transport,
    )
    api = NovelApiClient(http, session)
    cache = NovelCache(settings.cache_file)
    novels = NovelRepository(api, cache)
    refresh_manager = RefreshManager()
    refresh_manager.subscribe(novels.on_refresh)

    logger.debug("Client wired against %s", settings.api_base_url)
    return Container(
        settings=settings,
        session=session,
        authenticator=authenticator,
        http=http,
        api=api,
        cache=cache,
        novels=novels,
        refresh_manager=refresh_manager,
        _refresh_http=refresh_http,
    )
