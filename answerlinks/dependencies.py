"""Reusable FastAPI dependencies."""
import secrets

from fastapi import Depends, HTTPException, Request, status

from answerlinks.auth import SESSION_COOKIE_NAME, AdminSession, get_session
from answerlinks.browser_store import CompletionMarkerStore, browser_storage
from answerlinks.config import Settings, get_settings as _get_settings
from answerlinks.services.query_cache import QueryCache, query_cache
from answerlinks.services.reconciler import ReconcilerRegistry, view_reconcilers
from answerlinks.services.registry import LinkRegistryClient


def get_settings() -> Settings:
    """Return application settings (cached)."""
    return _get_settings()


def get_current_session(request: Request) -> str:
    """Ensure the request originates from an authenticated staff session."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if get_session(token) is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return token


def get_optional_session(request: Request) -> str | None:
    """Return session token if present and valid, otherwise None."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if get_session(token) is None:
        return None
    return token


def get_registry_transport():
    """Transport for registry calls; tests override this with ``httpx.MockTransport``."""
    return None


def get_admin_registry(
    session_token: str = Depends(get_current_session),
    settings: Settings = Depends(get_settings),
    transport=Depends(get_registry_transport),
) -> LinkRegistryClient:
    """Registry client authenticated with the current staff session's bearer token."""
    session: AdminSession = get_session(session_token)
    return LinkRegistryClient(
        settings.REGISTRY_BASE_URL,
        token=session.api_token,
        timeout=settings.REGISTRY_TIMEOUT_SECONDS,
        transport=transport,
    )


def get_public_registry(
    settings: Settings = Depends(get_settings),
    transport=Depends(get_registry_transport),
) -> LinkRegistryClient:
    """Registry client for the trainee-facing calls; carries no credentials."""
    return LinkRegistryClient(
        settings.REGISTRY_BASE_URL,
        token=None,
        timeout=settings.REGISTRY_TIMEOUT_SECONDS,
        transport=transport,
    )


def get_query_cache() -> QueryCache:
    return query_cache


def get_view_reconcilers() -> ReconcilerRegistry:
    return view_reconcilers


def get_browser_markers(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> CompletionMarkerStore:
    """Marker store of the calling browser.

    A first-time browser gets a fresh id in ``request.state.new_browser_id``; the
    route sets it as a cookie on whatever response it returns.
    """
    browser_id = request.cookies.get(settings.BROWSER_COOKIE_NAME)
    if not browser_id:
        browser_id = secrets.token_urlsafe(24)
        request.state.new_browser_id = browser_id
    return CompletionMarkerStore(browser_storage, browser_id)
