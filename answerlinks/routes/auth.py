"""Staff sign-in: a password plus the registry bearer token the session will use."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import RedirectResponse

from answerlinks.app import templates
from answerlinks.auth import (
    SESSION_COOKIE_NAME,
    cleanup_expired_sessions,
    create_session,
    invalidate_session,
    verify_password,
)
from answerlinks.config import Settings
from answerlinks.dependencies import get_optional_session, get_settings, get_view_reconcilers
from answerlinks.flash import consume_flashes, flash
from answerlinks.services import ReconcilerRegistry

logger = logging.getLogger("answerlinks.routes.auth")

router = APIRouter()


def _admin_target(next_url: Optional[str]) -> str:
    """Where to land after sign-in; only admin pages of this app are accepted."""
    if next_url and next_url.startswith("/admin") and "//" not in next_url:
        return next_url
    return "/admin"


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/login")
async def login_page(
    request: Request,
    next_url: Optional[str] = None,
    session_token: str | None = Depends(get_optional_session),
    settings: Settings = Depends(get_settings),
):
    cleanup_expired_sessions()
    if session_token:
        return _redirect(_admin_target(next_url))

    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "page_title": "Login",
            "next_url": _admin_target(next_url),
            "token_configured": bool(settings.REGISTRY_TOKEN),
            "messages": consume_flashes(request),
            "debug": settings.DEBUG,
        },
    )


@router.post("/login")
async def login_submit(
    request: Request,
    password: str = Form(...),
    api_token: str = Form(""),
    next_url: str = Form("/admin"),
    settings: Settings = Depends(get_settings),
):
    """Open a session bound to the submitted registry token, or the configured one."""
    cleanup_expired_sessions()

    if not verify_password(password):
        flash(request, "Invalid password. Please try again.", "error")
        return _redirect("/login")

    registry_token = api_token.strip() or settings.REGISTRY_TOKEN
    if not registry_token:
        flash(request, "A registry token is required to manage answer links.", "error")
        return _redirect("/login")

    token = create_session(registry_token)
    response = _redirect(_admin_target(next_url))
    max_age = settings.SESSION_DURATION_HOURS * 3600
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=max_age,
        expires=max_age,
        httponly=True,
        samesite="lax",
        secure=False,
    )
    logger.info("Staff session opened")
    return response


@router.get("/logout")
async def logout(
    request: Request,
    reconcilers: ReconcilerRegistry = Depends(get_view_reconcilers),
):
    """End the session and stop listening for completions on its admin views."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        closed = reconcilers.close_session(token)
        invalidate_session(token)
        logger.info("Staff session closed (%d open views)", closed)
    response = _redirect("/login")
    response.delete_cookie(SESSION_COOKIE_NAME)
    flash(request, "You have been logged out.", "info")
    return response
