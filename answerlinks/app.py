"""FastAPI application entry point for the Answer Link Portal."""
from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from answerlinks.auth import SESSION_COOKIE_NAME, invalidate_session
from answerlinks.config import get_settings
from answerlinks.errors import (
    AnswerLinkError,
    AnswerValidationError,
    AuthError,
    InvalidTransition,
    LinkAlreadyConsumed,
    LinkNotFound,
    NetworkError,
    NoSubjectSelected,
    RegistryError,
    TimeUp,
)
from answerlinks.services.reconciler import view_reconcilers


logger = logging.getLogger("answerlinks.web")
logging.basicConfig(level=logging.INFO)

settings = get_settings()
BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title="Answer Link Portal", debug=settings.DEBUG)

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SECRET_KEY,
    session_cookie="answerlinks_session",
    https_only=False,
)

# Only the admin origins may call back into the admin surface with credentials.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ADMIN_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    AnswerValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthError: status.HTTP_401_UNAUTHORIZED,
    NetworkError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RegistryError: status.HTTP_502_BAD_GATEWAY,
    LinkNotFound: status.HTTP_404_NOT_FOUND,
    LinkAlreadyConsumed: status.HTTP_409_CONFLICT,
    NoSubjectSelected: status.HTTP_400_BAD_REQUEST,
    InvalidTransition: status.HTTP_409_CONFLICT,
    TimeUp: status.HTTP_403_FORBIDDEN,
}


def status_for(exc: AnswerLinkError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@app.on_event("startup")
async def on_startup() -> None:
    """Log when the application starts."""
    logger.info("Answer Link Portal starting up (registry=%s)", settings.REGISTRY_BASE_URL)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """The registry refused the session's bearer token: end the session and its views."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    view_reconcilers.close_session(token)
    invalidate_session(token)
    if "text/html" in request.headers.get("accept", ""):
        login_url = f"/login?next_url={quote(request.url.path)}"
        return RedirectResponse(url=login_url, status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse({"detail": exc.message}, status_code=status.HTTP_401_UNAUTHORIZED)


@app.exception_handler(AnswerLinkError)
async def answer_link_error_handler(request: Request, exc: AnswerLinkError):
    """Translate service errors into JSON responses."""
    code = status_for(exc)
    logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message, "error": type(exc).__name__}, status_code=code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Custom HTTP exception responses."""
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        # Browsers get sent to the login page, API callers get JSON
        accept_header = request.headers.get("accept", "")
        if "text/html" in accept_header:
            return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
        detail = exc.detail or "Authentication required."
        return JSONResponse({"detail": detail}, status_code=exc.status_code)
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        detail = exc.detail or "The requested resource was not found."
    else:
        detail = exc.detail or "An error occurred while processing the request."
    return JSONResponse({"detail": detail}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        {"detail": "Internal server error. Please try again later."},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# Import routes after app, middleware, and templates are configured to avoid circular imports.
from answerlinks.routes import auth as auth_routes  # noqa: E402  pylint: disable=wrong-import-position
from answerlinks.routes import links as links_routes  # noqa: E402  pylint: disable=wrong-import-position
from answerlinks.routes import portal as portal_routes  # noqa: E402  pylint: disable=wrong-import-position

app.include_router(auth_routes.router)
app.include_router(links_routes.router, prefix="/admin")
app.include_router(portal_routes.router)
