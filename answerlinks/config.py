"""Application configuration for the Answer Link Portal."""
from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    SECRET_KEY: str = Field(
        default="dev-secret-key",
        description="Secret key used for session signing",
    )
    STAFF_PASSWORD: str = Field(
        default="trainingadmin", description="Shared staff password for the admin surface"
    )
    DEBUG: bool = Field(default=False, description="Enable FastAPI debug mode")
    SESSION_DURATION_HOURS: int = Field(default=8, ge=1, description="Session lifetime")

    REGISTRY_BASE_URL: str = Field(
        default="http://localhost:8080/api",
        description="Base URL of the answer link registry REST API",
    )
    REGISTRY_TOKEN: str = Field(
        default="", description="Bearer token used for admin registry calls"
    )
    REGISTRY_TIMEOUT_SECONDS: float = Field(default=15.0, gt=0)

    SURVEY_PORTAL_URL: str = Field(
        default="http://localhost:3003",
        description="Public base URL of the deployed survey answer portal",
    )
    ASSESSMENT_PORTAL_URL: str = Field(
        default="http://localhost:3002",
        description="Public base URL of the deployed assessment answer portal",
    )
    ADMIN_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:8000"],
        description="Origins allowed to receive and send completion messages",
    )

    BROWSER_COOKIE_NAME: str = Field(default="browser_id")
    DEFAULT_EXPIRY_VALUE: float = Field(default=1, gt=0)
    DEFAULT_EXPIRY_UNIT: str = Field(default="days")

    model_config = {
        "env_file": ".env",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    def portal_base(self, path_segment: str) -> str:
        """Return the portal base URL for a subject path segment."""
        if path_segment == "assessment":
            return self.ASSESSMENT_PORTAL_URL.rstrip("/")
        return self.SURVEY_PORTAL_URL.rstrip("/")

    def portal_origin(self, path_segment: str) -> str:
        """Scheme, host and port of the portal, as window messages report it."""
        parts = urlsplit(self.portal_base(path_segment))
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def primary_admin_origin(self) -> str:
        return self.ADMIN_ORIGINS[0] if self.ADMIN_ORIGINS else ""


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""
    return Settings()
