"""API Configuration.

Settings for the FastAPI application and its CORS policy.
"""

from dataclasses import dataclass, field

from pmsy.settings import Settings


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "PMSY API"
    version: str = "1.0.0"
    description: str = "Project management REST backend"
    prefix: str = "/rest/v1"
    task_dependencies_prefix: str = "/api/task-dependencies"
    docs_url: str = "/docs"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    cors_methods: list[str] = field(
        default_factory=lambda: ["GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS"]
    )
    cors_headers: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_settings(cls, settings: Settings) -> "APIConfig":
        origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
        return cls(prefix=settings.api_prefix, cors_origins=origins or ["*"])


DEFAULT_API_CONFIG = APIConfig()
