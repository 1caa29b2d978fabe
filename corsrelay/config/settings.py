"""
corsrelay Settings
Pydantic-based configuration with support for env vars and config files.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Desktop browser string sent upstream in place of the caller's User-Agent
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_FORWARD_HEADERS = ["Accept", "Accept-Language"]
DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later"


# Every section reads the same sources; alias names are the env var names
SECTION_CONFIG = SettingsConfigDict(
    env_prefix="",
    env_file=".env.local",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


def _split_csv(v):
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class ServerSettings(BaseSettings):
    """Process-level settings."""

    model_config = SECTION_CONFIG

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, ge=0, le=65535, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class RelaySettings(BaseSettings):
    """Outbound fetch settings."""

    model_config = SECTION_CONFIG

    timeout: float = Field(default=10.0, gt=0, alias="RELAY_TIMEOUT")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="RELAY_USER_AGENT")
    forward_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_FORWARD_HEADERS),
        alias="RELAY_FORWARD_HEADERS",
    )
    # Empty list disables the allow-list entirely
    allowed_domains: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        alias="RELAY_ALLOWED_DOMAINS",
    )
    max_redirects: int = Field(default=5, ge=0, alias="RELAY_MAX_REDIRECTS")

    @field_validator("forward_headers", mode="before")
    @classmethod
    def parse_forward_headers(cls, v):
        return _split_csv(v)

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def parse_allowed_domains(cls, v):
        domains = _split_csv(v)
        if isinstance(domains, list):
            return [d.lower().lstrip(".") for d in domains]
        return domains


class RateLimitSettings(BaseSettings):
    """Rate limiting settings for the forwarding path."""

    model_config = SECTION_CONFIG

    enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    window_seconds: int = Field(default=15 * 60, gt=0, alias="RATE_LIMIT_WINDOW")
    max_requests: int = Field(default=100, gt=0, alias="RATE_LIMIT_MAX_REQUESTS")
    message: str = Field(default=DEFAULT_RATE_LIMIT_MESSAGE, alias="RATE_LIMIT_MESSAGE")
    backend: Literal["memory", "redis"] = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    trust_forwarded_for: bool = Field(default=False, alias="RATE_LIMIT_TRUST_FORWARDED")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")


class HttpSettings(BaseSettings):
    """CORS and compression settings."""

    model_config = SECTION_CONFIG

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        alias="CORS_ALLOW_ORIGINS",
    )
    compression_enabled: bool = Field(default=True, alias="COMPRESSION_ENABLED")
    compression_min_size: int = Field(default=1024, ge=0, alias="COMPRESSION_MIN_SIZE")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        return _split_csv(v)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all config sections.

    Usage:
        from corsrelay.config import get_settings

        settings = get_settings()
        print(settings.server.port)
        print(settings.rate_limit.max_requests)
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    def validate_runtime(self) -> list[str]:
        """Check cross-field constraints and return a list of errors."""
        errors = []

        if any(h.lower() in ("cookie", "authorization", "host") for h in self.relay.forward_headers):
            errors.append("forward_headers may not include cookie, authorization or host")
        if self.rate_limit.backend == "redis" and not self.rate_limit.redis_url:
            errors.append("REDIS_URL is required when RATE_LIMIT_BACKEND=redis")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings (clears cache).

    Returns:
        Settings: Fresh settings instance
    """
    get_settings.cache_clear()
    return get_settings()
