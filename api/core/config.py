"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Replacement site that opted-in visitors are sent to
    new_site_host: str = "pkg.go.dev"

    # Analytics collector that receives teed request events
    collector_host: str = "teeproxy-dot-go-discovery.appspot.com"

    # Legacy documentation site the shim sits in front of
    legacy_origin: str = "http://localhost:8080"

    # Consent cookie and the query parameter that toggles it ("on"/"off")
    redirect_cookie: str = "pkggodev-redirect"
    redirect_param: str = "redirect"

    # utm_source values: attribution tag on outbound redirects, and the
    # marker the new site sends back when a user returns to the legacy site
    attribution_source: str = "godoc"
    return_marker: str = "backtogodoc"

    # Hosts starting with this prefix are API clients and never redirected
    api_host_prefix: str = "api"

    tee_enabled: bool = True
    http_timeout: float = 10.0

    debug: bool = False

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        for field in ("new_site_host", "collector_host"):
            value = getattr(self, field)
            if not value or "/" in value or "://" in value:
                raise ValueError(
                    f"{field.upper()} must be a bare host name, got {value!r}"
                )
        if not self.legacy_origin.startswith(("http://", "https://")):
            raise ValueError(
                "LEGACY_ORIGIN must be an http:// or https:// URL, "
                f"got {self.legacy_origin!r}"
            )
        return self

    @property
    def collector_url(self) -> str:
        return f"https://{self.collector_host}/"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this in tests to reset settings between test cases.
    After clearing, the next get_settings() call will create
    a fresh Settings instance with current environment variables.

    Example:
        def test_something(monkeypatch):
            monkeypatch.setenv("NEW_SITE_HOST", "example.dev")
            clear_settings_cache()
            settings = get_settings()  # Fresh instance
    """
    get_settings.cache_clear()
