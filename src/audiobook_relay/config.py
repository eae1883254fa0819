"""Relay configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import CoverRule


class RelayConfig(BaseSettings):
    """All relay configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Server --
    host: str = "0.0.0.0"
    port: int = 7000
    public_base_url: str = ""  # empty = derive from the incoming request

    # -- Logging --
    log_level: str = "INFO"
    log_file: Path | None = None

    # -- Upstreams --
    catalog_base_url: str = "https://librivox.org/api/feed/audiobooks"
    enrichment_base_url: str = "https://openlibrary.org"
    covers_base_url: str = "https://covers.openlibrary.org"
    archive_base_url: str = "https://archive.org"
    user_agent: str = "Mozilla/5.0 (Audiobook Relay; +https://librivox.org)"

    # -- Timeouts (seconds) --
    list_timeout: float = 3.0
    fetch_timeout: float = 8.0
    relay_timeout: float = 30.0

    # -- Catalog --
    catalog_page_default: int = 50
    catalog_page_max: int = 100
    enrichment_candidates: int = 5

    # -- Scraping --
    scrape_max_depth: int = 12
    allow_scraped_site_media: bool = True

    # -- Resolution policy --
    cover_priority: str = "archive,enrichment,site"

    # -- Catalog index --
    index_max_entries: int = 10_000
    index_ttl_seconds: float = 86_400.0

    @field_validator("cover_priority")
    @classmethod
    def _check_cover_priority(cls, value: str) -> str:
        names = [part.strip() for part in value.split(",") if part.strip()]
        valid = {rule.value for rule in CoverRule}
        unknown = [n for n in names if n not in valid]
        if unknown or not names:
            raise ConfigError(f"Invalid cover_priority {value!r}: unknown rules {unknown}")
        return ",".join(names)

    @property
    def cover_rules(self) -> tuple[CoverRule, ...]:
        """Cover priority as an ordered tuple of rules."""
        return tuple(CoverRule(name) for name in self.cover_priority.split(","))

    def setup_logging(self) -> None:
        """Configure loguru for the relay."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<10} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        if self.log_file is None:
            return

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_file),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
