"""
Configuration models for the system.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

DEFAULT_DISTRICTS = [
    "Ciutat Vella",
    "Ruzafa",
    "El Pla del Real",
    "Benimaclet",
    "Algirós",
    "Campanar",
    "L'Eixample",
    "Extramurs",
    "Poblats Marítims",
]


@dataclass
class TelegramConfig:
    """Configuration for the Telegram bot."""

    bot_token: str
    admin_user_ids: List[int] = field(default_factory=list)

    def validate(self) -> bool:
        """Validate Telegram configuration."""
        if not self.bot_token or not self.bot_token.strip():
            raise ValueError("Telegram configuration must include 'bot_token'")

        for user_id in self.admin_user_ids:
            if not isinstance(user_id, int) or isinstance(user_id, bool):
                raise ValueError("Admin user ids must be integers")

        return True


@dataclass
class ListingSourceConfig:
    """Configuration for the Apify listing source."""

    api_token: str
    actor_id: str = "igolaizola~idealista-scraper"
    base_url: str = "https://api.apify.com/v2"
    location_id: str = "0-EU-ES-46"
    max_items: int = 100
    timeout: int = 90

    def validate(self) -> bool:
        """Validate listing source configuration."""
        if not self.api_token or not self.api_token.strip():
            raise ValueError("Listing source configuration must include 'api_token'")

        if not self.actor_id or not self.actor_id.strip():
            raise ValueError("Listing source configuration must include 'actor_id'")

        parsed_url = urlparse(self.base_url)
        if parsed_url.scheme not in ["http", "https"] or not parsed_url.netloc:
            raise ValueError(f"Invalid listing source base URL: {self.base_url}")

        if not isinstance(self.max_items, int) or self.max_items <= 0:
            raise ValueError("max_items must be a positive integer")

        if not isinstance(self.timeout, int) or self.timeout <= 0:
            raise ValueError("Listing source timeout must be a positive integer")

        return True


@dataclass
class SchedulerConfig:
    """Polling schedule settings."""

    interval_seconds: int = 900
    initial_delay_seconds: int = 900
    fetch_timeout_seconds: int = 120

    def validate(self) -> bool:
        """Validate scheduler configuration."""
        if not isinstance(self.interval_seconds, int) or self.interval_seconds < 60:
            raise ValueError("Polling interval must be at least 60 seconds")

        if self.initial_delay_seconds < 0:
            raise ValueError("Initial delay cannot be negative")

        if self.fetch_timeout_seconds <= 0:
            raise ValueError("Fetch timeout must be positive")

        if self.fetch_timeout_seconds >= self.interval_seconds:
            raise ValueError("Fetch timeout must be shorter than the polling interval")

        return True


@dataclass
class DispatchConfig:
    """Listing delivery settings."""

    inter_message_delay: float = 0.2
    max_retries: int = 2
    retry_delay: float = 1.0

    def validate(self) -> bool:
        """Validate dispatch configuration."""
        if self.inter_message_delay < 0:
            raise ValueError("Inter-message delay cannot be negative")

        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ValueError("max_retries must be a non-negative integer")

        if self.retry_delay < 0:
            raise ValueError("Retry delay cannot be negative")

        return True


@dataclass
class ConversationConfig:
    """Wizard session settings."""

    session_ttl_seconds: int = 1800

    def validate(self) -> bool:
        if self.session_ttl_seconds <= 0:
            raise ValueError("Session TTL must be positive")
        return True


@dataclass
class DatabaseConfig:
    """Persistence settings."""

    url: str = "sqlite:///rent_watch.db"
    echo: bool = False

    def validate(self) -> bool:
        if not self.url or "://" not in self.url:
            raise ValueError(f"Invalid database URL: {self.url}")
        return True


@dataclass
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"

    def validate(self) -> bool:
        if self.level.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Invalid log level: {self.level}")
        return True


@dataclass
class Configuration:
    """System configuration."""

    telegram: TelegramConfig
    listing_source: ListingSourceConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    districts: List[str] = field(default_factory=lambda: list(DEFAULT_DISTRICTS))
    logging: Optional[LoggingConfig] = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate system configuration."""
        if not isinstance(self.districts, list) or not self.districts:
            raise ValueError("At least one district must be configured")

        for district in self.districts:
            if not isinstance(district, str) or not district.strip():
                raise ValueError("All districts must be non-empty strings")

        if len(set(self.districts)) != len(self.districts):
            raise ValueError("District names must be unique")

        self.telegram.validate()
        self.listing_source.validate()
        self.scheduler.validate()
        self.dispatch.validate()
        self.conversation.validate()
        self.database.validate()
        if self.logging:
            self.logging.validate()

        return True
