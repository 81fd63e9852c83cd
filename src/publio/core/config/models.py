"""
Pydantic configuration models and domain enums for Publio.

These models provide type-safe configuration with validation for:
- Application settings
- Tender lifecycle rules
- Saved-search alert delivery
- Scheduler settings
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class TenderStatus(str, Enum):
    """Tender lifecycle status. CLOSED is terminal."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class TenderMode(str, Enum):
    """Whether the issuing organization is shown to bidders."""

    CLASSIC = "CLASSIC"
    ANONYMOUS = "ANONYMOUS"


class TenderVisibility(str, Enum):
    """Tender listing visibility."""

    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class TenderProcedure(str, Enum):
    """Procurement procedure type."""

    OPEN = "OPEN"
    SELECTIVE = "SELECTIVE"
    INVITATION = "INVITATION"
    DIRECT = "DIRECT"


class MarketType(str, Enum):
    """Market classification of a tender."""

    CONSTRUCTION = "CONSTRUCTION"
    ENGINEERING = "ENGINEERING"
    ARCHITECTURE = "ARCHITECTURE"
    SUPPLIES = "SUPPLIES"
    SERVICES = "SERVICES"
    MAINTENANCE = "MAINTENANCE"
    IT_SERVICES = "IT_SERVICES"
    OTHER = "OTHER"


class OrganizationType(str, Enum):
    """Kind of organization."""

    COMMUNE = "COMMUNE"
    ENTREPRISE = "ENTREPRISE"
    PRIVE = "PRIVE"


class OrganizationRole(str, Enum):
    """Role of a user inside an organization."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class OfferStatus(str, Enum):
    """Offer status.

    SUBMITTED, VIEWED and WITHDRAWN are stored. SHORTLISTED is only
    reported as the effective status while the shortlisted flag is set.
    """

    SUBMITTED = "SUBMITTED"
    VIEWED = "VIEWED"
    SHORTLISTED = "SHORTLISTED"
    WITHDRAWN = "WITHDRAWN"


class CloseReason(str, Enum):
    """Why a tender was closed."""

    MANUAL = "MANUAL"
    EXPIRY = "EXPIRY"


class EquityLogAction(str, Enum):
    """Kinds of entries in the equity audit trail."""

    TENDER_CREATED = "TENDER_CREATED"
    TENDER_UPDATED = "TENDER_UPDATED"
    TENDER_PUBLISHED = "TENDER_PUBLISHED"
    TENDER_CLOSED = "TENDER_CLOSED"
    IDENTITY_REVEALED = "IDENTITY_REVEALED"
    OFFER_RECEIVED = "OFFER_RECEIVED"
    OFFER_SHORTLISTED = "OFFER_SHORTLISTED"
    OFFER_UNSHORTLISTED = "OFFER_UNSHORTLISTED"
    OFFER_WITHDRAWN = "OFFER_WITHDRAWN"


# =============================================================================
# Lifecycle Configuration
# =============================================================================


class LifecycleConfig(BaseModel):
    """Business rules for tender and offer lifecycles."""

    grace_period_days: int = Field(
        default=3,
        ge=0,
        le=60,
        description="Days after the deadline during which the issuer is reminded",
    )
    auto_close_after_days: int = Field(
        default=7,
        ge=0,
        le=365,
        description="Days after the deadline before the expiry sweep closes a tender",
    )
    reveal_requires_deadline_passed: bool = Field(
        default=False,
        description="Only allow identity reveal once the submission deadline has passed",
    )
    anonymous_issuer_label: str = Field(
        default="Anonymous organization",
        description="Label shown instead of the issuer of an unrevealed anonymous tender",
    )
    anonymous_bidder_label: str = Field(
        default="Bidder #{offer_id}",
        description="Label template shown instead of a bidder on unrevealed anonymous tenders",
    )

    @field_validator("auto_close_after_days")
    @classmethod
    def auto_close_after_grace(cls, v: int, info) -> int:
        """Ensure auto close does not happen inside the grace period."""
        grace = info.data.get("grace_period_days", 0)
        if v < grace:
            raise ValueError("auto_close_after_days must be >= grace_period_days")
        return v


# =============================================================================
# Alerts Configuration
# =============================================================================


class AlertsConfig(BaseModel):
    """Saved-search alert sweep settings."""

    min_interval_hours: float = Field(
        default=12.0,
        ge=0.0,
        description="Minimum hours between two alerts for the same saved search",
    )
    lookback_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Maximum look-back window for newly published tenders",
    )
    webhook_url: str | None = Field(
        default=None,
        description="Delivery webhook (logging delivery is used when unset)",
    )
    timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Webhook request timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum delivery attempts per alert",
    )
    app_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build tender links in alerts",
    )


# =============================================================================
# Scheduler Configuration
# =============================================================================


class SchedulerConfig(BaseModel):
    """Periodic batch job settings."""

    enabled: bool = Field(
        default=True,
        description="Master scheduler enable/disable",
    )
    datastore_url: str = Field(
        default="sqlite+aiosqlite:///data/schedules.db",
        description="APScheduler data store URL",
    )
    expiry_cron: str = Field(
        default="0 2 * * *",
        description="Cron expression for the tender expiry sweep",
    )
    alerts_cron: str = Field(
        default="0 * * * *",
        description="Cron expression for the saved-search alert sweep",
    )
    timezone: str = Field(
        default="UTC",
        description="Timezone for cron expressions",
    )
    jitter_minutes: int = Field(
        default=0,
        ge=0,
        le=60,
        description="Random jitter window in minutes",
    )
    lock_ttl_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Run lock lifetime before another worker may take over",
    )

    @field_validator("expiry_cron", "alerts_cron")
    @classmethod
    def five_field_cron(cls, v: str) -> str:
        """Cron expressions must have the five standard fields."""
        if len(v.split()) != 5:
            raise ValueError(f"Invalid cron expression: {v!r}")
        return v


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite:///data/publio.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size",
    )
    busy_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="How long an SQLite writer waits for the database lock",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=Path("logs/publio.log"),
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    data_dir: Path = Field(
        default=Path("data"),
        description="Data storage directory",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)
