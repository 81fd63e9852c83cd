"""Configuration loading, validation and domain enums."""

from .models import (
    # Enums
    TenderStatus,
    TenderMode,
    TenderVisibility,
    TenderProcedure,
    MarketType,
    OrganizationType,
    OrganizationRole,
    OfferStatus,
    CloseReason,
    EquityLogAction,
    # Config models
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    LifecycleConfig,
    AlertsConfig,
    SchedulerConfig,
)
from .loader import ConfigError, load_app_config, validate_app_config_file

__all__ = [
    # Enums
    "TenderStatus",
    "TenderMode",
    "TenderVisibility",
    "TenderProcedure",
    "MarketType",
    "OrganizationType",
    "OrganizationRole",
    "OfferStatus",
    "CloseReason",
    "EquityLogAction",
    # Config models
    "AppConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "LifecycleConfig",
    "AlertsConfig",
    "SchedulerConfig",
    # Loaders
    "ConfigError",
    "load_app_config",
    "validate_app_config_file",
]
