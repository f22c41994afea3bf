"""Shared configuration management for the parts ledger.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="parts-ledger",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Remote list store selection
    store_provider: Literal["graph", "memory"] = Field(
        default="graph",
        description="List store backend: graph (SharePoint lists over Graph API), memory (tests)",
    )

    # Microsoft Graph configuration (for store_provider="graph")
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Graph API base URL",
    )
    graph_site_id: str = Field(
        default="",
        description="SharePoint site identifier (hostname,site-guid,web-guid)",
    )
    graph_access_token: str = Field(
        default="",
        description="Bearer token for Graph calls (use env var APP_GRAPH_ACCESS_TOKEN)",
    )
    graph_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout for Graph calls",
        gt=0,
    )

    # List names
    parts_list_name: str = Field(default="simt_Parts", description="Parts list name")
    buyers_list_name: str = Field(default="simt_Buyers", description="Buyers list name")
    invoices_list_name: str = Field(default="simt_Invoices", description="Invoices list name")
    transactions_list_name: str = Field(
        default="simt_Transactions",
        description="Stock movement (ledger) list name",
    )

    # Query cache
    cache_enabled: bool = Field(
        default=True,
        description="Cache list/get reads in process; disable to always hit the store",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        description="Maximum age of a cached read",
        gt=0,
    )
    cache_max_entries: int = Field(
        default=100,
        description="Maximum number of cached reads kept in memory",
        ge=1,
    )

    # Invoice lifecycle
    draft_finalize_enabled: bool = Field(
        default=True,
        description="Allow the create-draft-then-finalize flow",
    )
    direct_finalize_enabled: bool = Field(
        default=True,
        description="Allow the create-and-finalize flow that skips Draft",
    )
    oversell_policy: Literal["warn", "reject"] = Field(
        default="warn",
        description=(
            "Selling more than on hand: warn (record shortfall, clamp at zero) "
            "or reject (fail before any ledger write)"
        ),
    )
    invoice_lock_enabled: bool = Field(
        default=True,
        description="Serialize finalize/void/pay per invoice id within this process",
    )

    # Reporting
    low_stock_threshold: int = Field(
        default=5,
        description="Parts at or below this on-hand level (and above zero) count as low stock",
        ge=0,
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
