"""
Cash desk configuration.

Every setting is read from the environment (or .env) through pydantic-settings.
Each concern gets its own group below.

DESIGN DECISION: Each group is its own BaseSettings class so a missing
spreadsheet id does not prevent the app from loading the access codes or
running against in-memory storage.
"""

import warnings
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Worksheet used for each collection of the hosted store
DEFAULT_COLLECTIONS = {
    "projects": "projects",
    "categories": "categories",
    "articles": "articles",
    "units": "units",
    "suppliers": "suppliers",
    "cash_inflow": "cash_inflow",
    "expenses": "expenses",
    "expense_items": "expense_items",
    "pca_reimbursements": "pca_reimbursements",
    "closings": "closings",
    "users": "users",
    "activity_logs": "activity_logs",
}


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    worksheet_prefix: str = Field(
        default="",
        description="Optional prefix for every worksheet name (e.g. 'test_')"
    )
    default_rows: int = Field(
        default=1000,
        ge=10,
        description="Rows allocated when a worksheet is created"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing file only warns; connect() reports the hard failure."""
        if not Path(v).exists():
            warnings.warn(
                f"Service account file {v} does not exist yet; "
                "Google Sheets storage will fail to connect until it does."
            )
        return v

    def worksheet_name(self, collection: str) -> str:
        """Worksheet title for a collection."""
        return f"{self.worksheet_prefix}{DEFAULT_COLLECTIONS.get(collection, collection)}"


class AccessSettings(BaseSettings):
    """
    Login access codes.

    Two codes are recognized: one opens an admin session,
    the other a standard user session.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        extra="ignore"
    )

    admin_code: str = Field(
        default="Admin12345",
        min_length=1,
        description="Access code granting the admin role"
    )
    user_code: str = Field(
        default="User1234",
        min_length=1,
        description="Access code granting the standard user role"
    )


class AppSettings(BaseSettings):
    """Bookkeeping and display defaults (unprefixed variables, .env aware)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    log_level: str = Field(
        default="INFO",
        description="Level for the structured local log"
    )

    # Display
    currency_label: str = Field(
        default="FCFA",
        description="Currency suffix used when formatting amounts"
    )
    history_page_size: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Rows per page in history tables"
    )

    # Reference codes
    expense_reference_stem: str = Field(
        default="DEP",
        description="Leading stem of expense reference codes"
    )
    reference_width: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Zero-padded width of the reference counter"
    )

    # Activity logging
    strict_activity_logging: bool = Field(
        default=False,
        description="Propagate activity log storage failures instead of swallowing them"
    )

    # Validation thresholds
    max_amount: float = Field(
        default=1_000_000_000.0,
        description="Maximum reasonable amount for a single entry (sanity check)"
    )


class Settings(BaseSettings):
    """Entry point holding one property per settings group."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Groups are built on access; a broken group only fails its own property

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def access(self) -> AccessSettings:
        return AccessSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; tests reset it with get_settings.cache_clear()."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try loading each settings group.

    Maps group name to a load flag, plus "<group>_error" with the message
    for groups that failed. Shown in the admin configuration panel.
    """
    results = {}
    settings = get_settings()

    checks = {
        "google_sheets": lambda: settings.google_sheets,
        "access": lambda: settings.access,
        "app": lambda: settings.app,
    }

    for name, load in checks.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
