"""
Aurora Treasury Configuration

Every setting comes from the environment (or a .env file) through
pydantic-settings, one class per concern:

- TreasurySettings: club rules (dues, payee, deadlines, reference codes)
- AppSettings: upload limits and runtime flags
- CloudinarySettings / GoogleSheetsSettings: external service credentials

Service credentials are only loaded when a service is wired, so the
workflows run (and are tested) with none of them set.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Object storage for payment screenshots, bills and payout proofs."""

    model_config = SettingsConfigDict(env_prefix="CLOUDINARY_", extra="ignore")

    cloud_name: str = Field(..., description="Cloudinary account (cloud) name")
    api_key: str = Field(..., description="API key of the upload account")
    api_secret: str = Field(..., description="API secret of the upload account")
    folder: str = Field(
        default="aurora-treasury",
        description="Top-level folder; each attachment kind gets a subfolder"
    )


class GoogleSheetsSettings(BaseSettings):
    """Spreadsheet the activity log is mirrored to."""

    model_config = SettingsConfigDict(env_prefix="GOOGLE_SHEETS_", extra="ignore")

    credentials_path: str = Field(..., description="Service account key file (JSON)")
    spreadsheet_id: str = Field(..., description="Key of the club's treasury spreadsheet")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet holding one row per activity-log event"
    )

    @field_validator("credentials_path")
    @classmethod
    def warn_if_key_missing(cls, v: str) -> str:
        # Secrets are often mounted after the settings are read
        if not Path(v).exists():
            warnings.warn(f"Service account key {v} does not exist yet")
        return v


class TreasurySettings(BaseSettings):
    """
    Club treasury rules.

    Read-only from the workflows' point of view; the treasurer changes
    these through the settings store, not through requests.
    """

    model_config = SettingsConfigDict(
        env_prefix="TREASURY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    treasurer_upi: Optional[str] = Field(
        default=None,
        description="Treasurer's UPI handle (e.g. name@upi)"
    )
    payee_name: str = Field(
        default="AuroraTreasury",
        max_length=100,
        description="Payee name shown in the payment app"
    )

    # Monthly dues per year tier (INR)
    first_year_amount: Decimal = Field(default=Decimal("50"), ge=0)
    second_year_amount: Decimal = Field(default=Decimal("100"), ge=0)
    third_year_amount: Decimal = Field(default=Decimal("150"), ge=0)
    fourth_year_amount: Decimal = Field(default=Decimal("200"), ge=0)

    payment_deadline_day: int = Field(
        default=5,
        ge=1,
        le=28,
        description="Day of the month dues are due"
    )

    # Reference codes
    fund_kind_code: str = Field(
        default="01",
        pattern=r"^\d{2}$",
        description="Two-digit kind code embedded in fund references"
    )
    reference_max_attempts: int = Field(
        default=5,
        ge=1,
        le=60,
        description="How many one-second bumps before giving up"
    )
    reference_filler: str = Field(
        default="x",
        min_length=1,
        max_length=1,
        description="Character used to mask reference tails for members"
    )

    # What happens to a Pending payment after its deadline. The core never
    # schedules; an external scheduler calls PaymentWorkflow.expire().
    payment_expiry_policy: Literal["retain", "auto_fail"] = Field(
        default="retain",
        description="retain: stays Pending; auto_fail: scheduler may fail it"
    )

    reimbursement_max_amount: Decimal = Field(
        default=Decimal("100000"),
        gt=0,
        description="Largest single reimbursement claim (INR)"
    )



class AppSettings(BaseSettings):
    """Runtime flags and attachment limits."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(default="development", description="Deployment name")
    debug_mode: bool = Field(default=False, description="Verbose local logging")

    max_upload_size_mb: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Largest attachment accepted, in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp",
        description="Image extensions accepted for screenshots and proofs"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",") if fmt.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    All settings, each group read from the environment on access.

    A deployment without Cloudinary or Sheets credentials only fails
    when something asks for that group.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def treasury(self) -> TreasurySettings:
        return TreasurySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide Settings. get_settings.cache_clear() forces a reload."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Startup check: which settings groups load.

    Returns {group: loaded}, plus {group}_error with the reason for each
    group that did not.
    """
    settings = get_settings()
    results = {}
    for name in ("treasury", "app", "cloudinary", "google_sheets"):
        try:
            getattr(settings, name)
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
        else:
            results[name] = True
    return results
