from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "loyalty-ledger"
    database_url: str = "sqlite+aiosqlite:///./loyalty_ledger.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # Redemption codes (delivery / deferred claims)
    redemption_code_ttl_days: int = 7
    redemption_code_length: int = 6
    redemption_code_max_attempts: int = 3

    # Transaction log pagination
    transaction_page_default: int = 50
    transaction_page_limit: int = 100

    # Reporting
    report_max_range_days: int = 90
    report_unassigned_shift_label: str = "Unassigned shift"
    report_unassigned_branch_label: str = "Unassigned branch"

    # Points programs
    default_currency: str = "MXN"

    @field_validator("default_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> str:
        normalized = str(value or "").strip().upper()
        if len(normalized) != 3 or not normalized.isalpha():
            raise ValueError("default_currency must be a three-letter currency code")
        return normalized


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
