"""
service settings.

loaded from MLM_* environment variables (or a local .env file)
using pydantic-settings.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # psycopg conninfo string, e.g. "dbname=mlm user=mlm host=localhost"
    database_url: str = "dbname=mlm user=mlm password=secret host=localhost port=5432"

    placement_max_retries: int = Field(
        3,
        ge=1,
        description="Attempts made when a concurrent writer takes the resolved slot",
    )
    purchase_max_retries: int = Field(
        3,
        ge=1,
        description="Attempts made when the database aborts a purchase on a lock conflict",
    )
    max_tree_depth: int = Field(
        10000,
        ge=1,
        description="Upper bound on any parent-chain walk; exceeding it means a cycle",
    )
    credit_buyer_total_bv: bool = Field(
        False,
        description="Also credit a buyer's own total_bv on purchase",
    )
    subtree_max_depth: int = Field(6, ge=1, le=20)

    log_level: str = "INFO"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="MLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


settings = Settings()
