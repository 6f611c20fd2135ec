from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    database_echo: bool = Field(False, alias="DATABASE_ECHO")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Header carrying the tenant identifier (tenant UUID or organization code)
    tenant_header: str = Field("X-Tenant-ID", alias="TENANT_HEADER")

    # Fallback fee due date when a term has none: start_date + N days
    default_due_days: int = Field(30, alias="DEFAULT_DUE_DAYS")
    overdue_high_threshold: Decimal = Field(Decimal("100000"), alias="OVERDUE_HIGH_THRESHOLD")
    overdue_medium_threshold: Decimal = Field(Decimal("50000"), alias="OVERDUE_MEDIUM_THRESHOLD")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
