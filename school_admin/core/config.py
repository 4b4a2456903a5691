# school_admin/core/config.py - Centralized settings management using Pydantic
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables
    )

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, test, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_TITLE: str = Field(default="School Admin API", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")

    # Database Configuration
    DATABASE_URL: str = Field(..., description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Pool timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")

    # JWT Configuration (tokens are issued by the external auth layer)
    JWT_SECRET: str = Field(..., min_length=32, description="JWT signing secret")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, ge=1, le=10080, description="Access token expiry")
    JWT_ISSUER: str = Field(default="school-admin", description="JWT issuer")
    JWT_AUDIENCE: str = Field(default="school-admin-users", description="JWT audience")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="CORS allowed origins"
    )

    # Security Configuration
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=15, description="BCrypt rounds")

    # Student onboarding
    INSTITUTION_EMAIL_DOMAIN: str = Field(default="school.mw", description="Domain for generated student emails")
    DEFAULT_STUDENT_PASSWORD: str = Field(default="Student@sssims2025", min_length=8, description="Initial student password")
    JUNIOR_MAX_GRADE_LEVEL: int = Field(default=2, ge=0, description="Highest grade level in the junior band")

    # Billing
    INVOICE_NUMBER_PREFIX: str = Field(default="INV", description="Invoice number prefix")
    INVOICE_SEQUENCE_WIDTH: int = Field(default=6, ge=1, le=12, description="Zero-padded invoice sequence width")
    INVOICE_DUE_DAYS: int = Field(default=30, ge=0, le=365, description="Due days when a structure has no due date")

    # Clearance
    CLEARANCE_AUTO_APPROVE: bool = Field(default=True, description="Approve requests that already meet the threshold")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string"
    )

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed_envs = ["dev", "development", "test", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite://",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a postgresql or sqlite connection string")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("INSTITUTION_EMAIL_DOMAIN")
    @classmethod
    def validate_email_domain(cls, v: str) -> str:
        v = v.strip().lstrip("@").lower()
        if not v or "." not in v:
            raise ValueError("INSTITUTION_EMAIL_DOMAIN must be a domain like 'school.mw'")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Handle comma-separated string
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def get_cors_config(self) -> dict:
        """Get CORS configuration for FastAPI"""
        return {
            "allow_origins": self.CORS_ORIGINS,
            "allow_credentials": True,
            "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "Accept", "Origin"],
        }


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise


def validate_critical_settings(current: Optional[Settings] = None) -> None:
    """Validate settings that must be sane before serving requests"""
    current = current or settings
    critical_errors = []

    if current.is_production and current.DATABASE_URL.startswith("sqlite"):
        critical_errors.append("SQLite is not supported in production")

    if current.is_production and current.DEFAULT_STUDENT_PASSWORD == "Student@sssims2025":
        critical_errors.append("DEFAULT_STUDENT_PASSWORD must be changed in production")

    if critical_errors:
        error_msg = "Critical configuration errors:\n" + "\n".join(f"  - {error}" for error in critical_errors)
        raise ValueError(error_msg)


# Validate on import
validate_critical_settings()

__all__ = ["settings", "Settings", "validate_critical_settings"]
