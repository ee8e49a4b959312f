"""Configuration management using pydantic-settings"""

import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator, field_validator
from typing import Optional


VALID_BLOB_BACKENDS = ("local", "http")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server Configuration
    port: int = 8787
    host: str = "0.0.0.0"
    base_url: str = Field(default="http://localhost:8787", description="Public base URL used to build links")
    cors_origin: str = Field(default="*", description="Allowed CORS origin for /api/*")

    # Application Configuration
    environment: str = Field(default="production", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="error", description="Log level: debug, info, warning, error (default: error for production)")

    # File Lifecycle Configuration
    max_file_size: int = Field(default=100 * 1024 * 1024, description="Maximum upload size in bytes")
    default_file_ttl: int = Field(default=86400, description="Default file lifetime in seconds")
    pending_upload_ttl: int = Field(default=900, description="Grace TTL for unfinished uploads in seconds")
    presigned_url_ttl: int = Field(default=3600, description="Lifetime of upload links in seconds")
    strict_download_limit: bool = Field(default=True, description="Decrement download counters with compare-and-swap")
    cas_max_attempts: int = Field(default=5, description="Compare-and-swap attempts before giving up")
    password_hash_iterations: int = Field(default=200_000, description="PBKDF2 iterations for file passwords")

    # Redis Configuration (metadata store)
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_timeout: float = 5.0
    disable_redis: bool = False

    # Blob Storage Configuration
    blob_storage_backend: str = Field(default="local", description="Blob backend: local or http")
    blob_storage_path: str = Field(default="./data/blobs", description="Root directory for the local backend")
    blob_api_url: Optional[str] = Field(default=None, description="Object endpoint for the http backend")
    blob_api_token: Optional[str] = Field(default=None, description="Bearer token for the http backend")
    blob_timeout: int = Field(default=30, description="HTTP blob request timeout in seconds")
    blob_retry_attempts: int = Field(default=3, description="Retry attempts for HTTP blob requests")

    # Orphan Cleanup Configuration
    orphan_cleanup_enabled: bool = True
    orphan_cleanup_interval_minutes: int = 30
    orphan_grace_seconds: int = 3600

    @field_validator("redis_password", "blob_api_url", "blob_api_token", mode="before")
    @classmethod
    def empty_string_to_none(cls, v):
        """Convert empty strings to None for optional fields"""
        if v == "" or v is None:
            return None
        return v

    @field_validator("blob_storage_backend", mode="before")
    @classmethod
    def validate_blob_backend(cls, v):
        """Normalize and validate the blob backend name"""
        value = str(v).strip().lower()
        if value not in VALID_BLOB_BACKENDS:
            raise ValueError(
                f"blob_storage_backend must be one of {', '.join(VALID_BLOB_BACKENDS)}, got '{v}'"
            )
        return value

    @field_validator(
        "max_file_size",
        "default_file_ttl",
        "pending_upload_ttl",
        "presigned_url_ttl",
        "cas_max_attempts",
        "password_hash_iterations",
        "blob_retry_attempts",
    )
    @classmethod
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @model_validator(mode="after")
    def validate_http_backend(self) -> "Settings":
        """The http backend needs an endpoint"""
        if self.blob_storage_backend == "http" and not self.blob_api_url:
            raise ValueError("blob_api_url is required when blob_storage_backend is 'http'")
        return self

    @model_validator(mode="after")
    def set_environment_defaults(self) -> "Settings":
        """Set environment-specific defaults for log level"""
        if self.environment == "production" and not os.getenv("LOG_LEVEL"):
            # Default to error in production if not explicitly set
            self.log_level = "error"
        return self


# Global settings instance
settings = Settings()
