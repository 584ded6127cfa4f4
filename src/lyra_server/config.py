"""
Server configuration
"""

import os
import warnings
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_JWT_SECRET = "dev-secret-please-change-in-production"
DEFAULT_ADMIN_PASSWORD = "admin"


class Settings(BaseSettings):
    """Server configuration settings"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 3000
    public_ws_url: str | None = None

    # Authentication
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_days: int = 7

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Validate JWT secret meets security requirements"""
        env = (info.data or {}).get("environment", os.environ.get("ENVIRONMENT", "development"))
        if v == DEFAULT_JWT_SECRET and env == "production":
            raise ValueError(
                "JWT_SECRET environment variable must be set in production. "
                "Do not use the default development secret."
            )
        if len(v) < 32:
            if env == "production":
                raise ValueError(
                    "JWT secret must be at least 32 characters in production."
                )
            warnings.warn(
                "JWT secret should be at least 32 characters for security.",
                UserWarning,
            )
        return v

    # Admin console
    admin_password: str = DEFAULT_ADMIN_PASSWORD

    @field_validator("admin_password")
    @classmethod
    def validate_admin_password(cls, v: str, info) -> str:
        """Refuse the default admin password in production"""
        env = (info.data or {}).get("environment", os.environ.get("ENVIRONMENT", "development"))
        if env == "production" and (v == DEFAULT_ADMIN_PASSWORD or len(v) < 8):
            raise ValueError(
                "ADMIN_PASSWORD must be set to at least 8 characters in production."
            )
        if v == DEFAULT_ADMIN_PASSWORD:
            warnings.warn(
                "Using default ADMIN_PASSWORD - this is insecure for production.",
                UserWarning,
            )
        return v

    # Redis (optional, in-process fallback when disabled or unreachable)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_max_retries: int = 3
    redis_probe_interval: float = 10.0
    memory_sweep_interval: float = 60.0

    # Rooms
    room_ttl_seconds: int = 7 * 24 * 60 * 60
    membership_cache_ttl_seconds: float = 60.0
    membership_cache_sweep_seconds: float = 300.0

    # Rate limiting
    rate_limit_messages_per_minute: int = 300
    rate_limit_room_messages_per_minute: int = 1000
    rate_limit_http_requests_per_minute: int = 60
    rate_limit_connections_per_ip: int = 100
    connection_gauge_ttl_seconds: int = 3600
    rate_limit_fail_open: bool = True
    enforce_message_limits: bool = False

    # Logging
    log_level: str = "INFO"

    # CORS
    cors_origins: list[str] = ["*"]

    def summary(self) -> dict[str, object]:
        """Configuration summary safe to log (secrets masked)"""
        return {
            "environment": self.environment,
            "http": f"{self.host}:{self.port}",
            "redis": self.redis_url if self.redis_enabled else "disabled",
            "jwt_secret": f"{self.jwt_secret[:4]}...",
            "messages_per_minute": self.rate_limit_messages_per_minute,
            "room_messages_per_minute": self.rate_limit_room_messages_per_minute,
            "http_requests_per_minute": self.rate_limit_http_requests_per_minute,
            "connections_per_ip": self.rate_limit_connections_per_ip,
            "fail_open": self.rate_limit_fail_open,
            "log_level": self.log_level,
        }


settings = Settings()
