# backend/config.py
"""
Configuration management for DVR Bridge Backend
Loads settings from environment variables
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 3000
    debug: bool = True

    # Device registry storage
    database_url: str = "sqlite:///./data/cameras.db"

    # CORS Settings
    cors_origins: str = "*"
    cors_allow_credentials: bool = True

    # DVR/NVR credentials used to build stream URIs
    dvr_username: str = "admin"
    dvr_password: str = ""
    dvr_ip: Optional[str] = None  # When set, channels are probed on every run
    dvr_port: int = 554

    # Discovery
    auto_discover: bool = True
    discovery_interval_seconds: int = 300  # 5 minutes
    max_cameras: int = 16

    # Scanner timeouts (seconds)
    sadp_timeout_seconds: float = 5.0
    onvif_timeout_seconds: int = 10

    # Subnet sweep (fallback when nothing else answers)
    subnet_scan_prefix: str = "192.168.1"
    port_sweep_timeout_ms: int = 300
    port_sweep_concurrency: int = 64  # Max simultaneous connection attempts

    # Access tokens for stream endpoints
    secret_key: str = "change-this-secret-key-in-production-min-32-chars"
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 60

    # Media engine (go2rtc)
    go2rtc_api_url: str = "http://localhost:1984"
    go2rtc_timeout_seconds: float = 5.0
    teardown_on_disconnect: bool = False

    # ICE servers handed to browser clients
    stun_server_urls: str = "stun:stun.l.google.com:19302"
    turn_server_url: str = ""  # e.g., "turn:turn.example.com:3478"
    turn_username: str = ""
    turn_credential: str = ""

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env file


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings
