# media_bridge/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3001

    # HTTP surface
    allowed_origins: list[str] = ["*"]
    rate_limit_per_minute: int = 120
    max_request_body_mb: int = 50  # JSON / multipart bodies above this are rejected with 413

    # Remote fetch (convert-image)
    fetch_timeout_seconds: float = 30.0        # Hard wall-clock limit for the whole transfer
    fetch_connect_timeout_seconds: float = 10.0
    fetch_max_bytes: int = 50 * 1024 * 1024    # Body cap, enforced while streaming
    fetch_max_redirects: int = 5
    fetch_chunk_size: int = 64 * 1024
    fetch_pool_limit: int = 20
    fetch_user_agent: str = "Mozilla/5.0 (compatible; media-bridge/1.0)"
    fetch_accept: str = "image/*"
    default_content_type: str = "image/jpeg"   # Used when the upstream sends no Content-Type

    # Media decryption (decrypt-media)
    # No sniffing is done on decrypted output; this is the declared type of the response.
    decrypted_content_type: str = "image/jpeg"
    decrypt_offload_threshold_bytes: int = 1024 * 1024  # Above this, decrypt in a worker thread

    # Monitoring & Metrics
    enable_metrics: bool = True
    metrics_token: str | None = None  # Bearer token for /metrics (if not set, /metrics is open)

    # SECURITY: Only set to true if behind a trusted reverse proxy
    # When false, uses direct client IP for rate limiting
    trust_proxy_headers: bool = False

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def max_request_body_bytes(self) -> int:
        return self.max_request_body_mb * 1024 * 1024

    def validate_required_for_production(self) -> list[str]:
        """Validate that settings are sane for production"""
        if not self.is_production:
            return []

        problems = []

        if self.log_level.upper() == "DEBUG":
            problems.append("log_level (DEBUG is not allowed in production)")
        if self.fetch_max_bytes <= 0:
            problems.append("fetch_max_bytes (must be positive)")
        if self.fetch_timeout_seconds <= 0:
            problems.append("fetch_timeout_seconds (must be positive)")

        return problems


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- CORS ---
    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    # --- Proxy headers trust ---
    if s.trust_proxy_headers:
        warnings.append(
            "trust_proxy_headers=True: ensure you are behind a trusted reverse proxy, "
            "otherwise X-Forwarded-For spoofing is possible."
        )

    # --- Metrics exposure ---
    if s.enable_metrics and not s.metrics_token:
        warnings.append("enable_metrics=True but metrics_token is not set: /metrics is public.")

    # --- Fetch bounds ---
    if s.fetch_timeout_seconds > 120:
        warnings.append("fetch_timeout_seconds > 120: slow upstreams can hold workers for a long time.")

    # --- Decrypted output ---
    if not s.decrypted_content_type.strip():
        warnings.append("decrypted_content_type is empty: decrypted responses will have no media type.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    problems = s.validate_required_for_production()

    if problems:
        raise RuntimeError(f"Invalid settings for production: {', '.join(problems)}")

    # Logging is not configured yet at import time
    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
