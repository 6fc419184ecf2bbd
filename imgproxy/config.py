# imgproxy/config.py
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from imgproxy.core.validator import MAX_REDIRECTS, AllowedHostSet


class Settings(BaseSettings):
    """Environment / .env driven settings (names are case-insensitive)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Runtime
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    enable_request_logging: bool = True

    # Browser access
    allowed_origins: list[str] = ["*"]
    rate_limit_per_minute: int = 120

    # /metrics: METRICS_TOKEN if set, otherwise INTERNAL_NETWORKS only
    enable_metrics: bool = True
    metrics_token: str | None = None
    internal_networks: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    # Honour X-Forwarded-For / X-Real-IP. Only behind a reverse proxy that overwrites them.
    trust_proxy_headers: bool = False

    # Upstream targets: exact hostnames, comma-separated. No wildcards, no subdomains.
    proxy_allowed_hosts: str = "images.unsplash.com,plus.unsplash.com"
    proxy_max_redirects: int = MAX_REDIRECTS

    # Outbound request headers (Referer is always the upstream's own origin)
    proxy_user_agent: str = "HomesHub/1.0 (+https://localhost)"
    proxy_accept: str = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"

    # Per-hop limits
    proxy_connect_timeout_seconds: float = 5.0
    proxy_hop_timeout_seconds: float = 30.0   # whole hop, body included
    proxy_read_timeout_seconds: float = 15.0  # longest silence between body reads
    proxy_chunk_size: int = 64 * 1024
    proxy_pool_limit: int = 50

    @field_validator("proxy_max_redirects")
    @classmethod
    def _cap_redirects(cls, value: int) -> int:
        # May tighten the redirect bound, never loosen it
        if not 0 <= value <= MAX_REDIRECTS:
            raise ValueError(f"proxy_max_redirects must be between 0 and {MAX_REDIRECTS}")
        return value

    @field_validator("proxy_chunk_size")
    @classmethod
    def _positive_chunk(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("proxy_chunk_size must be positive")
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def allowed_host_set(self) -> AllowedHostSet:
        return AllowedHostSet.from_csv(self.proxy_allowed_hosts)

    def validate_required_for_production(self) -> list[str]:
        """Names of settings that must be non-empty in prod but are not"""
        if not self.is_production:
            return []
        required = {"proxy_allowed_hosts": bool(self.allowed_host_set)}
        return [name for name, present in required.items() if not present]


def warn_on_risky_config(s: Settings) -> list[str]:
    """Human-readable warnings for settings that work but are probably wrong"""
    checks = [
        (not s.allowed_host_set,
         "proxy_allowed_hosts is empty: every proxy request will be rejected."),
        (s.is_production and s.allowed_origins == ["*"],
         "prod: allowed_origins=['*'] lets any site embed proxied images."),
        (s.trust_proxy_headers,
         "trust_proxy_headers=True: without a reverse proxy that overwrites X-Forwarded-For, "
         "clients can spoof their address and dodge the rate limit."),
        (s.enable_metrics and not s.metrics_token,
         "enable_metrics=True without metrics_token: /metrics relies on internal_networks alone."),
        (not s.internal_networks.strip(),
         "internal_networks is empty: /metrics is unreachable without a token."),
        (s.proxy_read_timeout_seconds > s.proxy_hop_timeout_seconds,
         "proxy_read_timeout_seconds exceeds proxy_hop_timeout_seconds and will never fire."),
    ]
    return [message for failed, message in checks if failed]


def validate_or_warn(s: Settings) -> None:
    """Raise on missing production settings; log warnings for the rest."""
    from imgproxy.infra.logging_config import get_logger

    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    logger = get_logger(__name__)
    for message in warn_on_risky_config(s):
        logger.warning("[config] %s", message)


settings = Settings()
validate_or_warn(settings)
