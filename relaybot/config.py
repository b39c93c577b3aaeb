from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Telegram settings
    BOT_TOKEN: str | None = None
    SUPERGROUP_ID: int | None = None
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    TELEGRAM_TIMEOUT_S: float = 10.0
    WEBHOOK_SECRET: str | None = None  # matched against X-Telegram-Bot-Api-Secret-Token

    # Turnstile settings
    TURNSTILE_SITE_KEY: str | None = None
    TURNSTILE_SECRET_KEY: str | None = None
    TURNSTILE_VERIFY_URL: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

    # Public host serving the verification page
    WORKER_DOMAIN: str | None = None

    # Redis settings (REDIS_URL wins, otherwise derived from Upstash credentials)
    REDIS_URL: str | None = None
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # =================================================================
    # RELAY TUNABLES
    # =================================================================
    TICKET_TTL_S: int = 300  # 5 minutes
    TICKET_SCAN_LIMIT: int = 100
    VERIFIED_TTL_S: int = 604800  # 7 days
    BATCH_TTL_S: int = 60
    BATCH_FLUSH_DELAY_S: float = 2.0
    EDIT_CONFIRM_DELAY_S: float = 1.0
    REACTION_MAX_RETRIES: int = 3
    REACTION_BACKOFF_S: float = 0.5
    THREAD_ICON_COLOR: int = 0x6FB9F0
    SHUTDOWN_DRAIN_TIMEOUT_S: float = 15.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def verify_base_url(self) -> str:
        """Base URL of the verification page, e.g. https://bot.example.com/verify"""
        domain = (self.WORKER_DOMAIN or "localhost:8000").strip().rstrip("/")
        if domain.startswith("http://") or domain.startswith("https://"):
            return f"{domain}/verify"
        return f"https://{domain}/verify"

    def get_redis_url(self) -> str:
        """
        Resolve the Redis connection URL.

        Upstash exposes a REST URL; the native protocol lives on the same host,
        e.g. https://redis-12345.upstash.io -> rediss://default:<token>@redis-12345.upstash.io:6379
        """
        if self.REDIS_URL:
            return self.REDIS_URL

        if not self.UPSTASH_REDIS_REST_URL:
            return "redis://localhost:6379/0"

        rest_url = self.UPSTASH_REDIS_REST_URL.strip()
        parsed = urlparse(rest_url)
        host = parsed.hostname
        if not host:
            host = urlparse(f"https://{rest_url}").hostname

        if not host:
            raise ValueError("UPSTASH_REDIS_REST_URL does not include a valid hostname")

        return f"rediss://default:{self.UPSTASH_REDIS_REST_TOKEN}@{host}:6379"

    def config_presence(self) -> dict[str, bool]:
        """Which pieces of required configuration are present."""
        return {
            "bot_token": bool(self.BOT_TOKEN),
            "supergroup_id": self.SUPERGROUP_ID is not None,
            "turnstile": bool(self.TURNSTILE_SITE_KEY and self.TURNSTILE_SECRET_KEY),
            "worker_domain": bool(self.WORKER_DOMAIN),
        }


settings = Settings()
