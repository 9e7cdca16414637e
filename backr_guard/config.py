"""backr-guard — Engine configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from backr_guard.policy.schema import RateLimitScope


class GuardSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "BACKR_GUARD_",
        "extra": "ignore",
    }

    # ── Bootstrap ──────────────────────────────────────────────
    deployer_address: str = "0x0000000000000000000000000000000000000001"

    # ── Policy behaviour ───────────────────────────────────────
    rate_limit_scope: RateLimitScope = RateLimitScope.GLOBAL
    single_use_approvals: bool = True

    # ── Event log ──────────────────────────────────────────────
    event_log_path: str | None = None

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = GuardSettings()
