"""
Runtime configuration for the SEO & GEO Health Checker API.
Values are read from the environment (and a local .env file when present).
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_ANALYSIS_CONFIG: Dict[str, Dict[str, float]] = {
    "seoWeights": {
        "technical": 0.4,
        "content": 0.4,
        "structure": 0.2,
    },
    "geoWeights": {
        "readability": 0.3,
        "credibility": 0.3,
        "completeness": 0.2,
        "structuredData": 0.2,
    },
    "thresholds": {
        "pageSpeedMin": 70,
        "contentLengthMin": 300,
        "headingLevels": 3,
    },
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Request budget for one class of routes."""
    max_requests: int
    window_seconds: int
    message: str


@dataclass
class Settings:
    environment: str = "development"
    version: str = "1.0.0"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    max_body_bytes: int = 10 * 1024 * 1024
    max_urls_per_request: int = 10
    reports_dir: str = "reports"
    rate_limit_enabled: bool = True
    global_limit: RateLimitPolicy = RateLimitPolicy(
        100, 15 * 60, "Too many requests from this IP, please try again later."
    )
    analysis_limit: RateLimitPolicy = RateLimitPolicy(
        5, 15 * 60, "Too many analysis requests. Please wait before starting another analysis."
    )
    validation_limit: RateLimitPolicy = RateLimitPolicy(
        50, 5 * 60, "Too many validation requests. Please slow down."
    )
    export_limit: RateLimitPolicy = RateLimitPolicy(
        20, 10 * 60, "Too many export requests. Please wait before generating more reports."
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()

        def policy(prefix: str, current: RateLimitPolicy) -> RateLimitPolicy:
            return RateLimitPolicy(
                _env_int(f"RATE_LIMIT_{prefix}_MAX", current.max_requests),
                _env_int(f"RATE_LIMIT_{prefix}_WINDOW", current.window_seconds),
                current.message,
            )

        origins = os.getenv("CORS_ORIGINS")
        return cls(
            environment=os.getenv("APP_ENV", defaults.environment),
            version=os.getenv("APP_VERSION", defaults.version),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            cors_origins=(
                [origin.strip() for origin in origins.split(",") if origin.strip()]
                if origins else defaults.cors_origins
            ),
            max_body_bytes=_env_int("MAX_BODY_BYTES", defaults.max_body_bytes),
            max_urls_per_request=_env_int("MAX_URLS_PER_REQUEST", defaults.max_urls_per_request),
            reports_dir=os.getenv("REPORTS_DIR", defaults.reports_dir),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", defaults.rate_limit_enabled),
            global_limit=policy("GLOBAL", defaults.global_limit),
            analysis_limit=policy("ANALYSIS", defaults.analysis_limit),
            validation_limit=policy("VALIDATION", defaults.validation_limit),
            export_limit=policy("EXPORT", defaults.export_limit),
        )
