"""
Central configuration module for Infinite Pages
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List, Dict, Tuple

from dotenv import load_dotenv

# .env files are a development convenience only
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Optional but recommended
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Public site (used for Stripe redirect URLs)
    SITE_URL: str = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")

    # CORS
    CORS_ORIGINS: List[str] = []

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLIC_KEY: Optional[str] = os.getenv("STRIPE_PUBLIC_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_CONNECT_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_CONNECT_WEBHOOK_SECRET")
    STRIPE_PRICE_BASIC_MONTHLY: str = os.getenv("STRIPE_PRICE_BASIC_MONTHLY", "price_basic_monthly")
    STRIPE_PRICE_BASIC_YEARLY: str = os.getenv("STRIPE_PRICE_BASIC_YEARLY", "price_basic_yearly")
    STRIPE_PRICE_PREMIUM_MONTHLY: str = os.getenv("STRIPE_PRICE_PREMIUM_MONTHLY", "price_premium_monthly")
    STRIPE_PRICE_PREMIUM_YEARLY: str = os.getenv("STRIPE_PRICE_PREMIUM_YEARLY", "price_premium_yearly")

    # Anthropic
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")
    AI_MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "3"))
    AI_MAX_PROMPT_LENGTH: int = int(os.getenv("AI_MAX_PROMPT_LENGTH", "50000"))
    AI_REQUEST_TIMEOUT: float = float(os.getenv("AI_REQUEST_TIMEOUT", "120"))

    # LLM response cache
    LLM_CACHE_TTL: int = int(os.getenv("LLM_CACHE_TTL", "3600"))
    LLM_CACHE_MAX_SIZE: int = int(os.getenv("LLM_CACHE_MAX_SIZE", "1000"))

    # Rate limiting (requests per minute)
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
    RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "60"))
    RATE_LIMIT_GENERATE_RPM: int = int(os.getenv("RATE_LIMIT_GENERATE_RPM", "10"))

    # Database pool
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Health checks
    HEALTHCHECK_TIMEOUT_SECONDS: int = int(os.getenv("HEALTHCHECK_TIMEOUT_SECONDS", "3"))

    # Background jobs
    ENABLE_SCHEDULER: bool = os.getenv("ENABLE_SCHEDULER", "false").lower() in ("1", "true", "yes")

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")
    BUILD_COMMIT: str = os.getenv("BUILD_COMMIT", "unknown")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._load_cors_origins()
        self._validate()

    def _load_cors_origins(self):
        """Load CORS origins from environment variable"""
        default_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_env = os.getenv("CORS_ORIGINS", "")
        if cors_env:
            env_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
            self.CORS_ORIGINS = default_origins + env_origins
        else:
            self.CORS_ORIGINS = default_origins

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "staging", "prod", "test"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'staging', 'prod' or 'test'")

        if not self.SECRET_KEY:
            errors.append("SECRET_KEY is required but not set")
        elif len(self.SECRET_KEY) < 32:
            errors.append(f"SECRET_KEY must be at least 32 characters (current: {len(self.SECRET_KEY)})")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} (got: {self.DATABASE_URL[:30]}...)")

        if self.ENV in ["staging", "prod"]:
            if not self.STRIPE_SECRET_KEY:
                errors.append(f"STRIPE_SECRET_KEY is required in {self.ENV}")
            elif not self.STRIPE_WEBHOOK_SECRET:
                errors.append(f"STRIPE_WEBHOOK_SECRET is required when Stripe is configured in {self.ENV}")
            if not self.ANTHROPIC_API_KEY:
                errors.append(f"ANTHROPIC_API_KEY is required in {self.ENV}")
            if not self.SITE_URL.startswith("https://"):
                errors.append("SITE_URL must use HTTPS in staging/production")
            if all(not origin.startswith("https://") for origin in self.CORS_ORIGINS):
                errors.append("CORS_ORIGINS must include HTTPS origins in staging/production")

        if self.AI_MAX_RETRIES < 1:
            errors.append(f"AI_MAX_RETRIES must be at least 1 (got: {self.AI_MAX_RETRIES})")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        if errors:
            print("=" * 60, file=sys.stderr)
            print(f"CONFIGURATION WARNINGS ({self.ENV} mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production mode"""
        return self.ENV == "prod"

    @property
    def is_test(self) -> bool:
        return self.ENV == "test"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    @property
    def connect_webhook_secret(self) -> Optional[str]:
        """Connect events may be signed by a separate endpoint secret"""
        return self.STRIPE_CONNECT_WEBHOOK_SECRET or self.STRIPE_WEBHOOK_SECRET

    def _price_table(self) -> Dict[Tuple[str, str], str]:
        return {
            ("basic", "monthly"): self.STRIPE_PRICE_BASIC_MONTHLY,
            ("basic", "yearly"): self.STRIPE_PRICE_BASIC_YEARLY,
            ("premium", "monthly"): self.STRIPE_PRICE_PREMIUM_MONTHLY,
            ("premium", "yearly"): self.STRIPE_PRICE_PREMIUM_YEARLY,
        }

    def stripe_price_id(self, tier: str, interval: str = "monthly") -> Optional[str]:
        """Resolve the Stripe price id for a tier and billing interval"""
        return self._price_table().get((tier, interval))

    def tier_for_price_id(self, price_id: str) -> Optional[str]:
        """Reverse lookup used when Stripe reports a subscription change"""
        for (tier, _interval), candidate in self._price_table().items():
            if candidate == price_id:
                return tier
        return None


# Create global config instance
config = Config()
