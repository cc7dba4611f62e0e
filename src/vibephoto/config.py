"""
Central configuration module for VibePhoto
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional, List

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Required for all environments
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")  # Must be PostgreSQL - no default

    # Database pool
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_STATEMENT_TIMEOUT: int = int(os.getenv("DB_STATEMENT_TIMEOUT", "30000"))  # milliseconds
    DB_SSL_MODE: str = os.getenv("DB_SSL_MODE", "prefer")

    PORT: int = int(os.getenv("PORT", "8000"))

    # Public URL of this API - used to build provider webhook URLs
    APP_URL: str = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")

    # CORS
    CORS_ORIGINS: List[str] = []

    # Replicate
    REPLICATE_API_TOKEN: Optional[str] = os.getenv("REPLICATE_API_TOKEN")
    REPLICATE_USERNAME: str = os.getenv("REPLICATE_USERNAME", "vibephoto")
    REPLICATE_WEBHOOK_SECRET: Optional[str] = os.getenv("REPLICATE_WEBHOOK_SECRET")

    # Asaas
    ASAAS_API_KEY: Optional[str] = os.getenv("ASAAS_API_KEY")
    ASAAS_ENVIRONMENT: str = os.getenv("ASAAS_ENVIRONMENT", "sandbox").lower()
    ASAAS_WEBHOOK_TOKEN: Optional[str] = os.getenv("ASAAS_WEBHOOK_TOKEN")

    # Cron endpoints
    CRON_SECRET: Optional[str] = os.getenv("CRON_SECRET")
    ENABLE_SCHEDULER: bool = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"

    # Storage
    STORAGE_PROVIDER: str = os.getenv("STORAGE_PROVIDER", "local").lower()
    STORAGE_PATH: str = os.getenv("STORAGE_PATH", "./storage")
    S3_BUCKET_NAME: Optional[str] = os.getenv("S3_BUCKET_NAME") or os.getenv("AWS_S3_BUCKET")
    S3_ENDPOINT_URL: Optional[str] = os.getenv("S3_ENDPOINT_URL")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
    CLOUDFRONT_URL: Optional[str] = os.getenv("CLOUDFRONT_URL")

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

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        # SECRET_KEY is required for all environments
        if not self.SECRET_KEY:
            errors.append("SECRET_KEY is required but not set")
        elif len(self.SECRET_KEY) < 32:
            errors.append(f"SECRET_KEY must be at least 32 characters (current: {len(self.SECRET_KEY)})")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string (got: {self.DATABASE_URL[:30]}...)")

        if self.STORAGE_PROVIDER not in ["local", "s3"]:
            errors.append(f"Invalid STORAGE_PROVIDER: {self.STORAGE_PROVIDER}. Must be 'local' or 's3'")
        elif self.STORAGE_PROVIDER == "s3" and not self.S3_BUCKET_NAME:
            errors.append("S3_BUCKET_NAME is required when STORAGE_PROVIDER=s3")

        if self.ASAAS_ENVIRONMENT not in ["sandbox", "production"]:
            errors.append(f"Invalid ASAAS_ENVIRONMENT: {self.ASAAS_ENVIRONMENT}. Must be 'sandbox' or 'production'")

        # Provider credentials and webhook secrets required in staging/prod
        if self.ENV in ["staging", "prod"]:
            if not self.REPLICATE_API_TOKEN:
                errors.append("REPLICATE_API_TOKEN is required in staging/production")
            if not self.REPLICATE_WEBHOOK_SECRET:
                errors.append("REPLICATE_WEBHOOK_SECRET is required in staging/production")
            if self.ASAAS_API_KEY and not self.ASAAS_WEBHOOK_TOKEN:
                errors.append(f"ASAAS_WEBHOOK_TOKEN is required when Asaas is configured in {self.ENV}")
            if not self.CRON_SECRET:
                errors.append("CRON_SECRET is required in staging/production")
            if not self.APP_URL.startswith("https://"):
                errors.append("APP_URL must use HTTPS in staging/production")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ❌ {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        # Warn in dev
        if errors and self.ENV == "dev":
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION WARNINGS (dev mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ⚠️  {error}", file=sys.stderr)
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
    def is_staging(self) -> bool:
        """Check if running in staging mode"""
        return self.ENV == "staging"

    @property
    def asaas_base_url(self) -> str:
        """Asaas API base URL for the configured environment"""
        if self.ASAAS_ENVIRONMENT == "production":
            return "https://www.asaas.com/api/v3"
        return "https://sandbox.asaas.com/api/v3"


# Create global config instance
config = Config()
