import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    app_url: str

    whop_app_id: str
    whop_api_key: str
    whop_public_key: str
    whop_signing_secret: str
    whop_api_base: str
    whop_checkout_url: str

    openai_api_key: str
    summary_model: str
    embedding_model: str
    transcription_model: str

    pinecone_api_key: str
    pinecone_index: str

    aws_region: str
    s3_bucket_name: str
    s3_public_host: str
    aws_access_key_id: str
    aws_secret_access_key: str
    upload_dir: str

    sendgrid_api_key: str
    email_from: str

    creator_split: Decimal
    community_split: Decimal
    platform_split: Decimal

    dev_user_whop_id: str
    provider_timeout_seconds: float

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def use_s3(self) -> bool:
        return bool(self.aws_region and self.s3_bucket_name)


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)
    settings = Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./community_vault.db"),
        app_url=os.getenv("APP_URL", "http://localhost:8000").rstrip("/"),
        whop_app_id=os.getenv("WHOP_APP_ID", ""),
        whop_api_key=os.getenv("WHOP_API_KEY", ""),
        whop_public_key=os.getenv("WHOP_PUBLIC_KEY", "").replace("\\n", "\n"),
        whop_signing_secret=os.getenv("WHOP_SIGNING_SECRET", ""),
        whop_api_base=os.getenv("WHOP_API_BASE", "https://api.whop.com").rstrip("/"),
        whop_checkout_url=os.getenv("WHOP_CHECKOUT_URL", "https://whop.com/checkout"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        summary_model=os.getenv("SUMMARY_MODEL", "gpt-4o-mini"),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-large"),
        transcription_model=os.getenv("TRANSCRIPTION_MODEL", "gpt-4o-mini-transcribe"),
        pinecone_api_key=os.getenv("PINECONE_API_KEY", ""),
        pinecone_index=os.getenv("PINECONE_INDEX", ""),
        aws_region=os.getenv("AWS_REGION", ""),
        s3_bucket_name=os.getenv("S3_BUCKET_NAME", ""),
        s3_public_host=os.getenv("S3_PUBLIC_HOST", ""),
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", ""),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", ""),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
        email_from=os.getenv("EMAIL_FROM", ""),
        creator_split=_decimal_env("CREATOR_SPLIT_PERCENT", "0.89"),
        community_split=_decimal_env("COMMUNITY_SPLIT_PERCENT", "0.10"),
        platform_split=_decimal_env("PLATFORM_SPLIT_PERCENT", "0.01"),
        dev_user_whop_id=os.getenv("DEV_USER_WHOP_ID", "test_user_local"),
        provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30")),
    )

    total = settings.creator_split + settings.community_split + settings.platform_split
    if total != Decimal("1"):
        logger.warning("revenue split fractions sum to %s, expected 1.0", total)

    return settings
