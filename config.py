"""
Runtime configuration for the storybook service.
Values come from the environment (optionally a .env file at the project root).
"""

import os
import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = os.getcwd()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    database_url: str = "sqlite:///" + os.path.join(BASE_DIR, "runtime", "storybook.db")

    # Object storage
    storage_type: str = "local"  # local, s3, gcs
    storage_dir: str = os.path.join(BASE_DIR, "outputs")
    public_base_url: str = "http://localhost:5000"
    aws_s3_bucket: str = ""
    gcs_bucket: str = ""

    # OpenAI
    openai_api_key: Optional[str] = None
    model_text: str = "gpt-4o-mini"
    model_image: str = "dall-e-3"
    image_size: str = "1792x1024"
    image_quality: str = "standard"
    openai_http_timeout: float = 120.0
    proxy_url: Optional[str] = None
    ca_bundle: Optional[str] = None
    disable_ssl_verify: bool = False
    image_max_retries: int = 3

    # Flask / logging
    secret_key: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    max_content_length: int = 25 * 1024 * 1024
    log_dir: str = os.path.join(BASE_DIR, "logs")
    log_to_database: bool = False
    setup_logging: bool = True

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config from environment variables (after loading .env)."""
        load_dotenv()

        secret_key = os.getenv("SECRET_KEY")
        if not secret_key:
            logging.warning("[config] SECRET_KEY not set in .env - using random key")
            secret_key = secrets.token_urlsafe(32)

        api_key = (os.getenv("OPENAI_API_KEY") or "").strip().replace("\n", "").replace("\r", "")
        if not api_key:
            logging.warning("[config] OPENAI_API_KEY not found in environment. AI generation will fail until it is set.")

        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            storage_type=os.getenv("STORAGE_TYPE", "local").lower(),
            storage_dir=os.getenv("STORAGE_DIR", defaults.storage_dir),
            public_base_url=os.getenv("PUBLIC_BASE_URL", defaults.public_base_url).rstrip("/"),
            aws_s3_bucket=os.getenv("AWS_S3_BUCKET", ""),
            gcs_bucket=os.getenv("GCS_BUCKET", ""),
            openai_api_key=api_key or None,
            model_text=os.getenv("MODEL_TEXT", defaults.model_text),
            model_image=os.getenv("MODEL_IMAGE", defaults.model_image),
            image_size=os.getenv("IMAGE_SIZE", defaults.image_size),
            image_quality=os.getenv("IMAGE_QUALITY", defaults.image_quality),
            openai_http_timeout=float(os.getenv("OPENAI_HTTP_TIMEOUT", "120")),
            proxy_url=os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY"),
            ca_bundle=os.getenv("REQUESTS_CA_BUNDLE") or os.getenv("SSL_CERT_FILE"),
            disable_ssl_verify=_env_bool("OPENAI_DISABLE_SSL_VERIFY"),
            image_max_retries=int(os.getenv("IMAGE_MAX_RETRIES", "3")),
            secret_key=secret_key,
            max_content_length=int(os.getenv("MAX_CONTENT_LENGTH", str(25 * 1024 * 1024))),
            log_dir=os.getenv("LOG_DIR", defaults.log_dir),
            log_to_database=_env_bool("LOG_TO_DATABASE"),
        )
