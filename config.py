import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

PLACEHOLDER_VALUES = {"", "service_placeholder", "template_placeholder", "key_placeholder"}


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "course_store"

    jwt_secret: str = "supersecret"
    jwt_alg: str = "HS256"
    access_token_expire_hours: int = 24

    # The administrator identity; every other account defaults to "user"
    admin_email: str = "admin@learnsphere.com"
    default_admin_password: Optional[str] = None
    default_admin_name: str = "Admin"

    email_service_id: str = "service_placeholder"
    email_template_id: str = "template_placeholder"
    email_public_key: str = "key_placeholder"
    email_private_key: Optional[str] = None
    email_api_url: str = "https://api.emailjs.com/api/v1.0/email/send"
    email_timeout_seconds: float = 10.0

    receipts_dir: str = "receipts"
    store_name: str = "LEARNSPHERE"
    currency_symbol: str = "₹"

    cors_origins: List[str] = ["*"]
    port: int = 8000
    log_level: str = "INFO"

    @property
    def email_configured(self) -> bool:
        return not any(
            value in PLACEHOLDER_VALUES
            for value in (self.email_service_id, self.email_template_id, self.email_public_key)
        )


def get_settings() -> Settings:
    """Build settings from the process environment."""
    env = {
        "database_url": os.getenv("DATABASE_URL"),
        "database_name": os.getenv("DATABASE_NAME"),
        "jwt_secret": os.getenv("JWT_SECRET"),
        "access_token_expire_hours": os.getenv("ACCESS_TOKEN_EXPIRE_HOURS"),
        "admin_email": os.getenv("ADMIN_EMAIL"),
        "default_admin_password": os.getenv("DEFAULT_ADMIN_PASSWORD"),
        "default_admin_name": os.getenv("DEFAULT_ADMIN_NAME"),
        "email_service_id": os.getenv("EMAIL_SERVICE_ID"),
        "email_template_id": os.getenv("EMAIL_TEMPLATE_ID"),
        "email_public_key": os.getenv("EMAIL_PUBLIC_KEY"),
        "email_private_key": os.getenv("EMAIL_PRIVATE_KEY"),
        "email_api_url": os.getenv("EMAIL_API_URL"),
        "receipts_dir": os.getenv("RECEIPTS_DIR"),
        "store_name": os.getenv("STORE_NAME"),
        "currency_symbol": os.getenv("CURRENCY_SYMBOL"),
        "port": os.getenv("PORT"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    origins = os.getenv("CORS_ORIGINS")
    if origins:
        env["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    return Settings(**{k: v for k, v in env.items() if v is not None})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
