import os
from decimal import Decimal

from pydantic import BaseModel


# =====================================================
# SETTINGS (ENV ONLY, READ ONCE AT STARTUP)
# =====================================================

class Settings(BaseModel):
    database_url: str
    secret_key: str

    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = 7
    cookie_secure: bool = True
    cors_origins: list[str] = ["http://localhost:5173"]

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    currency: str = "INR"

    platform_commission_rate: Decimal = Decimal("0.10")
    shipping_charge: Decimal = Decimal("0.00")

    mailgun_api_key: str | None = None
    mailgun_domain: str | None = None
    email_from_name: str = "MultiMart"
    email_from_address: str | None = None

    admin_email: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is not set")

        secret_key = os.getenv("SECRET_KEY")
        if not secret_key:
            raise RuntimeError("SECRET_KEY must be set in environment variables")

        # Heroku/Render style URLs use the old scheme name.
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        mailgun_domain = os.getenv("MAILGUN_DOMAIN")
        origins = os.getenv("CORS_ORIGINS", "http://localhost:5173")

        return cls(
            database_url=database_url,
            secret_key=secret_key,
            access_token_expire_days=int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7")),
            cookie_secure=os.getenv("COOKIE_SECURE", "true").lower() == "true",
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
            razorpay_base_url=os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1"),
            currency=os.getenv("CURRENCY", "INR"),
            platform_commission_rate=Decimal(os.getenv("PLATFORM_COMMISSION_RATE", "0.10")),
            shipping_charge=Decimal(os.getenv("SHIPPING_CHARGE", "0.00")),
            mailgun_api_key=os.getenv("MAILGUN_API_KEY"),
            mailgun_domain=mailgun_domain,
            email_from_name=os.getenv("EMAIL_FROM_NAME", "MultiMart"),
            email_from_address=os.getenv(
                "EMAIL_FROM_ADDRESS",
                f"postmaster@{mailgun_domain}" if mailgun_domain else None,
            ),
            admin_email=os.getenv("ADMIN_EMAIL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
