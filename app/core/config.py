from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Boukii Payments API"
    # Comma-separated origins for CORS (e.g. https://admin.boukii.com,https://shop.boukii.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "noreply@boukii.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    ADMIN_URL: str = ""       # e.g. https://admin.boukii.com - "panel" redirects land on {ADMIN_URL}/bookings
    API_PUBLIC_URL: str = ""  # e.g. https://api.boukii.com - "app" redirects land on the finish route

    # Payrexx (per-school instance + key live on School; domain is process-wide)
    PAYREXX_API_BASE_DOMAIN: str = "payrexx.com"
    PAYREXX_TIMEOUT: int = 15
    PAYREXX_WEB_VALIDITY_MINUTES: int = 15

    DEFAULT_CURRENCY: str = "CHF"

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()
