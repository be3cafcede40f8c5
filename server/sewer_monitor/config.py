import secrets
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    POSTGRES_DB: str = "sewermonitor"
    POSTGRES_USER: str = "sewermonitor"
    POSTGRES_PASSWORD: str = "changeme"
    POSTGRES_HOST: str = "postgres"
    DATABASE_URL: str = ""

    # App
    SECRET_KEY: str = secrets.token_hex(32)
    ENCRYPTION_KEY: str = secrets.token_hex(16)
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 3001
    ALERT_LANGUAGE: str = "en"
    TIMEZONE: str = "America/Sao_Paulo"

    # Admin
    ADMIN_PASSWORD: str = ""

    # Alert engine
    ALERT_CHECK_INTERVAL_SECONDS: int = 30
    ALERT_SUPPRESSION_MINUTES: int = 60
    SENSOR_OFFLINE_MINUTES: int = 120
    NOTIFICATION_BATCH_SIZE: int = 10

    # WhatsApp Business gateway
    WHATSAPP_ENABLED: bool = False
    WHATSAPP_API_URL: str = "https://graph.facebook.com/v19.0"
    WHATSAPP_TOKEN_ENCRYPTED: str = ""
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_SEND_TIMEOUT: float = 5.0
    # Inbound webhook: subscription handshake token and payload signing secret
    WHATSAPP_VERIFY_TOKEN: str = ""
    WHATSAPP_APP_SECRET: str = ""

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:5432/{self.POSTGRES_DB}"
        )

    @property
    def local_tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
