from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "KYC Intake API"
    LOG_LEVEL: str = "INFO"

    # vazio -> sqlite local (dev)
    DATABASE_URL: str = ""

    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ACCESS_HOURS: int = 24
    SESSION_TTL_HOURS: int = 24

    # admin criado no arranque
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"
    ADMIN_EMAIL: str = "admin@union.clubgg"

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # IP2Location.io (reputação de IP)
    IP2LOCATION_API_KEY: str | None = None
    IP2LOCATION_URL: str = "https://api.ip2location.io/"
    IP2LOCATION_TIMEOUT_SEC: float = 5.0

    # Uploads KYC
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_MB: int = 50

    # Notificações
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SERVICE_EMAIL: str | None = None
    NOTIFY_EMAIL: str | None = None
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_CHAT_ID: str | None = None
    NOTIFY_TIMEOUT_SEC: float = 15.0

    def cors_list(self) -> list[str]:
        return [x.strip() for x in self.CORS_ORIGINS.split(",") if x.strip()]

    def smtp_configured(self) -> bool:
        return bool(self.SMTP_USER and self.SMTP_PASSWORD and self.NOTIFY_EMAIL)

    def telegram_configured(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)


settings = Settings()
