from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "PharmaStock"
    DATABASE_URL: str = "sqlite:///./pharmastock.db"
    LOG_LEVEL: str = "INFO"

    # Auth
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    # Inventory
    LOW_STOCK_THRESHOLD: int = 10
    EXPIRY_ALERT_DAYS: int = 30
    BATCH_NUMBER_PREFIX: str = "BATCH"

    # Webhook: list of callback URLs for order updates (comma-separated)
    WEBHOOK_URLS: str = ""

    model_config = {"env_file": ".env"}


settings = Settings()
