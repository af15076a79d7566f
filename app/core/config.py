import os
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    # --- APP BASICS ---
    app_name: str = "Rx Lifecycle API"
    environment: str = "development"
    app_url: str = "http://localhost:3000"

    # --- DATABASE & REDIS ---
    database_url: str
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"


    # --- SECURITY ---
    secret_key: str
    access_token_expire_minutes: int = 20
    jwt_algorithm: str = "HS256"

    # 64 hex chars (32 bytes) or any passphrase, hashed down to 32 bytes
    encryption_key: str
    # Shared secret for service-to-service calls (x-internal-api-key / x-internal-secret)
    internal_api_key: str

    # --- PHARMACY (DigitalRx) ---
    digitalrx_base_url: str = "https://www.dbswebserver.com/DBSRestApi/API"
    digitalrx_vendor_name: str = "SmartRx Demo"
    digitalrx_webhook_secret: str | None = None

    # --- PAYMENTS (Authorize.Net) ---
    authnet_signature_key: str | None = None
    payment_link_ttl_days: int = 7

    http_timeout_seconds: float = 30.0
    health_check_timeout_seconds: float = 5.0

    sendgrid_api_key: str | None = None
    email_from: str = "noreply@example.com"


    def __init__(self, **values):
        super().__init__(**values)

        # Check for Railway, If we are on railway, DO NOT touch the strings.
        is_railway = os.environ.get("RAILWAY_ENVIRONMENT_ID") is not None

        # Check for Docker (Local Compose)
        is_docker = os.path.exists("/.dockerenv")

        if is_railway:
            logger.info("Railway environment detected. Using Dashboard variables as provided.")
        elif is_docker:
            logger.info("Local Docker detected. Routing traffic to service names")

            target_db = "rx_lifecycle_db"

            self.database_url = self.database_url.replace("localhost", target_db).replace("127.0.0.1", target_db)

            self.redis_url = self.redis_url.replace("localhost", "redis").replace("127.0.0.1", "redis")
            self.celery_broker_url = self.celery_broker_url.replace("localhost", "redis").replace("127.0.0.1", "redis")
            self.celery_result_backend = self.celery_result_backend.replace("localhost", "redis").replace("127.0.0.1", "redis")

        else:
            logger.info("Local environment detected. Using localhost connections.")

    @property
    def is_testing(self) -> bool:
        return self.environment == "testing"


    model_config = SettingsConfigDict(
        # System environment variables (Railway) always override the .env file (local).
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="allow",
        case_sensitive=False
    )

settings = Settings()
