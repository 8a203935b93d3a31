"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Rebate Wearables"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str = ""  # postgres connection string for asyncpg

    # --- Clerk ---
    clerk_jwks_url: str = "https://api.clerk.com/v1/jwks"

    # --- Providers ---
    garmin_consumer_key: str = ""
    garmin_consumer_secret: str = ""
    oura_client_id: str = ""
    oura_client_secret: str = ""

    # --- Credentials at rest ---
    token_encryption_key: str = ""  # Fernet key, urlsafe base64 (32 bytes)

    # --- OAuth redirects ---
    app_url: str = "http://localhost:3000"
    connect_page_path: str = "/employee/connect"
    handshake_ttl_seconds: int = 600

    # --- Outbound HTTP ---
    http_timeout_seconds: float = 15.0

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def secure_cookies(self) -> bool:
        return self.environment == "production"

    def callback_url(self, source: str) -> str:
        return f"{self.app_url.rstrip('/')}/api/v1/integrations/{source}/callback"

    def connect_page_url(self) -> str:
        return f"{self.app_url.rstrip('/')}{self.connect_page_path}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
