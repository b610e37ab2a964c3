from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import PostgresDsn, RedisDsn, computed_field
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    # Security: Remove default credentials - require them to be set in .env
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str = "venue_match"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432

    @computed_field
    def DATABASE_URL(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    REDIS_URL: RedisDsn = "redis://localhost:6379/0"

    # Admin endpoints (manual sweep trigger)
    ADMIN_TOKEN: Optional[str] = None
    APP_DOMAIN: Optional[str] = None
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Check-in collaborator (co-location facts)
    CHECKIN_SERVICE_URL: Optional[str] = None

    # Match lifecycle
    MATCH_WINDOW_SECONDS: int = 3 * 60 * 60  # Chat window, shared by writers, readers and the sweep
    MESSAGE_QUOTA_PER_PARTICIPANT: int = 3

    # Reconnect
    RECONNECT_REQUEST_TTL_HOURS: int = 24
    RECONNECT_REQUIRE_COLOCATION: bool = True  # False = remote reconnect allowed

    # Background jobs (expiry sweep, reconnect housekeeping)
    SCHEDULER_ENABLED: bool = True

    # Expiry sweep
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = 60
    EXPIRY_SWEEP_CLEAN: bool = False  # Also purge message history
    MESSAGE_RETENTION_HOURS: int = 0  # Min age past window before purge

    @property
    def match_window_ms(self) -> int:
        return self.MATCH_WINDOW_SECONDS * 1000

    @property
    def reconnect_request_ttl_ms(self) -> int:
        return self.RECONNECT_REQUEST_TTL_HOURS * 3600 * 1000

    @property
    def message_retention_ms(self) -> int:
        return self.MESSAGE_RETENTION_HOURS * 3600 * 1000

settings = Settings()
