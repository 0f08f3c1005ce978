from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "circuitguard"
    ENVIRONMENT: str = "development"  # "development", "staging" or "production"

    # Durable store (shared by all instances)
    CIRCUIT_BREAKER_POSTGRES_URL: str = "sqlite:///:memory:"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30  # seconds to wait for a pooled connection
    DB_CONNECT_TIMEOUT: int = 10  # seconds
    DB_STATEMENT_TIMEOUT: str = "5s"

    # Circuit breaker policy
    CIRCUIT_FAILURE_THRESHOLD: float = 0.5  # 50% failure rate
    CIRCUIT_RECOVERY_TIMEOUT_MS: int = 30000  # 30 seconds
    CIRCUIT_HALF_OPEN_MAX_TRIALS: int = 3
    CIRCUIT_HALF_OPEN_TIMEOUT_MS: int = 60000  # 0 disables the HALF_OPEN -> OPEN revert

    # Connection health tracking
    STORAGE_RECONNECT_COOLDOWN_MS: int = 5000
    STORAGE_DEGRADED_REPORT_EVERY: int = 10

    # Background status refresh
    STATUS_REFRESH_INTERVAL_SECONDS: int = 60

    # Event reporting
    SECURITY_EVENT_WEBHOOK_URL: str = ""  # e.g. https://example.com/api/security/log-event
    SECURITY_EVENT_WEBHOOK_TIMEOUT: float = 5.0
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
