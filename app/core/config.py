from pydantic_settings import BaseSettings, SettingsConfigDict

# Ensure env file is loaded before Settings() reads environment variables
from app.core.env import load_env
load_env()


class Settings(BaseSettings):
    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=None,  # we load via app.core.env (ENV_FILE)
        extra="ignore",
        case_sensitive=True,
    )

    DATABASE_URL: str
    REDIS_URL: str
    RABBITMQ_URL: str
    KAFKA_BOOTSTRAP_SERVERS: str

    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int

    # Object storage (one bucket per organisation)
    USE_DUMMY_S3: bool = True  # Use local filesystem instead of real S3 (for dev)
    AWS_ACCESS_KEY_ID: str = "dummy-key-id"
    AWS_SECRET_ACCESS_KEY: str = "dummy-secret-key"
    AWS_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: str | None = None
    S3_STORAGE_PATH: str = "./storage/s3"  # Local path for dummy S3

    # Upload allow-list
    MAX_DOCUMENT_SIZE_BYTES: int = 50 * 1024 * 1024
    ALLOWED_DOCUMENT_TYPES: list[str] = [
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-powerpoint",
        "text/csv",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    ]

    # Processing worker (edge functions)
    EDGE_FUNCTIONS_URL: str = "http://localhost:54321/functions/v1"
    EDGE_FUNCTIONS_SERVICE_KEY: str = ""
    EDGE_FUNCTIONS_TIMEOUT_SECONDS: float = 30.0

    # Realtime bridge
    REALTIME_TOPIC: str = "luna.db-changes"
    REALTIME_CONSUMER_GROUP_PREFIX: str = "luna-realtime"
    REALTIME_RETRY_BASE_DELAY_SECONDS: float = 1.0
    REALTIME_RETRY_MAX_DELAY_SECONDS: float = 10.0
    REALTIME_MAX_RETRY_ATTEMPTS: int = 5
    REALTIME_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # Maintenance sweeps
    ORPHAN_DOCUMENT_MINUTES: int = 15
    STUCK_JOB_MINUTES: int = 30


settings = Settings()
