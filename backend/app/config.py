from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./parley.db"
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis — cross-process presence mirror only.
    # Set to empty string to disable Redis (presence stays process-local).
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PRESENCE_TTL: int = 300  # seconds — key expires if heartbeat stops

    # Namespaces Redis keys when several deployments share one Redis.
    SERVER_DOMAIN: str = "localhost"

    # Opaque WebRTC negotiation blobs above this size are refused by the relay.
    MAX_SIGNAL_PAYLOAD_BYTES: int = 65_536

    model_config = {"env_file": ".env"}


settings = Settings()
