from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Wallet Auth API"
    # Application settings
    PORT: int = 8000
    HOST: str = "127.0.0.1"
    VERSION: str = "1.0.0"

    # SSL settings
    SSL_KEY: str | None = None
    SSL_CERT: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text | json

    # Login configuration
    ENCODE_KEY: str | None = None
    ENCODE_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 86400 # 24 hours
    NONCE_EXPIRY_SECONDS: int = 300 # 5 minutes
    TIMESTAMP_TOLERANCE_SECONDS: int = 120 # 2 minutes
    DEFAULT_ROLE: str = "user"
    USER_ID_HASH_LENGTH: int = 16

    # Nonce persistence: memory | sql | redis
    NONCE_BACKEND: str = "memory"

    # SQLAlchemy database URL (sql nonce backend)
    DATABASE_URL: str = "sqlite:///./wallet_auth.db"

    # Redis settings (redis nonce backend)
    REDIS_HOST: str | None = None
    REDIS_PORT: int = 6379
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SSL: bool = False
    REDIS_KEY_PREFIX: str = "auth:nonce:"

    # Flow access node
    FLOW_ACCESS_NODE: str | None = None  # defaults to the public node of FLOW_NETWORK
    FLOW_NETWORK: str = "testnet"  # mainnet | testnet
    FLOW_REQUEST_TIMEOUT_SECONDS: float = 10.0
    FLOW_REQUEST_RETRIES: int = 2
    FLOW_SIGNATURE_WEIGHT_THRESHOLD: int = 1000

    # Debug settings
    DEBUG: bool = False
    DOC_PASSWORD: str | None = None

    class Config:
        env_file = ".env"

# Instantiate the settings
settings = Settings()
