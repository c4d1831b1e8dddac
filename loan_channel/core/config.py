import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Settings:
    PROJECT_NAME: str = "Loan Channel Backend"
    MONGODB_URI: str = os.getenv("MONGODB_URI")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME")
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = _int_env("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", 60)
    CLIENT_URL: str = os.getenv("CLIENT_URL", "http://localhost:3000")
    NOTIFICATION_WEBHOOK_URL: str = os.getenv("NOTIFICATION_WEBHOOK_URL")
    # Rejected applications and their customers are purged this many days later
    REJECTION_TTL_DAYS: int = _int_env("REJECTION_TTL_DAYS", 90)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
