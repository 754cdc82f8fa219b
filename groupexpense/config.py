import os
from dotenv import load_dotenv

load_dotenv()


def _split_origins(raw: str):
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Config:
    # Secret key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Session cookie carrying the authenticated user id
    SESSION_COOKIE_NAME = os.environ.get("SESSION_COOKIE_NAME", "groupexpense_session")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Database config (defaults allow local run without crashing)
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = int(os.environ.get("DB_PORT", 3306))
    DB_USER = os.environ.get("DB_USER", "root")
    DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
    DB_NAME = os.environ.get("DB_NAME", "groupexpense")
    DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", 10))

    CORS_ORIGINS = _split_origins(os.environ.get("CORS_ORIGINS", "http://localhost:8081,http://10.0.2.2:8081"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Number of minor-unit digits of the group currency (2 for paise / cents)
    CURRENCY_EXPONENT = int(os.environ.get("CURRENCY_EXPONENT", 2))


config = Config()
