import os
from dataclasses import dataclass
from urllib.parse import quote_plus


@dataclass(frozen=True)
class Settings:
    env: str
    port: int
    jwt_secret: str
    database_url: str

    db_pool_min: int
    db_pool_max: int
    db_idle_timeout: int
    db_connect_timeout: int
    db_statement_timeout_ms: int
    db_sslmode: str

    cors_origins: list[str]
    max_content_length: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def build_database_url() -> str:
    """
    DATABASE_URL wins when set; otherwise assemble a Postgres URL from the DB_* parts.
    Returns "" when neither is configured.
    """
    explicit = _getenv("DATABASE_URL")
    if explicit:
        return explicit
    host = _getenv("DB_HOST")
    name = _getenv("DB_NAME")
    if not host or not name:
        return ""
    user = quote_plus(_getenv("DB_USER"))
    password = quote_plus(_getenv("DB_PASSWORD"))
    port = _getenv("DB_PORT", "5432")
    auth = f"{user}:{password}@" if user else ""
    return f"postgresql+psycopg2://{auth}{host}:{port}/{name}"


def load_settings() -> Settings:
    origins = _getenv("CORS_ORIGINS", "*")
    return Settings(
        env=_getenv("ENV", "development"),
        port=_getenv_int("PORT", 8005),
        jwt_secret=_getenv("JWT_SECRET", "change-me"),
        database_url=build_database_url(),
        db_pool_min=_getenv_int("DB_POOL_MIN", 2),
        db_pool_max=_getenv_int("DB_POOL_MAX", 20),
        db_idle_timeout=_getenv_int("DB_IDLE_TIMEOUT", 60),
        db_connect_timeout=_getenv_int("DB_CONNECT_TIMEOUT", 10),
        db_statement_timeout_ms=_getenv_int("DB_STATEMENT_TIMEOUT", 30000),
        db_sslmode=_getenv("DB_SSLMODE", "require"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        # request body limit (50MB)
        max_content_length=_getenv_int("MAX_CONTENT_LENGTH", 50 * 1024 * 1024),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "ENV": s.env,
        "PORT": s.port,
        "JWT_SECRET": s.jwt_secret,
        "JWT_ALGORITHMS": ["HS256"],
        "DATABASE_URL": s.database_url,
        "DB_POOL_MIN": s.db_pool_min,
        "DB_POOL_MAX": s.db_pool_max,
        "DB_IDLE_TIMEOUT": s.db_idle_timeout,
        "DB_CONNECT_TIMEOUT": s.db_connect_timeout,
        "DB_STATEMENT_TIMEOUT": s.db_statement_timeout_ms,
        "DB_SSLMODE": s.db_sslmode,
        "CORS_ORIGINS": s.cors_origins,
        "MAX_CONTENT_LENGTH": s.max_content_length,
    }
