import os
import logging
import threading
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

logger = logging.getLogger(__name__)

# --- SQLAlchemy Configuration ---


def get_database_url() -> str:
    """Database URL from DATABASE_URL or the DB_* variables."""
    url = os.getenv("DATABASE_URL")
    if url:
        # Default to the psycopg2 driver
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg2://", 1)
        elif url.startswith("postgresql://"):
            if "+" not in url.split("://")[0]:
                url = url.replace("postgresql://", "postgresql+psycopg2://", 1)
        return url

    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    db_name = os.getenv("DB_NAME", "gymbook")
    sslmode = os.getenv("DB_SSLMODE", "")

    auth = f"{user}:{password}" if password else user
    base_url = f"postgresql+psycopg2://{auth}@{host}:{port}/{db_name}"

    # Required for Neon and other cloud databases
    if sslmode:
        base_url += f"?sslmode={sslmode}"

    return base_url


def is_sqlite_url(url: str) -> bool:
    return str(url or "").startswith("sqlite")


def _is_serverless() -> bool:
    return bool(
        os.getenv("VERCEL")
        or os.getenv("AWS_LAMBDA_FUNCTION_NAME")
        or os.getenv("K_SERVICE")
    )


def _enable_sqlite_fk(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def build_engine(url: Optional[str] = None) -> Engine:
    url = url or get_database_url()
    if is_sqlite_url(url):
        # SQLite serializes writers itself; the busy timeout covers concurrent tests.
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(engine, "connect", _enable_sqlite_fk)
        return engine

    serverless = _is_serverless()
    try:
        pool_size = int(os.getenv("DB_POOL_SIZE", "1" if serverless else "10"))
    except Exception:
        pool_size = 1 if serverless else 10
    try:
        max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "0" if serverless else "20"))
    except Exception:
        max_overflow = 0 if serverless else 20
    try:
        return create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=1800,
            # Timestamps are stored as naive UTC
            connect_args={"options": "-c timezone=UTC"},
        )
    except Exception as e:
        logger.error(f"Error creating engine with pool options: {e}")
        return create_engine(url, pool_pre_ping=True)


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_lock = threading.Lock()


def configure(url: Optional[str] = None) -> sessionmaker:
    """(Re)binds the module-level engine and session factory."""
    global _engine, _session_factory
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = build_engine(url)
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
        return _session_factory


def get_engine() -> Engine:
    if _engine is None:
        configure()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        configure()
    return _session_factory


def SessionLocal() -> Session:
    return get_session_factory()()

