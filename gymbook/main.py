"""
gymbook API
FastAPI backend for the class booking and credit ledger engine
"""

import os
import logging

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gymbook.database.connection import get_database_url
from gymbook.routers import bookings_router, credits_router
from gymbook.utils import env_flag

# Setup logging
logging.basicConfig(
    level=getattr(logging, str(os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _log_startup_config() -> None:
    # Never log credentials
    logger.info("=" * 60)
    logger.info("GYMBOOK STARTUP - Configuration")
    logger.info("=" * 60)
    if os.getenv("DATABASE_URL"):
        url = get_database_url()
        logger.info(f"DATABASE_URL: {url.split('@')[-1] if '@' in url else url.split('://')[0]}")
    else:
        logger.info(f"DB_HOST: {os.getenv('DB_HOST', 'localhost')}")
        logger.info(f"DB_NAME: {os.getenv('DB_NAME', 'gymbook')}")
        logger.info(f"DB_PASSWORD: {'***configured***' if os.getenv('DB_PASSWORD') else '(NOT SET)'}")
    logger.info(f"APP_TIMEZONE: {os.getenv('APP_TIMEZONE') or '(UTC)'}")
    logger.info(f"BOOKING_TX_MAX_ATTEMPTS: {os.getenv('BOOKING_TX_MAX_ATTEMPTS', '5')}")
    logger.info("=" * 60)


def create_app() -> FastAPI:
    app = FastAPI(
        title="gymbook API",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    allowed_origins = [
        o.strip() for o in str(os.getenv("CORS_ORIGINS", "*")).split(",") if o.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(bookings_router)
    app.include_router(credits_router)

    @app.on_event("startup")
    async def _startup_auto_migrate() -> None:
        if not env_flag("AUTO_MIGRATE", False):
            return
        try:
            from gymbook.database.migration_runner import upgrade_head

            upgrade_head(sqlalchemy_url=get_database_url())
        except Exception as e:
            logger.error(f"Auto-migration failed: {e}")
            if env_flag("AUTO_MIGRATE_REQUIRED", False):
                raise

    @app.get("/")
    async def root():
        return {"name": "gymbook API", "version": "1.0.0", "status": "running"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


_log_startup_config()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gymbook.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )
