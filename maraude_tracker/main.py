"""
Maraude Tracker - Main Application
FastAPI backend for street outreach coordination
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from maraude_tracker.config import settings
from maraude_tracker.database import engine, Base
from maraude_tracker.errors import register_exception_handlers
from maraude_tracker.models import db_models  # noqa: F401  registers the tables

from maraude_tracker.routes.auth import router as auth_router
from maraude_tracker.routes.associations import router as associations_router
from maraude_tracker.routes.users import router as users_router
from maraude_tracker.routes.maraudes import router as maraudes_router
from maraude_tracker.routes.merchants import router as merchants_router
from maraude_tracker.routes.reports import router as reports_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - create tables on startup"""
    configure_logging()

    if settings.DROP_TABLES_ON_START:
        logger.warning("DROP_TABLES_ON_START is enabled - dropping all tables")
        Base.metadata.drop_all(bind=engine)

    if settings.CREATE_TABLES_ON_START:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created")

    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    logger.info("Application shutdown")


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Street outreach (maraude) coordination platform",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

register_exception_handlers(app)

# Include routers
app.include_router(auth_router)
app.include_router(associations_router)
app.include_router(users_router)
app.include_router(maraudes_router)
app.include_router(merchants_router)
app.include_router(reports_router)


# ==================== HEALTH CHECK ====================

@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


@app.get("/health")
async def health_check():
    """Health check including a database round-trip"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }


@app.get("/api")
async def api_index():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "endpoints": {
            "auth": "/api/auth",
            "associations": "/api/associations",
            "users": "/api/users",
            "maraudes": "/api/maraudes",
            "merchants": "/api/merchants",
            "reports": "/api/reports",
        }
    }


# ==================== RUN SERVER ====================

def run() -> None:
    import uvicorn
    configure_logging()
    uvicorn.run(
        "maraude_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
