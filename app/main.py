from dotenv import load_dotenv

load_dotenv()

from app.core.logger import setup_logging
from app.middleware.logging import CloudRunLoggingMiddleware

# Setup Structured Logging
logger = setup_logging()
logger.info("Starting Allowlist Admin API...")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import routers
from app.api.v1 import allowlist
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.db.database import lifespan

app = FastAPI(title="Allowlist Admin API", lifespan=lifespan)  # Connects the DB on startup

# Add Logging Middleware
app.add_middleware(CloudRunLoggingMiddleware)

# CORS: Allow requests from the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Error envelope: {"requestId": ..., "error": {...}}
register_exception_handlers(app)


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "allowlist-admin-api",
        "environment": settings.ENVIRONMENT,
    }


# Include Routers
app.include_router(allowlist.router, prefix="/api/admin/allowlist", tags=["Allowlist"])
