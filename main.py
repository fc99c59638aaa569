"""
Wellness companion backend - API, rate limiting and scheduled jobs
"""

from pathlib import Path
import logging
import traceback

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Import routers
from auth import auth_router
from routers.billing_router import billing_router
from routers.personalization_router import personalization_router
from routers.subscription_router import subscription_router
from routers.tracking_router import tracking_router
from utils.rate_limit import (
    RateLimiterMiddleware,
    ALL_RATE_LIMITERS,
    ai_chat_rate_limiter,
    auth_rate_limiter,
    general_rate_limiter,
)
from jobs.scheduler import start_scheduler, stop_scheduler, get_scheduler_status
from database import init_db
from config.settings import settings

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

from backend.utils.responses import success_response

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI(title="Wellness Companion API")


def _is_render_env() -> bool:
    """Check if running in Render.com environment"""
    return bool(settings.render or settings.render_external_url or settings.render_service_name)


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "Internal Server Error"}
            )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # API only serves JSON
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Only set in production (Render environment) where HTTPS is guaranteed
        if _is_render_env():
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


# Middleware added last runs first: general limit, then auth / chat limits
app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware, limiter=ai_chat_rate_limiter, path_prefixes=("/api/chat",))
app.add_middleware(
    RateLimiterMiddleware,
    limiter=auth_rate_limiter,
    path_prefixes=("/api/auth/login", "/api/auth/signup"),
)
app.add_middleware(RateLimiterMiddleware, limiter=general_rate_limiter, path_prefixes=("/api",))
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================
@app.on_event("startup")
async def initialize_database():
    """Create all tables."""
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@app.on_event("startup")
async def start_background_work():
    """Rate-limit sweeps always; recurring jobs unless ENABLE_SCHEDULER is off."""
    for limiter in ALL_RATE_LIMITERS:
        limiter.start_cleanup()
    if settings.enable_scheduler:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")


@app.on_event("shutdown")
async def stop_background_work():
    stop_scheduler()
    for limiter in ALL_RATE_LIMITERS:
        await limiter.stop_cleanup()


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(auth_router)
app.include_router(billing_router)
app.include_router(subscription_router)
app.include_router(tracking_router)
app.include_router(personalization_router)


@app.get("/health")
async def health():
    return success_response({"scheduler": get_scheduler_status()})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
