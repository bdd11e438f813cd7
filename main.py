# main.py
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse
from api.router import router as api_router  # << use this, not api.v1.router
from apps.livechat.config import get_livechat_settings
from apps.livechat.db import init_livechat_db
from apps.livechat.error_handlers import register_error_handlers
from apps.livechat.services import get_livechat_service
from core.auth.db import setup_initial_data

# Get settings
settings = get_livechat_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Portal Live Chat API", version="1.0.0")

# Add trusted host middleware for security
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["*"]  # Configure this properly for production
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


# Redirect plain HTTP to HTTPS when running behind a proxy
class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        forwarded_proto = request.headers.get("x-forwarded-proto")
        forwarded_host = request.headers.get("x-forwarded-host")

        if forwarded_proto == "http" and forwarded_host:
            https_url = f"https://{forwarded_host}{request.url.path}"
            if request.url.query:
                https_url += f"?{request.url.query}"
            return RedirectResponse(url=https_url, status_code=301)

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app.add_middleware(HTTPSRedirectMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

register_error_handlers(app)


@app.on_event("startup")
async def startup_event():
    """Initialize database, seed the admin account and start the chat sweeper"""
    await init_livechat_db()
    await setup_initial_data()
    await get_livechat_service().start()
    logger.info("Live chat service started")


@app.on_event("shutdown")
async def shutdown_event():
    await get_livechat_service().shutdown()
    logger.info("Live chat service stopped")


app.include_router(api_router)
