from __future__ import annotations

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pythonjsonlogger import jsonlogger

from .config import settings
from .database import Base, engine
from .errors import register_exception_handlers
from .rate_limit import limiter
from .storage import ensure_upload_root
from .contact.factory import build_contact_pipeline
from .api import (
    routes_admin,
    routes_captcha,
    routes_contact,
    routes_courses,
    routes_dashboard,
    routes_enrollments,
    routes_materials,
    routes_settings,
    routes_skills,
    routes_sliders,
    routes_subjects,
)
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from . import models as _models  # noqa: F401 - register tables

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)

_configure_logging()

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

# Seed default admin if none exists
seed_admin()

app = FastAPI(
    title="Coaching Institute API",
    version="1.0.0",
    description=(
        "Courses, enrollments and dashboards for a coaching institute, with a "
        "contact form guarded by a layered anti-abuse pipeline and server-side "
        "CAPTCHA challenges."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
register_exception_handlers(app)

# Contact anti-abuse pipeline (owns its counters and CAPTCHA challenges)
app.state.contact_pipeline = build_contact_pipeline()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_CONTACT_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


@app.middleware("http")
async def contact_security_headers(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/contact"):
        for name, value in _CONTACT_SECURITY_HEADERS.items():
            response.headers[name] = value
    return response


app.mount("/uploads", StaticFiles(directory=str(ensure_upload_root())), name="uploads")

app.include_router(auth_router)
app.include_router(routes_courses.router)
app.include_router(routes_subjects.router)
app.include_router(routes_materials.router)
app.include_router(routes_enrollments.router)
app.include_router(routes_dashboard.router)
app.include_router(routes_admin.router)
app.include_router(routes_sliders.router)
app.include_router(routes_skills.router)
app.include_router(routes_settings.router)
app.include_router(routes_contact.router)
app.include_router(routes_captcha.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"success": True, "status": "ok", "service": "coaching-institute-api", "version": "1.0.0"}


@app.get("/health", tags=["meta"])
def health() -> dict:
    return {"success": True, "status": "healthy", "environment": settings.environment}
