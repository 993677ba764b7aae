# backend/skillsdb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import Base, engine
from .errors import LifecycleError

from .apps.accounts.router_public import router as accounts_public_router
from .apps.audit.router import router as audit_router
from .apps.notifications.router import router as notifications_router
from .apps.competencies.router import router as competencies_router
from .apps.development.router import router as development_router
from .apps.assessments.router import router as assessments_router
from .apps.experts.router import router as experts_router
from .apps.learning.router import router as learning_router

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


# No migration tooling; tables are created on startup unless disabled.
if os.getenv("AUTO_CREATE_TABLES", "true").lower() in {"1", "true", "yes", "on"}:
    Base.metadata.create_all(bind=engine)


app = FastAPI(title="Skills Dashboard API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "Dependency failure",
            extra={"path": request.url.path, "code": exc.code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "errors": exc.detail},
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Skills dashboard backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(accounts_public_router)
app.include_router(audit_router)
app.include_router(notifications_router)
app.include_router(competencies_router)
app.include_router(development_router)
app.include_router(assessments_router)
app.include_router(experts_router)
app.include_router(learning_router)
