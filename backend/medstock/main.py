"""
MedStock Backend: pharmaceutical inventory and order management.

ARCHITECTURE:
- FastAPI routes: auth + role checks, request parsing, response shaping
- Services: business rules; each call owns its transaction
- PostgreSQL: source of truth for stock, orders and dispensing

SAFETY MODEL:
- drugs.stock never goes negative: row locks + check constraint
- Every stock change and status transition is written to the audit log
- LLM used only for read-only questions; generated SQL is allow-listed
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medstock.api.routes import catalog, chatbot, dispensing, drugs, seller
from medstock.core.audit import AuditLog
from medstock.core.config import settings
from medstock.core.exceptions import BusinessError, DomainError, ErrorCode
from medstock.db.init_db import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: create tables and the first admin user.
    """
    try:
        logger.info("Initializing database...")
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.exception(f"Startup error: {e}")
        raise

    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Drug inventory, order approval, daily dispensing and data chatbot.",
    version=settings.VERSION,
    lifespan=lifespan,
)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ],
    max_age=600,
    expose_headers=["Content-Type", "Content-Disposition"],
)


@app.middleware("http")
async def audit_api_calls(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    AuditLog.log_api_call(
        endpoint=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        ip_address=request.client.host if request.client else "",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    return JSONResponse(
        status_code=400,
        content={"status": False, "code": ErrorCode.VALIDATION, "message": message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    error = BusinessError.server_error(exc)
    return JSONResponse(status_code=error.status_code, content=error.detail)


app.include_router(seller.router, prefix="/seller", tags=["seller"])
app.include_router(dispensing.router, prefix="/daily-dispensing", tags=["dispensing"])
app.include_router(drugs.router, prefix="/drugs", tags=["drugs"])
app.include_router(catalog.types_router, prefix="/drug-types", tags=["catalog"])
app.include_router(catalog.names_router, prefix="/drug-names", tags=["catalog"])
app.include_router(chatbot.router, prefix="/chatbot", tags=["chatbot"])


@app.get("/health")
def health():
    return {"status": "ok", "chatbot_llm": "enabled" if settings.GROQ_API_KEY else "formatter-only"}
