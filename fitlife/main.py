import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from fitlife.api.admin import router as admin_router
from fitlife.api.notifications import router as notifications_router
from fitlife.api.push import router as push_router
from fitlife.core.config import is_push_configured, settings
from fitlife.core.database import check_db, engine, init_db
from fitlife.core.rate_limit import limiter
from fitlife.core.security import decode_access_token
from fitlife.logging import setup_logging
from fitlife.models import ErrorLog

setup_logging(level=logging.INFO)
log = logging.getLogger("fitlife")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("Push configured: %s", "yes" if is_push_configured() else "NO (set VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY)")
    yield


app = FastAPI(
    title="FitLife API",
    description="Push subscriptions and notification inbox for the FitLife PWA",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded: path=%s detail=%s", request.url.path, exc.detail)
    return _error_response(request, 429, "Too many requests")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    first = errs[0] if errs else {}
    rid = getattr(request.state, "request_id", None)
    body = {
        "error": first.get("msg") or "Invalid request.",
        "status_code": 422,
        "detail": [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs],
    }
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _member_id_from_token(request: Request) -> int | None:
    """Caller of a failed request, when it carried a valid bearer token."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    payload = decode_access_token(token.strip()) or {}
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                member_id=_member_id_from_token(request),
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace="".join(traceback.format_exception(exc))[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return JSONResponse(status_code=500, content={"error": "Unexpected server error."})


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(push_router)
app.include_router(notifications_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "database": "ok" if check_db() else "error",
        "push_configured": is_push_configured(),
    }
