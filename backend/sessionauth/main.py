import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from sessionauth.core.config import require_jwt_secrets, settings
from sessionauth.core.database import ping_database
from sessionauth.core.errors import AuthError, Unauthorized
from sessionauth.core.rate_limit import limiter
from sessionauth.dependencies.auth import apply_renewed_tokens, clear_token_cookies
from sessionauth.routes.auth import router as auth_router
from sessionauth.routes.sessions import router as sessions_router
from sessionauth.routes.two_factor import router as two_factor_router
from sessionauth.routes.users import router as users_router
from sessionauth.services.email import build_email_dispatcher

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

require_jwt_secrets()

app = FastAPI(title="Session Auth")
app.state.limiter = limiter
app.state.email_dispatcher = build_email_dispatcher(settings)
logger.info(
    "Startup config: ENV=%s EMAIL_ENABLED=%s provider=%s RATE_LIMITING=%s",
    settings.ENV,
    settings.EMAIL_ENABLED,
    app.state.email_dispatcher.provider,
    settings.ENABLE_RATE_LIMITING,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


def _error_response(status_code: int, error: str, message: str, details: dict | None = None) -> JSONResponse:
    payload: dict = {"status": "error", "error": error, "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=status_code, content=payload)


def _carry_renewed_tokens(request: Request, response: JSONResponse) -> JSONResponse:
    renewed = getattr(request.state, "renewed_tokens", None)
    if renewed is not None:
        apply_renewed_tokens(response, renewed)
    return response


@app.exception_handler(AuthError)
def auth_error_handler(request: Request, exc: AuthError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    if isinstance(exc, Unauthorized):
        # Force the client back to login.
        clear_token_cookies(response)
    else:
        _carry_renewed_tokens(request, response)
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.error_code, exc.message)
    return response


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    details: dict | None = None

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    response = _error_response(exc.status_code, _error_code(exc.status_code), message, details)
    if exc.status_code == 401:
        clear_token_cookies(response)
    else:
        _carry_renewed_tokens(request, response)
    return response


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    # ctx may hold the raw exception object, which isn't JSON serialisable.
    errors = [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
    response = _error_response(422, "VALIDATION_ERROR", "Invalid request payload", {"errors": errors})
    return _carry_renewed_tokens(request, response)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):  # noqa: ARG001
    logger.warning("Rate limit exceeded: path=%s limit=%s", request.url.path, exc.detail)
    return _error_response(429, "RATE_LIMITED", "Too many requests. Please try again later.")


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_prod else str(exc) or "Internal server error"
    return _carry_renewed_tokens(request, _error_response(500, "INTERNAL_ERROR", message))


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Access-Token", "X-Refresh-Token", "X-Token-Renewed"],
)

app.include_router(auth_router)
app.include_router(two_factor_router)
app.include_router(users_router)
app.include_router(sessions_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/health/ready")
def readiness_check():
    try:
        ping_database()
    except Exception:  # noqa: BLE001
        logger.exception("Readiness check failed")
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}
