"""Exception handlers for FastAPI application."""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agenthub.core.logging import get_logger, request_context

logger = get_logger(__name__)


def http_status_to_code(status_code: int) -> str:
    """Map HTTP status to the envelope error code."""
    return f"E{status_code}0"


def build_error_envelope(
    *,
    code: str,
    message: str,
    request_id: str | None,
    extra: dict | None = None,
) -> dict:
    """Build the `error` payload shared by every JSON error response."""
    payload: dict = {
        "error": {
            "code": code,
            "message": message,
            "request_id": request_id,
        }
    }
    if extra:
        payload.update(extra)
    return payload


class AgentHubException(Exception):
    """Base exception for AgentHub application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: str = "E5000",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(AgentHubException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, code="E2000")


class ConfigurationError(AgentHubException):
    """Server is missing configuration required to serve the request."""

    def __init__(self, message: str = "Service not configured"):
        super().__init__(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, code="E5030")


def _request_id() -> str | None:
    ctx = request_context.get()
    return ctx.get("request_id") if ctx else None


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(AgentHubException)
    async def agenthub_exception_handler(
        request: Request, exc: AgentHubException
    ) -> JSONResponse:
        """Handle AgentHub-specific exceptions."""
        logger.warning(
            f"AgentHub error: {exc.message}",
            data={"status_code": exc.status_code, "error_code": exc.code},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                **build_error_envelope(
                    code=exc.code,
                    message=exc.message,
                    request_id=_request_id(),
                    extra=exc.details,
                ),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors without echoing input values."""
        logger.warning("Validation error", data={"path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Validation error",
                **build_error_envelope(
                    code="E4220",
                    message="Validation error",
                    request_id=_request_id(),
                ),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                **build_error_envelope(
                    code=http_status_to_code(exc.status_code),
                    message=str(exc.detail),
                    request_id=_request_id(),
                ),
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                **build_error_envelope(
                    code="E5000",
                    message="Internal server error",
                    request_id=_request_id(),
                ),
            },
        )
