from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict
from oilmart.core.logging import logger


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None, extra: Dict[str, Any] | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(AppError):
    status_code = 404


class BadRequestError(AppError):
    status_code = 400


class ValidationFailed(AppError):
    """A business rule rejected the input before anything was written."""
    status_code = 422


class PermissionDeniedError(AppError):
    status_code = 403


class ConflictError(AppError):
    """The entity is in a state that does not allow the requested change."""
    status_code = 409


class InsufficientStockError(ConflictError):
    def __init__(self, product_name: str, available: float, requested: float, product_id: int | None = None):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Required: {requested}",
            extra={"product_id": product_id, "available": available, "requested": requested},
        )


class DatabaseError(AppError):
    status_code = 500


class IndexBuildingError(AppError):
    """Raised while a required index is still being built; the client should retry."""
    status_code = 503


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        # Log structured app errors at warning level
        logger.warning(
            "AppError | type=%s status=%s path=%s message=%s extra=%s",
            exc.__class__.__name__,
            getattr(exc, "status_code", 500),
            request.url.path,
            exc.message,
            getattr(exc, "extra", {}),
        )
        headers = {"Retry-After": "30"} if isinstance(exc, IndexBuildingError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.message,
                    "type": exc.__class__.__name__,
                    "extra": exc.extra,
                }
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # Log full traceback for unexpected errors
        logger.exception("Unhandled exception at %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "Internal server error",
                    "type": "InternalServerError",
                }
            },
        )
