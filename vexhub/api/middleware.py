from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback

logger = logging.getLogger(__name__)


def configure_exception_handlers(app):
    """Configure global exception handlers"""

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log the failure and answer with a generic 500, never a partial body"""
        error_id = id(exc)  # Simple error ID for tracking
        error_traceback = traceback.format_exc()

        logger.error(f"Unhandled exception [ID:{error_id}] in {request.method} {request.url}: {exc}")
        logger.error(f"Traceback [ID:{error_id}]:\n{error_traceback}")

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "error_id": error_id,
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP {exc.status_code} error in {request.method} {request.url}: {exc.detail}")

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": f"HTTP {exc.status_code} Error",
                "message": exc.detail,
                "path": str(request.url.path)
            }
        )
