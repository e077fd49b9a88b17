import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from mmart.core.errors import MmartError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Domain errors as {"error": {...}}; anything unexpected as a bare 500."""

    @app.exception_handler(MmartError)
    async def mmart_error_handler(request: Request, exc: MmartError):
        logger.info(
            "Request rejected: %s",
            exc.message,
            extra={"error_code": exc.code, "path": request.url.path},
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
        )
