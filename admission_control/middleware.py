import time
import traceback

from fastapi import FastAPI, Request, Response, status
from loguru import logger


def add_request_logging(app: FastAPI) -> None:
    """
    Log every request with its status and duration.

    Exceptions that escape a route are logged with their traceback and turned
    into an HTTP 500, so the caller always gets a response.
    """

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        path = request.url.path
        try:
            response = await call_next(request)
        except Exception as e:
            logger.bind(
                method=request.method, path=path, trace=traceback.format_exc()
            ).exception(f"Unhandled error serving {request.method} {path}: {e}")
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        duration = time.perf_counter() - start
        logger.bind(
            status=response.status_code,
            method=request.method,
            path=path,
            duration=duration,
        ).info(f"{request.method} {path} {response.status_code} ({duration * 1000:.1f}ms)")

        return response
