import inspect
import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """Route records from the standard logging module (e.g. uvicorn) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller from where the logged message originated.
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(debug: bool = False, json_logs: bool = False) -> None:
    """Replace the default loguru sink and capture standard logging."""
    level = "DEBUG" if debug else "INFO"

    logger.remove()
    logger.add(sys.stderr, level=level, serialize=json_logs, backtrace=debug, diagnose=debug)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    logger.debug(f"Logging configured (level={level}, json={json_logs})")
