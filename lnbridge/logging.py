import logging
import sys

from decouple import config as dconfig
from loguru import logger

# More info: https://loguru.readthedocs.io/en/stable/api/logger.html


def configure_logger() -> None:
    level = dconfig("log_level", default="INFO", cast=str)
    log_file = dconfig("log_file", default="", cast=str)

    logger.remove()
    formatter = Formatter(level)
    logger.add(sys.stdout, level=level, format=formatter.format, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level,
            format=formatter.format,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
        )

    # route uvicorn and aiohttp through loguru as well
    for name in ("uvicorn", "uvicorn.access", "aiohttp.client"):
        logging.getLogger(name).handlers = [InterceptHandler()]


class Formatter:
    def __init__(self, level: str):
        self.level = level
        self.fmt_default: str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            + "<level>{level.icon}</level> | "
            + "<level>{file}:{line}</level> | "
            + "<level>{message}</level>\n"
        )
        self.fmt_warning: str = self.fmt_default.replace("green>", "yellow>")
        self.fmt_error: str = self.fmt_default.replace("green>", "red>")

    def format(self, record) -> str:
        level = record["level"]

        if level.no < 30:
            fmt = self.fmt_default
        elif level.no == 30:
            fmt = self.fmt_warning
        else:
            fmt = self.fmt_error

        if record["exception"] is not None:
            fmt += "<level>{exception}</level>\n"

        return fmt


class InterceptHandler(logging.Handler):
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.log(level, record.getMessage())
