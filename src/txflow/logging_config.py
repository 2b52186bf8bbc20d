import logging
import logging.config
import os
import re
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Empty string turns the file handler off
LOG_FILE = os.getenv("TXFLOW_LOG_FILE", "/tmp/txflow.log")

# Family seeds: "s" (or "sEd" for ed25519) followed by 28 base58 characters
_SEED = re.compile(r"\bs(?:Ed)?[1-9A-HJ-NP-Za-km-z]{28}\b")

# Third-party loggers and the level they are held to
QUIET = {
    "fastapi": "INFO",
    "uvicorn.access": "WARNING",
    "xrpl": "WARNING",
    "httpx": "WARNING",
}


class RedactSeeds(logging.Filter):
    """Mask anything shaped like a family seed before it reaches a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if _SEED.search(msg):
            record.msg = _SEED.sub("s***", msg)
            record.args = None
        return True


def build_config(level: str = LOG_LEVEL, log_file: str = LOG_FILE) -> dict:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "filters": ["redact"],
            "stream": sys.stdout,
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filters": ["redact"],
            "filename": log_file,
            "mode": "a",
        }
    names = list(handlers)

    loggers = {"txflow": {"level": level, "handlers": names, "propagate": False}}
    for name, quiet_level in QUIET.items():
        loggers[name] = {"level": quiet_level, "handlers": names, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": RedactSeeds}},
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": names},
    }


LOGGING_CONFIG = build_config()


def setup_logging(level: str | None = None, log_file: str | None = None):
    """Apply the logging configuration; arguments override the environment."""
    config = LOGGING_CONFIG
    if level is not None or log_file is not None:
        config = build_config(level or LOG_LEVEL, LOG_FILE if log_file is None else log_file)
    logging.config.dictConfig(config)
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
