import logging
import logging.config
import os

from heatcare.core.config.settings import get_settings

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _rotating_json_handler(log_dir: str, filename: str, level: str = "NOTSET") -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "formatter": "json",
        "filename": os.path.join(log_dir, filename),
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "level": level,
    }


def setup_logging() -> logging.Logger:
    """Configure console + rotating JSON file logging and return the app logger.

    ``app.log`` receives everything at INFO and above, ``error.log`` only
    errors. SMS bodies go to the dedicated ``heatcare.sms`` logger so the
    development transport can be tailed on its own.
    """
    settings = get_settings()
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    app_level = "DEBUG" if settings.DEBUG else "INFO"

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "stream": "ext://sys.stdout",
            },
            "app_file": _rotating_json_handler(settings.LOG_DIR, "app.log"),
            "error_file": _rotating_json_handler(settings.LOG_DIR, "error.log", level="ERROR"),
        },
        "root": {"handlers": ["console", "app_file"], "level": "INFO"},
        "loggers": {
            "heatcare": {
                "handlers": ["console", "app_file", "error_file"],
                "level": app_level,
                "propagate": False,
            },
            "heatcare.sms": {
                "handlers": ["console", "app_file"],
                "level": "INFO",
                "propagate": False,
            },
        },
    })
    return logging.getLogger("heatcare")
