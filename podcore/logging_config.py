import logging, logging.config

# Third-party loggers that log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "s3transfer", "urllib3")


def setup_logging(level: str = "INFO", access_log: bool = True, *, datefmt: str = "%H:%M:%S"):
    """Configure root, uvicorn and library loggers.

    The web app keeps the short time-only format; the cron runner passes a
    full date so its machine logs sort across days.
    """
    level = level.upper()
    loggers = {
        "uvicorn.error":  {"level": level, "handlers": ["console"], "propagate": False},
        "uvicorn.access": {"level": ("INFO" if access_log else "WARNING"),
                           "handlers": ["access"], "propagate": False},
        "podcore": {"level": level},
    }
    loggers.update({name: {"level": "WARNING"} for name in _QUIET_LOGGERS})

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                        "datefmt": datefmt},
            # Uvicorn pre-formats access log lines
            "access_simple": {"format": "%(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
            "access":  {"class": "logging.StreamHandler", "formatter": "access_simple"},
        },
        "loggers": loggers,
        "root": {"level": level, "handlers": ["console"]},
    })
