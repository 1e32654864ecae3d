import os
import logging
import logging.config


logger = logging.getLogger(__name__)


LOGS_DIR = "/tmp/medtrace/logs/"

QUIET_LOGGERS = ["docker", "urllib3", "requests", "asyncio"]


class Logs:
    def __init__(self, filename, screen=True, debug=False):

        op_mode = "DEBUG" if debug else "INFO"

        dirname = os.path.dirname(filename)
        if dirname:
            os.makedirs(dirname, exist_ok=True)

        handlers = {
            "info_file_handler": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "DEBUG",
                "formatter": "strict",
                "filename": filename,
                "maxBytes": 10485760,
                "backupCount": 20,
                "encoding": "utf8",
            },
        }

        if screen:
            handlers["default"] = {
                "level": op_mode,
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }

        log_config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "strict": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                },
                "standard": {"format": "%(asctime)s [%(levelname)s]: %(message)s"},
            },
            "handlers": handlers,
            "loggers": {
                "": {
                    "handlers": sorted(handlers.keys()),
                    "level": "DEBUG",
                    "propagate": True,
                }
            },
        }

        logging.config.dictConfig(log_config)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    @staticmethod
    def filepath(name, dirname=LOGS_DIR):
        return os.path.join(dirname, f"{name}.log")
