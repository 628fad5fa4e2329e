import logging
import os
from datetime import datetime

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class EnvironmentCheckError(RuntimeError):
    """The local environment cannot support a run (fatal, before any directory call)."""


def log_file_name(now: datetime = None) -> str:
    now = now or datetime.now()
    return f"AppRolePermissions_{now:%Y%m%d_%H%M%S}.log"


def setup_logging(log_dir: str, level: int = logging.DEBUG) -> str:
    """
    Attach an append-only log file to the root logger and return its path.

    The console is left to console.py; only the file receives log records.
    """
    path = os.path.join(log_dir, log_file_name())
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        raise EnvironmentCheckError(f"Cannot open log file {path}: {e}") from e

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
    # msal and urllib3 are chatty at DEBUG
    logging.getLogger("msal").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.info(f"Log started: {path}")
    return path
