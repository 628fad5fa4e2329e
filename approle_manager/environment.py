import ctypes
import logging
import os
import sys
from .logging_setup import EnvironmentCheckError


def is_elevated() -> bool:
    if hasattr(os, "geteuid"):
        return os.geteuid() == 0
    if sys.platform == "win32":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return False


def check_environment(require_elevation: bool = False) -> None:
    if sys.version_info < (3, 9):
        raise EnvironmentCheckError("Python 3.9 or newer is required")
    if require_elevation and not is_elevated():
        raise EnvironmentCheckError(
            "This run requires elevated privileges (root / Administrator). "
            "Re-run elevated or unset APPROLE_REQUIRE_ELEVATION."
        )
    logging.debug(f"Environment OK (python={sys.version.split()[0]}, elevated={is_elevated()})")
