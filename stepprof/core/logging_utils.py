# stepprof/core/logging_utils.py

import logging
import time
import socket
from typing import Optional

from stepprof.core.config import settings
from stepprof.core.logging import profile_id_ctx


# -----------------------------
#  Host info
# -----------------------------
HOSTNAME = socket.gethostname()
APP_NAME = settings.APP_NAME
ENV = settings.APP_ENV
VERSION = settings.APP_VERSION

LOGGER_NAME = "stepprof"


# -----------------------------
#  Profile-aware logger wrapper
# -----------------------------
class ProfilerLogger:
    """
    Wraps a base logger and automatically injects:
      - profile_id
      - hostname / environment / app / version
      - elapsed_ms since the wrapper was created
    """

    def __init__(self, base_logger: logging.Logger, profile_id: Optional[str] = None):
        self._base_logger = base_logger
        self.start_time = time.perf_counter()
        self.profile_id = profile_id

    def _inject(self, extra: Optional[dict]):
        if extra is None:
            extra = {}

        elapsed = (time.perf_counter() - self.start_time) * 1000

        extra.update({
            "profile_id": self.profile_id or profile_id_ctx.get(None),
            "hostname": HOSTNAME,
            "environment": ENV,
            "app": APP_NAME,
            "version": VERSION,
            "elapsed_ms": round(elapsed, 2),
        })
        return extra

    def _log(self, level, msg, *args, extra=None, **kwargs):
        enriched = self._inject(extra)
        self._base_logger.log(level, msg, *args, extra=enriched, **kwargs)

    # Standard log methods
    def info(self, msg, *a, **kw): self._log(logging.INFO, msg, *a, **kw)
    def warning(self, msg, *a, **kw): self._log(logging.WARNING, msg, *a, **kw)
    def exception(self, msg, *a, **kw): self._log(logging.ERROR, msg, *a, exc_info=True, **kw)


# -----------------------------
#  Logger Getters
# -----------------------------
def get_profiler_logger(profile_id: Optional[str] = None) -> ProfilerLogger:
    """
    Logger for profiler internals and integrations.
    Falls back to the profile_id stored in the context when none is given.
    """
    base_logger = logging.getLogger(LOGGER_NAME)
    return ProfilerLogger(base_logger, profile_id)
