import logging
import os
import shutil
from datetime import datetime, timezone
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger
from stepprof.core.rich_formatter import RichJSONFormatter
from stepprof.core.config import settings

# Context variable for the id of the profile being recorded
profile_id_ctx: ContextVar[str | None] = ContextVar("profile_id", default=None)


class ProfileIdFilter(logging.Filter):
    """Injects profile_id into all logs."""
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "profile_id", None) is None:
            record.profile_id = profile_id_ctx.get()
        return True


def _json_formatter() -> logging.Formatter:
    return jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(profile_id)s",
        rename_fields={
            "levelname": "level",
            "asctime": "timestamp",
        },
    )


def _get_daily_log_dir(base_dir: str = "logs") -> str:
    """Create and return today's log directory."""
    today_str = datetime.now(timezone.utc).strftime("%Y%m%d")
    log_dir = os.path.join(base_dir, today_str)
    os.makedirs(log_dir, exist_ok=True)
    return log_dir


def _build_file_handler(filename: str, formatter: logging.Formatter) -> logging.Handler:
    """Builds a rotating file handler in a date-based subfolder."""
    daily_dir = _get_daily_log_dir(os.path.dirname(filename) or "logs")
    file_path = os.path.join(daily_dir, os.path.basename(filename))

    handler = RotatingFileHandler(file_path, maxBytes=10_000_000, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    handler.addFilter(ProfileIdFilter())
    return handler


# -----------------------------------------------------
# Auto-Prune Old Log Folders (older than N days)
# -----------------------------------------------------
def prune_old_log_folders(base_dir: str = "logs", days: int = 6) -> list[str]:
    """
    Remove log folders older than N days.
    Only deletes folders with YYYYMMDD format (UTC-based).
    Returns the removed paths.
    """
    now = datetime.now(timezone.utc)
    removed: list[str] = []

    if not os.path.isdir(base_dir):
        return removed

    for name in os.listdir(base_dir):
        folder_path = os.path.join(base_dir, name)

        # Only consider folders named YYYYMMDD
        if not os.path.isdir(folder_path):
            continue
        if not name.isdigit() or len(name) != 8:
            continue

        try:
            folder_date = datetime.strptime(name, "%Y%m%d").replace(tzinfo=timezone.utc)
        except ValueError:
            continue

        age_days = (now - folder_date).days
        if age_days > days:
            try:
                shutil.rmtree(folder_path)
                removed.append(folder_path)
                logging.getLogger("cleanup").info(
                    f"Deleted old log folder {folder_path} (age {age_days} days)"
                )
            except OSError as e:
                logging.getLogger("cleanup").error(
                    f"Failed to delete log folder {folder_path}: {e}"
                )
    return removed


def setup_logging():
    """Initialize JSON structured, config-driven logging."""
    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    targets = [t.strip().lower() for t in settings.LOG_TARGETS]

    formatter = _json_formatter()
    handlers: list[logging.Handler] = []

    # Console handler
    if "console" in targets:
        console = logging.StreamHandler()
        console.addFilter(ProfileIdFilter())
        console.setFormatter(RichJSONFormatter())
        handlers.append(console)

    # File handler
    if "file" in targets:
        handlers.append(_build_file_handler(settings.LOG_FILE_PATH, formatter))

    if not handlers:
        # Default to console JSON if nothing usable configured
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.addFilter(ProfileIdFilter())
        handlers.append(console)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    if "file" in targets:
        try:
            prune_old_log_folders(
                base_dir=settings.LOG_DIR or "logs",
                days=settings.LOG_RETENTION_DAYS,
            )
        except OSError as e:
            logging.getLogger(__name__).error(f"Failed pruning old logs: {e}")

    logging.getLogger(__name__).info("Logging initialized", extra={"targets": targets})
    return handlers
