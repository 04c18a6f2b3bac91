# stepprof/core/rich_formatter.py

import json
import logging
from rich.console import Console
from rich.json import JSON
from rich.markup import escape
from rich.traceback import Traceback
from rich.theme import Theme


# Custom theme for log levels
LOG_THEME = Theme({
    "log.debug": "cyan",
    "log.info": "green",
    "log.warning": "yellow",
    "log.error": "red bold",
    "log.critical": "bold white on red",
})

console = Console(theme=LOG_THEME, stderr=True)

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and v is not None}


class RichJSONFormatter(logging.Formatter):
    """
    Rich-powered console formatter that:
      - Pretty-prints structured `extra` payloads as JSON
      - Adds level-based color
      - Renders tracebacks with rich formatting
    """

    def format(self, record: logging.LogRecord) -> str:
        level_style = f"log.{record.levelname.lower()}"

        if record.exc_info:
            err = Traceback.from_exception(
                record.exc_info[0],
                record.exc_info[1],
                record.exc_info[2],
                width=120,
                theme="monokai"
            )
            console.print(f"[{level_style}]{record.levelname}[/] {escape(record.getMessage())}")
            console.print(err)
            return ""

        msg = escape(record.getMessage())
        console.print(f"[{level_style}]{record.levelname}[/] [bold]{record.name}[/] {msg}")

        extra = _extra_fields(record)
        if extra:
            console.print(JSON(json.dumps(extra, indent=2, default=str)))

        return ""
