import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError):
            # meta holding something json can't encode
            return payload["msg"]


def setup_logging(level: str = "INFO", fmt: str = "text", stream: Optional[object] = None) -> None:
    """Install one stream handler on the root logger.

    ``fmt`` is ``"json"`` for one JSON object per line, anything else for
    plain text. Calling it again replaces the handler instead of stacking.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_calendar_state", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._calendar_state = True  # type: ignore[attr-defined]
    if fmt.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)
    root.setLevel(level.upper())
