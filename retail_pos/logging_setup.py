import json
import logging
from datetime import datetime, timezone

from retail_pos import config

APP_LOGGER = "retail_pos"

# passed with extra={...} by checkout and stock moves
CONTEXT_FIELDS = ("bill_no", "product_id", "location", "batch_id", "payment_method")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


class _PosHandler(logging.StreamHandler):
    """Marker type so repeated setup replaces only our own handler."""


def setup_logging(level: str = None, as_json: bool = None) -> logging.Logger:
    """Attach one stream handler to the ``retail_pos`` logger.

    Safe to call more than once (app startup and tests both do). Handlers
    installed by uvicorn or pytest on the root logger are left alone.
    """
    use_json = config.LOG_JSON if as_json is None else as_json
    handler = _PosHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s", "%Y-%m-%dT%H:%M:%S"))

    log = logging.getLogger(APP_LOGGER)
    for old in [h for h in log.handlers if isinstance(h, _PosHandler)]:
        log.removeHandler(old)
    log.addHandler(handler)
    log.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))
    return log
