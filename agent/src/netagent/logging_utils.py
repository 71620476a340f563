import json
import logging
import logging.handlers
import time
from pathlib import Path

CONTEXT_FIELDS = ("command", "batch_id", "item_id", "event", "device", "host", "status_code", "response_body", "tool", "returncode", "timed_out", "duration", "count", "path", "section")


class JsonFormatter(logging.Formatter):
  def format(self, record: logging.LogRecord) -> str:
    base = {
      "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
      "level": record.levelname,
      "logger": record.name,
      "msg": record.getMessage(),
    }
    for k in CONTEXT_FIELDS:
      if hasattr(record, k):
        base[k] = getattr(record, k)
    if record.exc_info:
      base["exc_info"] = self.formatException(record.exc_info)
    return json.dumps(base, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
  def __init__(self):
    super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

  def format(self, record: logging.LogRecord) -> str:
    line = super().format(record)
    ctx = " ".join(f"{k}={getattr(record, k)}" for k in CONTEXT_FIELDS if hasattr(record, k))
    return f"{line} [{ctx}]" if ctx else line


def setup_logging(level: str = "INFO", fmt: str = "json", log_dir: str | None = None) -> None:
  root = logging.getLogger()
  root.setLevel(getattr(logging, level.upper(), logging.INFO))
  formatter: logging.Formatter = JsonFormatter() if fmt == "json" else TextFormatter()
  h = logging.StreamHandler()
  h.setFormatter(formatter)
  root.handlers.clear()
  root.addHandler(h)
  if log_dir:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.handlers.TimedRotatingFileHandler(path / "agent.log", when="midnight", backupCount=14, encoding="utf-8")
    fh.setFormatter(JsonFormatter())
    root.addHandler(fh)


class ContextAdapter(logging.LoggerAdapter):
  """Merges the adapter's correlation fields with per-call extras."""

  def process(self, msg, kwargs):
    extra = dict(self.extra or {})
    extra.update(kwargs.get("extra") or {})
    kwargs["extra"] = extra
    return msg, kwargs
