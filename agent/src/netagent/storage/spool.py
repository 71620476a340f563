import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

log = logging.getLogger(__name__)


def build_spool_path(base_dir: Path, command: str, ts: datetime) -> Path:
  filename = f"{ts.strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}.json"
  return base_dir / command / filename


class ResultSpool:
  """Report bodies that could not be delivered, kept on disk until the next cycle."""

  def __init__(self, base_dir: str | Path):
    self.base_dir = Path(base_dir)

  def save(self, command: str, report_path: str, body: dict[str, Any]) -> Path:
    ts = datetime.now(timezone.utc)
    path = build_spool_path(self.base_dir, command, ts)
    for directory in (self.base_dir, path.parent):
      directory.mkdir(mode=0o700, parents=True, exist_ok=True)
      directory.chmod(0o700)
    tmp = path.with_suffix(".tmp")
    # owner-only from creation
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
      json.dump({"report_path": report_path, "body": body, "spooled_at": ts.isoformat()}, fh)
    tmp.replace(path)
    return path

  def pending(self, command: str) -> Iterator[tuple[Path, str, dict[str, Any]]]:
    directory = self.base_dir / command
    if not directory.is_dir():
      return
    for path in sorted(directory.glob("*.json")):
      try:
        entry = json.loads(path.read_text(encoding="utf-8"))
        report_path, body = entry["report_path"], entry["body"]
        if not isinstance(report_path, str) or not isinstance(body, dict):
          raise TypeError("unexpected spool entry shape")
      except (OSError, ValueError):
        log.warning("unreadable spool entry left in place", extra={"event": "spool_unreadable", "path": str(path)})
        continue
      except (KeyError, TypeError):
        log.warning("malformed spool entry left in place", extra={"event": "spool_malformed", "path": str(path)})
        continue
      yield path, report_path, body

  def flush(self, command: str, send: Callable[[str, dict[str, Any]], bool]) -> int:
    delivered = 0
    for path, report_path, body in self.pending(command):
      if not send(report_path, body):
        log.warning("spooled result still undeliverable", extra={"event": "spool_retry_failed", "path": str(path)})
        break
      path.unlink(missing_ok=True)
      delivered += 1
    if delivered:
      log.info("delivered spooled results", extra={"event": "spool_flushed", "command": command, "count": delivered})
    return delivered
