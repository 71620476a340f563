import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from netagent.exceptions import ValidationError
from netagent.logging_utils import ContextAdapter


class WorkKind(str, Enum):
  DEVICE_BACKUP = "device_backup"
  PROBE = "probe"
  QUERY_COMMAND = "query_command"


class ResultStatus(str, Enum):
  SUCCESS = "success"
  SKIPPED_NO_CHANGE = "skipped_no_change"
  ERROR = "error"


@dataclass(frozen=True)
class CommandSpec:
  name: str
  kind: WorkKind
  fetch_path: str
  report_path: str


COMMANDS = {
  "devicemanager": CommandSpec("devicemanager", WorkKind.DEVICE_BACKUP, "devicemanager/payloads", "devicemanager/response"),
  "monitoring": CommandSpec("monitoring", WorkKind.PROBE, "monitoring/payloads", "monitoring/response"),
  "devicequery": CommandSpec("devicequery", WorkKind.QUERY_COMMAND, "devicemanager/query-payloads", "devicemanager/query-response"),
}


@dataclass
class WorkItem:
  id: str
  kind: WorkKind
  payload: dict[str, Any]
  batch_id: str
  options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Device:
  id: str
  name: str
  hostname: str
  port: int
  type: str
  username: str
  password: str
  is_legacy: bool = False
  is_forced: bool = False
  last_backup_hash: Optional[str] = None

  def __repr__(self) -> str:
    return f"Device(id={self.id!r}, name={self.name!r}, hostname={self.hostname!r}, type={self.type!r})"

  @property
  def has_credentials(self) -> bool:
    return bool(self.username) and bool(self.password)


@dataclass
class ProbeSpec:
  probe_id: str
  host: str
  check_type: str
  port: Optional[int] = None


@dataclass
class QueryCommand:
  device_hostname: str
  username: str
  password: str
  command: str
  port: int = 22
  device_type: str = "cisco"
  is_legacy: bool = False
  action: str = "unknown"
  request_uuid: Optional[str] = None

  def __repr__(self) -> str:
    return f"QueryCommand(device_hostname={self.device_hostname!r}, command={self.command!r}, action={self.action!r})"


Payload = Union[Device, ProbeSpec, QueryCommand]


@dataclass
class ExecutionResult:
  item_id: str
  kind: WorkKind
  status: ResultStatus
  data: dict[str, Any] = field(default_factory=dict)
  error_message: Optional[str] = None
  timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

  @classmethod
  def failure(cls, item: "WorkItem", message: str, data: Optional[dict[str, Any]] = None) -> "ExecutionResult":
    return cls(item_id=item.id, kind=item.kind, status=ResultStatus.ERROR, data=data or {}, error_message=message)


class BatchContext:
  """Correlation id and wall-clock budget shared by every item of one fetch cycle."""

  def __init__(self, command: str, budget_seconds: float | None = None, batch_id: str | None = None):
    self.command = command
    self.batch_id = batch_id or str(uuid.uuid4())
    self.started = time.monotonic()
    self.deadline = self.started + budget_seconds if budget_seconds else None

  def remaining(self) -> float | None:
    if self.deadline is None:
      return None
    return max(0.0, self.deadline - time.monotonic())

  def expired(self) -> bool:
    remaining = self.remaining()
    return remaining is not None and remaining <= 0

  def bound(self, timeout: float) -> float:
    remaining = self.remaining()
    if remaining is None:
      return timeout
    return min(timeout, remaining)

  def logger(self, log: logging.Logger, **extra: Any) -> ContextAdapter:
    return ContextAdapter(log, {"command": self.command, "batch_id": self.batch_id, **extra})


def _flex_bool(value: Any) -> bool:
  if isinstance(value, bool):
    return value
  if isinstance(value, (int, float)):
    return value != 0
  if isinstance(value, str):
    return value.strip().lower() in ("1", "true", "yes", "on")
  return False


def _text(raw: Mapping[str, Any], *keys: str) -> str:
  for k in keys:
    v = raw.get(k)
    if v is not None and v != "":
      return str(v)
  return ""


def _port(raw: Mapping[str, Any], key: str = "port", default: int = 22) -> int:
  v = raw.get(key)
  if v is None or v == "":
    return default
  try:
    return int(v)
  except (TypeError, ValueError):
    raise ValidationError(f"invalid {key}: {v!r}") from None


def decode_device(raw: Mapping[str, Any]) -> Device:
  device_id = _text(raw, "id", "device_id")
  if not device_id:
    raise ValidationError("device payload has no id")
  hostname = _text(raw, "hostname", "device_hostname")
  if not hostname:
    raise ValidationError(f"device {device_id} has no hostname")
  return Device(
    id=device_id,
    name=_text(raw, "name") or hostname,
    hostname=hostname,
    port=_port(raw),
    type=_text(raw, "type", "device_type").lower(),
    username=_text(raw, "device_username", "username"),
    password=_text(raw, "device_password", "password"),
    is_legacy=_flex_bool(raw.get("is_legacy", raw.get("is_cisco_legacy"))),
    is_forced=_flex_bool(raw.get("is_forced")),
    last_backup_hash=_text(raw, "last_backup_hash", "latesthash") or None,
  )


def decode_probe(raw: Mapping[str, Any]) -> ProbeSpec:
  probe_id = _text(raw, "probeid", "probe_id", "id")
  if not probe_id:
    raise ValidationError("probe payload has no probe id")
  check_type = _text(raw, "check_type").lower()
  if check_type not in ("tcp", "ping"):
    raise ValidationError(f"unsupported check_type: {check_type!r}")
  host = _text(raw, "host").strip()
  if not host:
    raise ValidationError("probe host is empty")
  port: Optional[int] = None
  has_port = raw.get("port") not in (None, "")
  if check_type == "tcp":
    if not has_port:
      raise ValidationError("tcp probe requires a port")
    port = _port(raw)
  return ProbeSpec(probe_id=probe_id, host=host, check_type=check_type, port=port)


def decode_query(raw: Mapping[str, Any]) -> QueryCommand:
  missing = [k for k in ("device_hostname", "username", "password", "command") if not raw.get(k)]
  if missing:
    raise ValidationError(f"missing required payload fields: {', '.join(missing)}")
  return QueryCommand(
    device_hostname=str(raw["device_hostname"]),
    username=str(raw["username"]),
    password=str(raw["password"]),
    command=str(raw["command"]).strip(),
    port=_port(raw),
    device_type=_text(raw, "device_type").lower() or "cisco",
    is_legacy=_flex_bool(raw.get("is_legacy", raw.get("is_cisco_legacy"))),
    action=_text(raw, "action") or "unknown",
    request_uuid=_text(raw, "request_uuid") or None,
  )


_DECODERS = {
  WorkKind.DEVICE_BACKUP: decode_device,
  WorkKind.PROBE: decode_probe,
  WorkKind.QUERY_COMMAND: decode_query,
}


def decode_payload(kind: WorkKind, raw: Any) -> Payload:
  if isinstance(raw, str):
    try:
      raw = json.loads(raw)
    except ValueError as exc:
      raise ValidationError(f"payload is not valid JSON: {exc}") from None
  if not isinstance(raw, Mapping):
    raise ValidationError(f"{kind.value} payload must be an object, got {type(raw).__name__}")
  return _DECODERS[kind](raw)
