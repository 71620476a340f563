import re
from typing import Any

from netagent.exceptions import ValidationError

_HOST_RE = re.compile(r"^[A-Za-z0-9.\-:\[\]]+$")
_USER_RE = re.compile(r"^[A-Za-z0-9._@\\-]+$")


def is_valid_hostname(host: str) -> bool:
  """Letters, digits, dots, hyphens and IPv6 colons/brackets only."""
  if not host or len(host) > 253:
    return False
  if host.startswith("-"):
    return False
  return bool(_HOST_RE.match(host))


def require_hostname(host: Any, field: str = "host") -> str:
  value = str(host or "").strip()
  if not is_valid_hostname(value):
    raise ValidationError(f"invalid {field}: {value!r}")
  return value


def require_port(port: Any, field: str = "port") -> int:
  if isinstance(port, bool):
    raise ValidationError(f"invalid {field}: {port!r}")
  if isinstance(port, float) and port.is_integer():
    port = int(port)
  try:
    value = int(str(port).strip())
  except (TypeError, ValueError):
    raise ValidationError(f"invalid {field}: {port!r}") from None
  if value < 1 or value > 65535:
    raise ValidationError(f"{field} out of range: {value}")
  return value


def require_username(username: Any) -> str:
  value = str(username or "").strip()
  if not value or value.startswith("-") or not _USER_RE.match(value):
    raise ValidationError("invalid username")
  return value
