import copy
import logging
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Any, Mapping, Optional

log = logging.getLogger(__name__)

AGENT_VERSION = "1.4.0"

MODERN_SSH_OPTIONS = "-o StrictHostKeyChecking=no -oKexAlgorithms=+diffie-hellman-group1-sha1"
LEGACY_SSH_OPTIONS = "-o StrictHostKeyChecking=no -oKexAlgorithms=+diffie-hellman-group1-sha1 -c aes128-cbc"

DEFAULTS: dict[str, dict[str, Any]] = {
  "tenant": {
    "url": "",
    "api_key": "",
    "uuid": "",
    "verify_ssl": True,
    "api_prefix": "/api/agent",
    "connectivity_path": "/connectivity-check",
    "timeout_seconds": 30,
    "connect_timeout_seconds": 10,
    "report_attempts": 2,
    "rate_limit_burst": 100,
    "rate_limit_refill_seconds": 0.1,
    "agent_header": "x-forcedesk-agent",
    "version_header": "x-forcedesk-agentversion",
  },
  "agent": {
    "version": AGENT_VERSION,
    "lock_dir": str(Path(tempfile.gettempdir()) / "netagent"),
    "spool_dir": "",
  },
  "ssh": {
    "transport": "sshpass",
    "modern_options": MODERN_SSH_OPTIONS,
    "legacy_options": LEGACY_SSH_OPTIONS,
    "connect_timeout_seconds": 15,
    "timeout_seconds": 120,
  },
  "probe": {
    "tcp_timeout_seconds": 5,
    "ping_count": 5,
    "metric_count": 5,
    "timeout_seconds": 30,
  },
  "dispatch": {
    "mode": "fanout",
    "workers": 8,
    "budget_seconds": 240,
  },
  "loop": {
    "poll_interval_seconds": 15,
    "max_runtime_seconds": 300,
  },
  "logging": {
    "level": "info",
    "format": "json",
    "dir": "",
  },
}

ENV_KEYS = {
  "TENANT_URL": "tenant.url",
  "TENANT_API_KEY": "tenant.api_key",
  "AGENT_UUID": "tenant.uuid",
  "TENANT_VERIFY_SSL": "tenant.verify_ssl",
  "TENANT_API_PREFIX": "tenant.api_prefix",
  "TENANT_CONNECTIVITY_PATH": "tenant.connectivity_path",
  "TENANT_TIMEOUT_SECONDS": "tenant.timeout_seconds",
  "TENANT_CONNECT_TIMEOUT_SECONDS": "tenant.connect_timeout_seconds",
  "TENANT_REPORT_ATTEMPTS": "tenant.report_attempts",
  "TENANT_RATE_LIMIT_BURST": "tenant.rate_limit_burst",
  "TENANT_RATE_LIMIT_REFILL_SECONDS": "tenant.rate_limit_refill_seconds",
  "AGENT_VERSION": "agent.version",
  "AGENT_LOCK_DIR": "agent.lock_dir",
  "AGENT_SPOOL_DIR": "agent.spool_dir",
  "SSH_TRANSPORT": "ssh.transport",
  "SSH_MODERN_OPTIONS": "ssh.modern_options",
  "SSH_LEGACY_OPTIONS": "ssh.legacy_options",
  "SSH_CONNECT_TIMEOUT_SECONDS": "ssh.connect_timeout_seconds",
  "SSH_TIMEOUT_SECONDS": "ssh.timeout_seconds",
  "PROBE_TCP_TIMEOUT_SECONDS": "probe.tcp_timeout_seconds",
  "PROBE_PING_COUNT": "probe.ping_count",
  "PROBE_METRIC_COUNT": "probe.metric_count",
  "PROBE_TIMEOUT_SECONDS": "probe.timeout_seconds",
  "DISPATCH_MODE": "dispatch.mode",
  "DISPATCH_WORKERS": "dispatch.workers",
  "DISPATCH_BUDGET_SECONDS": "dispatch.budget_seconds",
  "LOOP_POLL_INTERVAL_SECONDS": "loop.poll_interval_seconds",
  "LOOP_MAX_RUNTIME_SECONDS": "loop.max_runtime_seconds",
  "LOG_LEVEL": "logging.level",
  "LOG_FORMAT": "logging.format",
  "LOG_DIR": "logging.dir",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _coerce(raw: Any, default: Any) -> Any:
  if isinstance(default, bool):
    if isinstance(raw, bool):
      return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
      return True
    if text in _FALSE:
      return False
    raise ValueError(f"not a boolean: {raw!r}")
  if isinstance(default, int):
    return int(raw)
  if isinstance(default, float):
    return float(raw)
  return str(raw)


class AgentConfig:
  """
  Agent settings, built once at start-up and passed to every component.

  Precedence (lowest first): defaults, TOML file, environment, explicit overrides.
  """

  def __init__(
    self,
    path: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
  ):
    self.path = Path(path) if path else None
    self._environ = environ
    self._overrides = dict(overrides or {})
    self._values: dict[str, dict[str, Any]] = {}
    self.reload()

  def reload(self) -> None:
    values = copy.deepcopy(DEFAULTS)
    if self.path is not None:
      if self.path.exists():
        with self.path.open("rb") as fh:
          data = tomllib.load(fh)
        for section, entries in data.items():
          if section not in values or not isinstance(entries, dict):
            log.warning("ignoring unknown config section", extra={"event": "config_unknown_section", "section": section})
            continue
          for key, raw in entries.items():
            if key not in values[section]:
              log.warning("ignoring unknown config key %s.%s", section, key, extra={"event": "config_unknown_key", "section": section, "key": key})
              continue
            self._assign(values, f"{section}.{key}", raw)
      else:
        log.warning("config file not found, using defaults", extra={"event": "config_missing", "path": str(self.path)})
    environ = self._environ if self._environ is not None else os.environ
    for env_name, dotted in ENV_KEYS.items():
      if env_name in environ:
        self._assign(values, dotted, environ[env_name])
    for dotted, raw in self._overrides.items():
      self._assign(values, dotted, raw)
    self._values = values

  def _assign(self, values: dict, dotted: str, raw: Any) -> None:
    section, _, key = dotted.partition(".")
    if section not in DEFAULTS or key not in DEFAULTS[section]:
      raise KeyError(f"unknown config key: {dotted}")
    values[section][key] = _coerce(raw, DEFAULTS[section][key])

  def get(self, dotted: str, default: Any = None) -> Any:
    section, _, key = dotted.partition(".")
    return self._values.get(section, {}).get(key, default)

  def set(self, dotted: str, value: Any) -> None:
    self._overrides[dotted] = value
    self._assign(self._values, dotted, value)

  def section(self, name: str) -> dict[str, Any]:
    return dict(self._values.get(name, {}))

  @property
  def tenant_url(self) -> str:
    return str(self.get("tenant.url")).rstrip("/")

  def api_url(self, path: str) -> str:
    prefix = "/" + str(self.get("tenant.api_prefix")).strip("/")
    if prefix == "/":
      prefix = ""
    return f"{self.tenant_url}{prefix}/{path.lstrip('/')}"
