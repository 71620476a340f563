import logging
from typing import Any, Optional

import requests

from netagent.config import AgentConfig
from netagent.exceptions import FetchError, ReportError
from netagent.ratelimit import TokenBucket

log = logging.getLogger(__name__)


class TenantClient:
  def __init__(self, config: AgentConfig, session: Optional[requests.Session] = None, limiter: Optional[TokenBucket] = None):
    self.config = config
    self.session = session or requests.Session()
    self.limiter = limiter or TokenBucket(int(config.get("tenant.rate_limit_burst")), float(config.get("tenant.rate_limit_refill_seconds")))
    self.verify = bool(config.get("tenant.verify_ssl"))
    self.timeout = (float(config.get("tenant.connect_timeout_seconds")), float(config.get("tenant.timeout_seconds")))
    if not self.verify:
      log.warning("SSL certificate verification is disabled", extra={"event": "tls_verify_disabled", "host": config.tenant_url})

  def _headers(self) -> dict:
    version = str(self.config.get("agent.version"))
    return {
      "Authorization": f"Bearer {self.config.get('tenant.api_key')}",
      "Content-Type": "application/json",
      "Accept": "application/json",
      "User-Agent": f"netagent/{version}",
      str(self.config.get("tenant.agent_header")): str(self.config.get("tenant.uuid")),
      str(self.config.get("tenant.version_header")): version,
    }

  def _throttle(self, method: str, path: str) -> None:
    if self.limiter.allow():
      return
    log.warning("rate limit reached, throttling request", extra={"event": "rate_limited", "method": method, "path": path})
    self.limiter.wait()

  def url(self, path: str) -> str:
    return self.config.api_url(path)

  def get_json(self, path: str) -> Any:
    url = self.url(path)
    self._throttle("GET", path)
    log.debug("GET", extra={"event": "http_get", "path": path})
    try:
      response = self.session.get(url, headers=self._headers(), timeout=self.timeout, verify=self.verify)
    except requests.RequestException as exc:
      raise FetchError(f"GET {path} failed: {exc}") from exc
    if response.status_code != 200:
      raise FetchError(f"unexpected status {response.status_code} from {path}", status_code=response.status_code)
    try:
      return response.json()
    except ValueError as exc:
      raise FetchError(f"invalid JSON from {path}: {exc}", status_code=response.status_code) from exc

  def post_json(self, path: str, payload: Any) -> int:
    url = self.url(path)
    self._throttle("POST", path)
    try:
      response = self.session.post(url, json=payload, headers=self._headers(), timeout=self.timeout, verify=self.verify)
    except requests.RequestException as exc:
      raise ReportError(f"POST {path} failed: {exc}") from exc
    if not 200 <= response.status_code < 300:
      raise ReportError(f"non-success status {response.status_code} from {path}", status_code=response.status_code, body=response.text[:2000])
    return response.status_code

  def check_connectivity(self) -> bool:
    path = str(self.config.get("tenant.connectivity_path"))
    try:
      data = self.get_json(path)
    except FetchError as exc:
      log.error("connectivity check failed", extra={"event": "connectivity_failed", "status_code": exc.status_code})
      log.debug("connectivity check error detail: %s", exc)
      return False
    status = data.get("status") if isinstance(data, dict) else None
    if status != "ok":
      log.error("connectivity check returned status %r", status, extra={"event": "connectivity_failed"})
      return False
    return True
