from typing import Any, Callable

import pytest
import requests

from netagent.clients.tenant_client import TenantClient
from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError
from netagent.runner import CommandResult

TENANT = "https://tenant.example"


class FakeResponse:
  def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None):
    self.status_code = status_code
    self._body = body
    self.text = text if text is not None else ("" if body is None else str(body))

  def json(self):
    if isinstance(self._body, Exception):
      raise self._body
    return self._body


class FakeSession:
  """Routes requests by URL path suffix; each route is a response, a list of responses, or an exception."""

  def __init__(self, routes: dict[str, Any] | None = None):
    self.routes = dict(routes or {})
    self.calls: list[dict] = []

  def _respond(self, method: str, url: str, **kwargs):
    self.calls.append({"method": method, "url": url, **kwargs})
    for suffix, route in self.routes.items():
      if url.endswith(suffix):
        if isinstance(route, list):
          route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
          raise route
        return route
    raise requests.ConnectionError(f"no route for {url}")

  def get(self, url, **kwargs):
    return self._respond("GET", url, **kwargs)

  def post(self, url, **kwargs):
    return self._respond("POST", url, **kwargs)

  def posts(self, suffix: str = "") -> list[dict]:
    return [c for c in self.calls if c["method"] == "POST" and c["url"].endswith(suffix)]


def result(stdout: str = "", returncode: int = 0, stderr: str = "", timed_out: bool = False, argv=None) -> CommandResult:
  return CommandResult(argv=list(argv or []), returncode=returncode, stdout=stdout, stderr=stderr, timed_out=timed_out)


class FakeRunner:
  """Canned CommandResults keyed by tool name; a callable handler receives the argv."""

  def __init__(self, handlers: dict[str, CommandResult | Callable] | None = None, missing: tuple[str, ...] = ()):
    self.handlers = dict(handlers or {})
    self.missing = missing
    self.calls: list[list[str]] = []

  def require(self, *names: str) -> None:
    missing = [n for n in names if n in self.missing]
    if missing:
      raise ExecutionError(f"required executables not found: {', '.join(missing)}")

  def run(self, argv, timeout, pass_fds=(), env=None) -> CommandResult:
    argv = [str(a) for a in argv]
    self.calls.append(argv)
    handler = self.handlers.get(argv[0])
    if handler is None:
      raise ExecutionError(f"executable not found: {argv[0]}")
    if callable(handler):
      return handler(argv)
    return handler


class FakeTransport:
  """Records each SSH call; replies are popped from a queue, exceptions are raised."""

  def __init__(self, *replies):
    self.replies = list(replies)
    self.calls: list[dict] = []

  def run(self, target, command, secret, ctx) -> CommandResult:
    self.calls.append({"target": target, "command": command, "password": secret.reveal(), "secret": secret})
    reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
    if isinstance(reply, Exception):
      raise reply
    return reply


@pytest.fixture
def make_config(tmp_path):
  def _make(overrides: dict | None = None) -> AgentConfig:
    values = {
      "tenant.url": TENANT,
      "tenant.api_key": "secret-token",
      "tenant.uuid": "agent-1",
      "agent.lock_dir": str(tmp_path / "locks"),
    }
    values.update(overrides or {})
    return AgentConfig(environ={}, overrides=values)

  return _make


@pytest.fixture
def config(make_config):
  return make_config()


@pytest.fixture
def session():
  return FakeSession({"/connectivity-check": FakeResponse(200, {"status": "ok"})})


@pytest.fixture
def client(config, session):
  return TenantClient(config, session=session)
