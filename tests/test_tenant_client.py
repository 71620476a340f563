import json
import logging

import pytest
import requests

from conftest import FakeResponse, FakeSession
from netagent.clients.tenant_client import TenantClient
from netagent.exceptions import ReportError
from netagent.logging_utils import JsonFormatter


def test_headers_identify_the_agent(client, session):
  assert client.check_connectivity()
  headers = session.calls[0]["headers"]
  assert headers["Authorization"] == "Bearer secret-token"
  assert headers["x-forcedesk-agent"] == "agent-1"
  assert headers["x-forcedesk-agentversion"] == "1.4.0"
  assert session.calls[0]["timeout"] == (10.0, 30.0)


@pytest.mark.parametrize("response", [
  FakeResponse(200, {"status": "degraded"}),
  FakeResponse(200, ["ok"]),
  FakeResponse(503, text="maintenance"),
  requests.Timeout("slow"),
])
def test_connectivity_failures_return_false(config, response):
  client = TenantClient(config, session=FakeSession({"/connectivity-check": response}))
  assert client.check_connectivity() is False


def test_post_error_keeps_truncated_body(client, session):
  session.routes["/monitoring/response"] = FakeResponse(422, text="x" * 5000)
  with pytest.raises(ReportError) as info:
    client.post_json("monitoring/response", {"id": "p1"})
  assert info.value.status_code == 422
  assert len(info.value.body) == 2000
  assert session.posts()[0]["json"] == {"id": "p1"}


def test_disabled_verification_is_warned(make_config, caplog):
  client = TenantClient(make_config({"tenant.verify_ssl": False}), session=FakeSession())
  assert client.verify is False
  assert any(r.levelno == logging.WARNING and "verification is disabled" in r.getMessage() for r in caplog.records)


def test_json_log_lines_carry_context():
  record = logging.LogRecord("netagent.test", logging.INFO, __file__, 1, "delivered %s", ("p1",), None)
  record.batch_id = "b-1"
  record.event = "report_sent"
  line = json.loads(JsonFormatter().format(record))
  assert line["msg"] == "delivered p1"
  assert line["batch_id"] == "b-1"
  assert line["event"] == "report_sent"
  assert line["level"] == "INFO"
