import pytest

from conftest import FakeTransport, result
from netagent.exceptions import ExecutionError, ValidationError
from netagent.executors.query import QueryCommandExecutor, clean_output
from netagent.models import BatchContext, ResultStatus, WorkItem, WorkKind


def _item(**payload):
  base = {
    "device_hostname": "10.0.0.9",
    "username": "ops",
    "password": "pw",
    "command": "show interfaces status",
    "action": "interfaces",
  }
  base.update(payload)
  return WorkItem(id="q1", kind=WorkKind.QUERY_COMMAND, payload=base, batch_id="b-1")


def test_clean_output_drops_connection_closed_lines():
  raw = "Port Status\nGi0/1 connected\nConnection to 10.0.0.9 closed by remote host.\n"
  assert clean_output(raw) == "Port Status\nGi0/1 connected"


def test_allowed_command_runs(config):
  transport = FakeTransport(result("Port Status\nGi0/1 connected\nConnection to 10.0.0.9 closed.\n"))
  res = QueryCommandExecutor(config, transport)(_item(), BatchContext("devicequery"))
  assert res.status == ResultStatus.SUCCESS
  assert res.data["output"] == "Port Status\nGi0/1 connected"
  assert res.data["action"] == "interfaces"
  assert res.data["device_hostname"] == "10.0.0.9"
  assert transport.calls[0]["command"] == "show interfaces status"
  assert transport.calls[0]["secret"].released


def test_command_outside_allowlist_is_rejected(config):
  transport = FakeTransport(result("x"))
  with pytest.raises(ValidationError, match="not permitted"):
    QueryCommandExecutor(config, transport)(_item(command="reload"), BatchContext("devicequery"))
  assert transport.calls == []


def test_missing_fields_are_rejected(config):
  with pytest.raises(ValidationError, match="password"):
    QueryCommandExecutor(config, FakeTransport(result("x")))(_item(password=""), BatchContext("devicequery"))


def test_failed_command_without_output(config):
  transport = FakeTransport(result("", returncode=255, stderr="Permission denied"))
  with pytest.raises(ExecutionError, match="exit 255"):
    QueryCommandExecutor(config, transport)(_item(), BatchContext("devicequery"))


def test_nonzero_exit_with_output_is_kept(config):
  transport = FakeTransport(result("partial listing", returncode=1))
  res = QueryCommandExecutor(config, transport)(_item(), BatchContext("devicequery"))
  assert res.status == ResultStatus.SUCCESS
  assert res.data["output"] == "partial listing"
