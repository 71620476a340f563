import pytest

from conftest import FakeTransport, result
from netagent.exceptions import ExecutionError, ValidationError
from netagent.executors.backup import DeviceBackupExecutor, config_digest
from netagent.models import BatchContext, ResultStatus, WorkItem, WorkKind, decode_device
from netagent.vendors.cisco_ios import extract_cisco_config

CISCO = "Building configuration...\n! Last change 10:00\n!\nversion 15.2\nhostname sw1\n!\nend\n"


def _item(**payload):
  base = {"id": "7", "name": "sw1", "hostname": "10.0.0.7", "type": "cisco", "device_username": "admin", "device_password": "pw"}
  base.update(payload)
  return WorkItem(id=str(base["id"]), kind=WorkKind.DEVICE_BACKUP, payload=base, batch_id="b-1")


def test_changed_config_is_reported_with_hash(config):
  transport = FakeTransport(result(CISCO))
  res = DeviceBackupExecutor(config, transport)(_item(), BatchContext("devicemanager"))
  expected = extract_cisco_config(CISCO)
  assert res.status == ResultStatus.SUCCESS
  assert res.data["data"] == expected
  assert res.data["sha256"] == config_digest(expected)
  assert res.data["size"] == len(expected.encode())
  assert transport.calls[0]["command"] == "show running-config view full"
  assert transport.calls[0]["password"] == "pw"
  assert transport.calls[0]["secret"].released


def test_unchanged_config_is_idempotent(config):
  digest = config_digest(extract_cisco_config(CISCO))
  executor = DeviceBackupExecutor(config, FakeTransport(result(CISCO)))
  res = executor(_item(latesthash=digest), BatchContext("devicemanager"))
  assert res.status == ResultStatus.SKIPPED_NO_CHANGE
  assert "data" not in res.data
  assert res.data["sha256"] == digest


def test_second_run_against_same_device_is_unchanged(config):
  executor = DeviceBackupExecutor(config, FakeTransport(result(CISCO)))
  device = decode_device(_item().payload)
  ctx = BatchContext("devicemanager")
  assert executor.run(device, ctx).status == ResultStatus.SUCCESS
  assert executor.run(device, ctx).status == ResultStatus.SKIPPED_NO_CHANGE


def test_timestamp_only_change_is_unchanged(config):
  first = DeviceBackupExecutor(config, FakeTransport(result(CISCO)))(_item(), BatchContext("devicemanager"))
  later = CISCO.replace("10:00", "11:30")
  second = DeviceBackupExecutor(config, FakeTransport(result(later)))(_item(latesthash=first.data["sha256"]), BatchContext("devicemanager"))
  assert second.status == ResultStatus.SKIPPED_NO_CHANGE


@pytest.mark.parametrize("reply", [result("tiny"), result(CISCO, returncode=255), result("", returncode=0)])
def test_short_or_failed_output_is_an_error(config, reply):
  res = DeviceBackupExecutor(config, FakeTransport(reply))(_item(), BatchContext("devicemanager"))
  assert res.status == ResultStatus.ERROR
  assert "sw1" in res.error_message
  assert "data" not in res.data


def test_transport_error_becomes_error_result(config):
  transport = FakeTransport(ExecutionError("ssh to 10.0.0.7 timed out after 120s", timed_out=True))
  res = DeviceBackupExecutor(config, transport)(_item(), BatchContext("devicemanager"))
  assert res.status == ResultStatus.ERROR
  assert "timed out" in res.error_message


def test_device_without_credentials_is_skipped(config):
  transport = FakeTransport(result(CISCO))
  assert DeviceBackupExecutor(config, transport)(_item(device_password=""), BatchContext("devicemanager")) is None
  assert transport.calls == []


def test_unknown_device_type_is_invalid(config):
  with pytest.raises(ValidationError):
    DeviceBackupExecutor(config, FakeTransport(result(CISCO)))(_item(type="juniper"), BatchContext("devicemanager"))


def test_missing_markers_hashes_full_output(config, caplog):
  raw = "hostname sw1\ninterface Gi0/1\nend\n"
  res = DeviceBackupExecutor(config, FakeTransport(result(raw)))(_item(), BatchContext("devicemanager"))
  assert res.status == ResultStatus.SUCCESS
  assert res.data["data"] == raw
  assert any("markers not found" in r.getMessage() for r in caplog.records)


def test_legacy_override_reaches_transport(config):
  transport = FakeTransport(result(CISCO))
  item = _item(is_legacy="1")
  item.options["legacy_ssh_options"] = "-c 3des-cbc"
  DeviceBackupExecutor(config, transport)(item, BatchContext("devicemanager"))
  target = transport.calls[0]["target"]
  assert target.is_legacy
  assert target.legacy_options == "-c 3des-cbc"
