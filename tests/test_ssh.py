import paramiko
import pytest

from conftest import FakeRunner, result
from netagent.config import LEGACY_SSH_OPTIONS, MODERN_SSH_OPTIONS
from netagent.exceptions import ExecutionError, ValidationError
from netagent.kex_compat import LEGACY_KEX, _extend, is_kex_failure
from netagent.models import BatchContext
from netagent.secure.secret import SecretHandle
from netagent.ssh import ParamikoTransport, SshpassTransport, SshTarget, build_ssh_argv, build_transport, select_options


def test_target_validates_inputs():
  with pytest.raises(ValidationError):
    SshTarget(host="-oProxyCommand=sh", port=22, username="admin")
  with pytest.raises(ValidationError):
    SshTarget(host="10.0.0.1", port=0, username="admin")
  with pytest.raises(ValidationError):
    SshTarget(host="10.0.0.1", port=22, username="-l")


def test_argv_keeps_password_off_the_command_line():
  target = SshTarget(host="10.0.0.1", port=2222, username="admin")
  argv = build_ssh_argv(target, "show running-config view full", "-o StrictHostKeyChecking=no", 7, 15)
  assert argv[:5] == ["sshpass", "-d", "7", "ssh", "-p"]
  assert argv[5] == "2222"
  assert "-o" in argv and "StrictHostKeyChecking=no" in argv
  assert "ConnectTimeout=15" in argv
  assert argv[-2] == "admin@10.0.0.1"
  assert argv[-1] == "show running-config view full"


def test_select_options(config, caplog):
  modern = SshTarget(host="h", port=22, username="u")
  legacy = SshTarget(host="h", port=22, username="u", is_legacy=True)
  override = SshTarget(host="h", port=22, username="u", is_legacy=True, legacy_options="-c 3des-cbc")
  assert select_options(config, modern) == MODERN_SSH_OPTIONS
  assert select_options(config, legacy) == LEGACY_SSH_OPTIONS
  assert select_options(config, override) == "-c 3des-cbc"

  config.set("ssh.legacy_options", "")
  assert select_options(config, legacy) == MODERN_SSH_OPTIONS
  assert any("no legacy SSH options" in r.getMessage() for r in caplog.records)


def test_sshpass_transport_passes_descriptor(config):
  seen = {}

  def fake_ssh(argv):
    seen["argv"] = argv
    return result("config text", argv=argv)

  runner = FakeRunner({"sshpass": fake_ssh})
  transport = SshpassTransport(config, runner)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    res = transport.run(target, "show version", secret, BatchContext("devicequery"))
    fd = secret.open_store().fileno()
  assert res.stdout == "config text"
  assert seen["argv"][2] == str(fd)
  assert "pw" not in seen["argv"]


def test_sshpass_timeout_is_an_error(config):
  runner = FakeRunner({"sshpass": result(timed_out=True, returncode=-9)})
  transport = SshpassTransport(config, runner)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    with pytest.raises(ExecutionError) as info:
      transport.run(target, "show version", secret, BatchContext("devicequery"))
  assert info.value.timed_out


def test_sshpass_kex_failure_hint(config):
  stderr = "Unable to negotiate with 10.0.0.1 port 22: no matching key exchange method found."
  runner = FakeRunner({"sshpass": result(returncode=255, stderr=stderr)})
  transport = SshpassTransport(config, runner)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    with pytest.raises(ExecutionError, match="legacy SSH options"):
      transport.run(target, "show version", secret, BatchContext("devicequery"))


def test_build_transport(make_config):
  assert isinstance(build_transport(make_config()), SshpassTransport)
  assert isinstance(build_transport(make_config({"ssh.transport": "paramiko"})), ParamikoTransport)
  with pytest.raises(ValueError):
    build_transport(make_config({"ssh.transport": "telnet"}))


def test_kex_failure_detection():
  assert is_kex_failure("Unable to negotiate with 10.0.0.1 port 22: no matching key exchange method found.")
  assert is_kex_failure(paramiko.SSHException("Incompatible ssh peer (no acceptable kex algorithm)"))
  assert not is_kex_failure("Permission denied (password).")


def test_legacy_algorithms_only_added_when_supported():
  out = _extend(("curve25519-sha256",), LEGACY_KEX, ("curve25519-sha256", "diffie-hellman-group14-sha1"))
  assert out == ["curve25519-sha256", "diffie-hellman-group14-sha1"]


class _Channel:
  """Hands out queued stdout/stderr chunks, then reports the exit status."""

  def __init__(self, out=(), err=(), status=0):
    self.out = list(out)
    self.err = list(err)
    self.status = status
    self.closed = False

  def recv_ready(self):
    return bool(self.out)

  def recv(self, size):
    return self.out.pop(0)

  def recv_stderr_ready(self):
    return bool(self.err)

  def recv_stderr(self, size):
    return self.err.pop(0)

  def exit_status_ready(self):
    return not self.out and not self.err

  def recv_exit_status(self):
    return self.status

  def close(self):
    self.closed = True


class _TricklingChannel(_Channel):
  """Sends one byte per poll and never exits."""

  def recv_ready(self):
    return True

  def recv(self, size):
    return b"."


class _Stream:
  def __init__(self, channel):
    self.channel = channel


class _Client:
  def __init__(self, channel=None):
    self.channel = channel or _Channel([b"hostname ", b"sw1\n"], [b"warn\n"])
    self.closed = False
    self.commands = []

  def exec_command(self, command, timeout=None):
    self.commands.append(command)
    return None, _Stream(self.channel), _Stream(self.channel)

  def close(self):
    self.closed = True


def test_paramiko_transport(config, monkeypatch):
  client = _Client()
  seen = {}

  def fake_connect(host, **kwargs):
    seen.update(host=host, **kwargs)
    return client

  monkeypatch.setattr("netagent.ssh.connect_with_kex_fallback", fake_connect)
  target = SshTarget(host="10.0.0.1", port=22, username="admin", is_legacy=True)
  with SecretHandle("pw") as secret:
    res = ParamikoTransport(config).run(target, "show version", secret, BatchContext("devicequery"))
  assert res.stdout == "hostname sw1\n"
  assert res.stderr == "warn\n"
  assert res.returncode == 0
  assert client.closed
  assert seen["legacy"] is True
  assert seen["password"] == "pw"


def test_paramiko_auth_failure(config, monkeypatch):
  def fake_connect(host, **kwargs):
    raise paramiko.AuthenticationException("denied")

  monkeypatch.setattr("netagent.ssh.connect_with_kex_fallback", fake_connect)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    with pytest.raises(ExecutionError, match="authentication failed"):
      ParamikoTransport(config).run(target, "show version", secret, BatchContext("devicequery"))


def test_paramiko_output_is_bounded_by_the_overall_deadline(config, monkeypatch):
  channel = _TricklingChannel()
  client = _Client(channel)
  monkeypatch.setattr("netagent.ssh.connect_with_kex_fallback", lambda host, **kwargs: client)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    with pytest.raises(ExecutionError) as info:
      ParamikoTransport(config).run(target, "show tech", secret, BatchContext("devicequery", budget_seconds=0.3))
  assert info.value.timed_out
  assert channel.closed
  assert client.closed


def test_paramiko_exit_status_is_returned(config, monkeypatch):
  client = _Client(_Channel([b"% Invalid input\n"], status=1))
  monkeypatch.setattr("netagent.ssh.connect_with_kex_fallback", lambda host, **kwargs: client)
  target = SshTarget(host="10.0.0.1", port=22, username="admin")
  with SecretHandle("pw") as secret:
    res = ParamikoTransport(config).run(target, "show nonsense", secret, BatchContext("devicequery"))
  assert res.returncode == 1
  assert res.stdout == "% Invalid input\n"
