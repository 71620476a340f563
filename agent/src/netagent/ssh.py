import logging
import shlex
import socket
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import paramiko

from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError
from netagent.kex_compat import connect_with_kex_fallback, is_kex_failure
from netagent.models import BatchContext
from netagent.runner import CommandResult, CommandRunner
from netagent.sanitize import require_hostname, require_port, require_username
from netagent.secure.secret import SecretHandle

log = logging.getLogger(__name__)


@dataclass
class SshTarget:
  host: str
  port: int
  username: str
  is_legacy: bool = False
  legacy_options: Optional[str] = None

  def __post_init__(self):
    self.host = require_hostname(self.host, "hostname")
    self.port = require_port(self.port)
    self.username = require_username(self.username)


class SshTransport(Protocol):
  def run(self, target: SshTarget, command: str, secret: SecretHandle, ctx: BatchContext) -> CommandResult:
    ...


def select_options(config: AgentConfig, target: SshTarget) -> str:
  modern = str(config.get("ssh.modern_options") or "")
  if not target.is_legacy:
    return modern
  legacy = target.legacy_options if target.legacy_options is not None else str(config.get("ssh.legacy_options") or "")
  if not legacy.strip():
    log.warning("legacy device but no legacy SSH options configured, using modern defaults", extra={"event": "legacy_options_missing", "host": target.host})
    return modern
  return legacy


def build_ssh_argv(target: SshTarget, command: str, options: str, password_fd: int, connect_timeout: int) -> list[str]:
  return [
    "sshpass", "-d", str(password_fd),
    "ssh", "-p", str(target.port),
    *shlex.split(options),
    "-o", f"ConnectTimeout={connect_timeout}",
    "-o", "ServerAliveInterval=10",
    "-o", "NumberOfPasswordPrompts=1",
    f"{target.username}@{target.host}",
    command,
  ]


def redact_argv(argv: list[str]) -> str:
  return " ".join(shlex.quote(a) for a in argv)


class SshpassTransport:
  """ssh driven through sshpass; the password is read from an inherited descriptor."""

  def __init__(self, config: AgentConfig, runner: Optional[CommandRunner] = None):
    self.config = config
    self.runner = runner or CommandRunner()

  def run(self, target: SshTarget, command: str, secret: SecretHandle, ctx: BatchContext) -> CommandResult:
    options = select_options(self.config, target)
    store = secret.open_store()
    argv = build_ssh_argv(target, command, options, store.fileno(), int(self.config.get("ssh.connect_timeout_seconds")))
    ctx.logger(log).debug("running ssh: %s", redact_argv(argv), extra={"event": "ssh_start", "host": target.host})
    timeout = ctx.bound(float(self.config.get("ssh.timeout_seconds")))
    result = self.runner.run(argv, timeout=timeout, pass_fds=(store.fileno(),))
    if result.timed_out:
      raise ExecutionError(f"ssh to {target.host} timed out after {timeout:.0f}s", timed_out=True)
    if not result.stdout.strip() and is_kex_failure(result.stderr):
      raise ExecutionError(f"key exchange with {target.host} failed; the device may need legacy SSH options")
    return result


POLL_SECONDS = 0.05


def _collect(channel, deadline: float) -> tuple[bytes, bytes]:
  """Drain stdout and stderr until the remote command exits; socket.timeout past the deadline."""
  out, err = bytearray(), bytearray()
  while True:
    drained = False
    if channel.recv_ready():
      out += channel.recv(65536)
      drained = True
    if channel.recv_stderr_ready():
      err += channel.recv_stderr(65536)
      drained = True
    if not drained and channel.exit_status_ready():
      return bytes(out), bytes(err)
    if time.monotonic() >= deadline:
      channel.close()
      raise socket.timeout("remote command did not finish in time")
    if not drained:
      time.sleep(POLL_SECONDS)


class ParamikoTransport:
  """In-process SSH exec channel via paramiko."""

  def __init__(self, config: AgentConfig):
    self.config = config

  def run(self, target: SshTarget, command: str, secret: SecretHandle, ctx: BatchContext) -> CommandResult:
    connect_timeout = float(self.config.get("ssh.connect_timeout_seconds"))
    timeout = ctx.bound(float(self.config.get("ssh.timeout_seconds")))
    if timeout <= 0:
      raise ExecutionError(f"ssh to {target.host}: no time left to run", timed_out=True)
    started = time.monotonic()
    try:
      client = connect_with_kex_fallback(
        target.host,
        port=target.port,
        username=target.username,
        password=secret.reveal(),
        timeout=min(connect_timeout, timeout),
        legacy=target.is_legacy,
      )
    except (socket.timeout, TimeoutError) as exc:
      raise ExecutionError(f"timed out connecting to {target.host}", timed_out=True) from exc
    except paramiko.AuthenticationException as exc:
      raise ExecutionError(f"authentication failed for {target.host}") from exc
    except (paramiko.SSHException, OSError, EOFError) as exc:
      raise ExecutionError(f"ssh to {target.host} failed: {exc}") from exc
    try:
      _, stdout, _ = client.exec_command(command, timeout=timeout)
      try:
        raw_out, raw_err = _collect(stdout.channel, started + timeout)
      except socket.timeout as exc:
        raise ExecutionError(f"ssh to {target.host} timed out after {timeout:.0f}s", timed_out=True) from exc
      out = raw_out.decode("utf-8", errors="replace")
      err = raw_err.decode("utf-8", errors="replace")
      status = stdout.channel.recv_exit_status()
    except paramiko.SSHException as exc:
      raise ExecutionError(f"ssh command on {target.host} failed: {exc}") from exc
    finally:
      client.close()
    return CommandResult(argv=["paramiko", target.host], returncode=status, stdout=out, stderr=err, duration=time.monotonic() - started)


def build_transport(config: AgentConfig, runner: Optional[CommandRunner] = None) -> SshTransport:
  name = str(config.get("ssh.transport")).lower()
  if name == "paramiko":
    return ParamikoTransport(config)
  if name != "sshpass":
    raise ValueError(f"unknown ssh transport: {name}")
  return SshpassTransport(config, runner)
