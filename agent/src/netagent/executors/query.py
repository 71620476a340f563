import logging
import re

from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError, ValidationError
from netagent.models import BatchContext, ExecutionResult, ResultStatus, WorkItem, WorkKind, decode_payload
from netagent.secure.secret import SecretHandle
from netagent.ssh import SshTarget, SshTransport

log = logging.getLogger(__name__)

# Read-only commands the tenant may request on demand.
ALLOWED_COMMANDS = frozenset({
  "show hardware",
  "show mac address-table",
  "show log",
  "show interfaces status",
  "show running-config",
  "show running-config view full",
  "log print",
  "export show-sensitive",
  "interface print brief",
  "interface ethernet switch host print; interface bridge host print",
  "system routerboard print",
})

_CONNECTION_CLOSED_RE = re.compile(r"Connection to \S+ closed( by remote host)?\.?", re.IGNORECASE)


def clean_output(output: str) -> str:
  lines = [_CONNECTION_CLOSED_RE.sub("", line) for line in output.splitlines()]
  return "\n".join(lines).rstrip()


class QueryCommandExecutor:
  def __init__(self, config: AgentConfig, transport: SshTransport):
    self.config = config
    self.transport = transport

  def __call__(self, item: WorkItem, ctx: BatchContext) -> ExecutionResult:
    query = decode_payload(WorkKind.QUERY_COMMAND, item.payload)
    logger = ctx.logger(log, item_id=item.id, host=query.device_hostname)
    if query.command not in ALLOWED_COMMANDS:
      logger.error("command not in allowlist: %r", query.command, extra={"event": "query_rejected"})
      raise ValidationError("requested command is not permitted")
    target = SshTarget(
      host=query.device_hostname,
      port=query.port,
      username=query.username,
      is_legacy=query.is_legacy,
      legacy_options=item.options.get("legacy_ssh_options"),
    )
    logger.info("executing query %s", query.action, extra={"event": "query_start"})
    with SecretHandle(query.password) as secret:
      result = self.transport.run(target, query.command, secret, ctx)
    output = clean_output(result.stdout)
    if result.returncode != 0 and not output:
      logger.debug("query stderr: %s", result.stderr)
      raise ExecutionError(f"SSH command execution failed (exit {result.returncode})")
    logger.info("query finished", extra={"event": "query_done", "count": len(output)})
    return ExecutionResult(
      item_id=item.id,
      kind=WorkKind.QUERY_COMMAND,
      status=ResultStatus.SUCCESS,
      data={
        "output": output,
        "data": output,
        "device_hostname": query.device_hostname,
        "action": query.action,
        "output_size": len(output.encode("utf-8")),
      },
    )
