import hashlib
import logging
import uuid
from typing import Optional

from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError
from netagent.models import BatchContext, Device, ExecutionResult, ResultStatus, WorkItem, WorkKind, decode_payload
from netagent.secure.secret import SecretHandle
from netagent.ssh import SshTarget, SshTransport
from netagent.vendors.registry import get_vendor

log = logging.getLogger(__name__)

MIN_OUTPUT_BYTES = 10


def config_digest(text: str) -> str:
  return hashlib.sha256(text.encode("utf-8")).hexdigest()


class DeviceBackupExecutor:
  def __init__(self, config: AgentConfig, transport: SshTransport):
    self.config = config
    self.transport = transport

  def __call__(self, item: WorkItem, ctx: BatchContext) -> Optional[ExecutionResult]:
    return self.run(decode_payload(WorkKind.DEVICE_BACKUP, item.payload), ctx, item)

  def run(self, device: Device, ctx: BatchContext, item: Optional[WorkItem] = None) -> Optional[ExecutionResult]:
    logger = ctx.logger(log, item_id=device.id, device=device.name)
    if not device.has_credentials:
      logger.debug("skipping device with no credentials", extra={"event": "backup_no_credentials"})
      return None

    vendor = get_vendor(device.type)
    legacy_options = item.options.get("legacy_ssh_options") if item is not None else None
    target = SshTarget(
      host=device.hostname,
      port=device.port,
      username=device.username,
      is_legacy=device.is_legacy,
      legacy_options=legacy_options,
    )

    base = {"batch": ctx.batch_id}
    logger.info("starting backup", extra={"event": "backup_start", "host": device.hostname})
    try:
      with SecretHandle(device.password) as secret:
        result = self.transport.run(target, vendor.read_command, secret, ctx)
    except ExecutionError as exc:
      logger.error("backup failed: %s", exc, extra={"event": "backup_failed", "timed_out": exc.timed_out})
      return self._error(device, base, str(exc))

    output = result.stdout
    if result.returncode != 0 or len(output) < MIN_OUTPUT_BYTES:
      logger.error("backup failed (exit %s, %d bytes)", result.returncode, len(output), extra={"event": "backup_failed", "returncode": result.returncode})
      logger.debug("raw device output: %s", output + result.stderr)
      return self._error(device, base, f"Backup for Device: {device.name} failed (exit {result.returncode}, {len(output)} bytes of output).")

    if not vendor.has_markers(output):
      logger.warning("config markers not found, hashing full output", extra={"event": "backup_markers_missing"})
    config_text = vendor.extract_config(output)
    digest = config_digest(config_text)

    if device.last_backup_hash and device.last_backup_hash == digest:
      logger.info("configuration unchanged", extra={"event": "backup_unchanged"})
      return ExecutionResult(
        item_id=device.id,
        kind=WorkKind.DEVICE_BACKUP,
        status=ResultStatus.SKIPPED_NO_CHANGE,
        data={**base, "sha256": digest, "log": f"Backup for Device: {device.name} unchanged."},
      )

    device.last_backup_hash = digest
    size = len(config_text.encode("utf-8"))
    logger.info("configuration changed", extra={"event": "backup_changed", "count": size})
    return ExecutionResult(
      item_id=device.id,
      kind=WorkKind.DEVICE_BACKUP,
      status=ResultStatus.SUCCESS,
      data={
        **base,
        "data": config_text,
        "uuid": str(uuid.uuid4()),
        "is_forced": device.is_forced,
        "size": size,
        "sha256": digest,
        "log": f"Backup for Device: {device.name} was successful.",
      },
    )

  def _error(self, device: Device, base: dict, message: str) -> ExecutionResult:
    return ExecutionResult(item_id=device.id, kind=WorkKind.DEVICE_BACKUP, status=ResultStatus.ERROR, data=dict(base), error_message=message)
