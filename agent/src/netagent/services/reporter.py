import logging
from typing import Any, Optional

from netagent.clients.tenant_client import TenantClient
from netagent.exceptions import ReportError
from netagent.models import CommandSpec, ExecutionResult, ResultStatus, WorkKind
from netagent.storage.spool import ResultSpool

log = logging.getLogger(__name__)


def _timestamp(result: ExecutionResult) -> str:
  return result.timestamp.replace(microsecond=0).strftime("%Y-%m-%d %H:%M:%S")


def build_report_body(result: ExecutionResult) -> dict[str, Any]:
  data = dict(result.data)
  if result.kind == WorkKind.DEVICE_BACKUP:
    body = {"device_id": result.item_id, **data, "status": result.status.value}
    if result.status == ResultStatus.ERROR:
      body["log"] = result.error_message or "backup failed"
    return body
  if result.kind == WorkKind.PROBE:
    body = {
      "id": result.item_id,
      "ping_data": data.get("ping_data"),
      "packet_loss_data": data.get("packet_loss_data"),
      "status": data.get("status") if result.status != ResultStatus.ERROR else "error",
    }
    if result.status == ResultStatus.ERROR:
      body["error"] = result.error_message
    return body
  if result.status == ResultStatus.ERROR:
    response_data = {"status": "error", "error": result.error_message, "message": result.error_message, "timestamp": _timestamp(result)}
  else:
    response_data = {"status": "success", **data, "timestamp": _timestamp(result)}
  return {"payload_id": result.item_id, "response_data": response_data}


class ResultReporter:
  def __init__(self, client: TenantClient, attempts: int = 2, spool: Optional[ResultSpool] = None):
    self.client = client
    self.attempts = max(1, attempts)
    self.spool = spool

  def post(self, path: str, body: dict[str, Any], item_id: str = "") -> bool:
    for attempt in range(1, self.attempts + 1):
      try:
        status_code = self.client.post_json(path, body)
      except ReportError as exc:
        log.error(
          "failed to deliver result (attempt %d/%d): %s", attempt, self.attempts, exc,
          extra={"event": "report_failed", "item_id": item_id, "status_code": exc.status_code, "response_body": exc.body},
        )
        continue
      log.info("result delivered", extra={"event": "report_sent", "item_id": item_id, "status_code": status_code})
      return True
    return False

  def report(self, spec: CommandSpec, result: ExecutionResult) -> bool:
    body = build_report_body(result)
    if self.post(spec.report_path, body, item_id=result.item_id):
      return True
    if self.spool is not None and result.kind == WorkKind.DEVICE_BACKUP and result.status == ResultStatus.SUCCESS:
      path = self.spool.save(spec.name, spec.report_path, body)
      log.error("backup kept in retry spool", extra={"event": "report_spooled", "item_id": result.item_id, "path": str(path)})
    return False

  def flush_spool(self, spec: CommandSpec) -> int:
    if self.spool is None:
      return 0
    return self.spool.flush(spec.name, lambda path, body: self.post(path, body))
