import json
import logging
from typing import Any

from netagent.clients.tenant_client import TenantClient
from netagent.exceptions import FetchError
from netagent.models import BatchContext, CommandSpec, WorkItem

log = logging.getLogger(__name__)

_ITEM_ID_KEYS = ("id", "probeid", "probe_id", "device_id")


def _entry_id(entry: dict, fallback: str) -> str:
  for k in _ITEM_ID_KEYS:
    v = entry.get(k)
    if v is not None and v != "":
      return str(v)
  return fallback


def normalize(body: Any, spec: CommandSpec, batch_id: str) -> list[WorkItem]:
  """Turn either response shape into a flat list of work items."""
  if isinstance(body, dict):
    return _from_envelope(body, spec, batch_id)
  if isinstance(body, list):
    return _from_array(body, spec, batch_id)
  raise FetchError(f"unexpected response type {type(body).__name__}")


def _from_array(body: list, spec: CommandSpec, batch_id: str) -> list[WorkItem]:
  items: list[WorkItem] = []
  for index, group in enumerate(body):
    if not isinstance(group, dict) or not isinstance(group.get("payload_data"), list):
      log.warning("skipping item with missing or invalid payload_data", extra={"event": "payload_skipped", "batch_id": batch_id})
      continue
    for position, entry in enumerate(group["payload_data"]):
      if not isinstance(entry, dict):
        entry = {"value": entry}
      item_id = _entry_id(entry, f"{group.get('id', index)}:{position}")
      items.append(WorkItem(id=item_id, kind=spec.kind, payload=entry, batch_id=batch_id))
  return items


def _from_envelope(body: dict, spec: CommandSpec, batch_id: str) -> list[WorkItem]:
  if not body:
    return []
  status = body.get("status")
  if status is not None and status != "success":
    log.info("tenant reported status %r, nothing to do", status, extra={"event": "envelope_status", "batch_id": batch_id})
    return []
  if "payloads" not in body:
    if body.get("count") in (None, 0, "0"):
      return []
    raise FetchError(f"response envelope announces {body.get('count')!r} payloads but carries none")
  payloads = body.get("payloads")
  if payloads is None:
    return []
  if not isinstance(payloads, list):
    raise FetchError("payloads field is not a list")
  options: dict[str, Any] = {}
  config = body.get("config")
  if isinstance(config, dict) and config.get("legacy_ssh_options"):
    options["legacy_ssh_options"] = str(config["legacy_ssh_options"])
  items: list[WorkItem] = []
  for index, payload in enumerate(payloads):
    if not isinstance(payload, dict):
      log.warning("skipping non-object payload", extra={"event": "payload_skipped", "batch_id": batch_id})
      continue
    data = payload.get("payload_data")
    if isinstance(data, str):
      try:
        data = json.loads(data)
      except ValueError:
        pass
    item_id = str(payload.get("id") if payload.get("id") is not None else index)
    items.append(WorkItem(id=item_id, kind=spec.kind, payload=data if isinstance(data, dict) else {"raw": data}, batch_id=batch_id, options=dict(options)))
  return items


class PayloadFetcher:
  def __init__(self, client: TenantClient):
    self.client = client

  def fetch(self, spec: CommandSpec, ctx: BatchContext) -> list[WorkItem]:
    logger = ctx.logger(log)
    logger.info("fetching payloads", extra={"event": "fetch_start", "path": spec.fetch_path})
    try:
      body = self.client.get_json(spec.fetch_path)
      items = normalize(body, spec, ctx.batch_id)
    except FetchError as exc:
      logger.error("failed to fetch payloads: %s", exc, extra={"event": "fetch_failed", "status_code": exc.status_code})
      raise
    logger.info("payloads received", extra={"event": "fetch_done", "count": len(items)})
    return items
