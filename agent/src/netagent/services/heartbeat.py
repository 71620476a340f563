import logging

from netagent.clients.tenant_client import TenantClient
from netagent.exceptions import FetchError

log = logging.getLogger(__name__)


def heartbeat(client: TenantClient) -> bool:
  try:
    data = client.get_json("heartbeat")
  except FetchError as exc:
    log.error("heartbeat request failed: %s", exc, extra={"event": "heartbeat_failed", "status_code": exc.status_code})
    return False
  if not isinstance(data, dict):
    log.error("heartbeat returned unexpected body", extra={"event": "heartbeat_failed"})
    return False
  if data.get("status") == "ok":
    log.info("heartbeat ok: %s", data.get("message", ""), extra={"event": "heartbeat_ok"})
    return True
  log.error("tenant returned heartbeat failure: %s", data.get("message", ""), extra={"event": "heartbeat_failed"})
  return False
