import logging
from typing import Callable, Optional

from netagent.clients.tenant_client import TenantClient
from netagent.exceptions import ConnectivityError

log = logging.getLogger(__name__)


class ConnectivityGate:
  """Pre-flight check that must pass before a cycle fetches anything."""

  def __init__(self, client: TenantClient, directory_check: Optional[Callable[[], bool]] = None):
    self.client = client
    self.directory_check = directory_check

  def check(self) -> bool:
    if not self.client.check_connectivity():
      return False
    if self.directory_check is None:
      return True
    try:
      ok = bool(self.directory_check())
    except Exception:
      log.exception("directory service check raised", extra={"event": "directory_check_failed"})
      return False
    if not ok:
      log.error("directory service check failed", extra={"event": "directory_check_failed"})
    return ok

  def ensure(self) -> None:
    if not self.check():
      raise ConnectivityError("could not connect to the tenant instance")
