import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from netagent.exceptions import FetchError
from netagent.services.cycle import Agent, CycleOutcome, CycleStatus
from netagent.services.scheduler import PollLoop

log = logging.getLogger(__name__)

QUEUE_PATH = "command-queues"

# queue entry type -> agent command whose poll loop it starts
TRIGGERS = {
  "force-devicemanager-query": "devicequery",
}
# known to the tenant, served by other agents
NOT_HANDLED = {"force-sync-papercutsvc", "force-sync-edustarsvc"}


@dataclass
class QueueOutcome:
  status: CycleStatus
  received: int = 0
  triggered: list[str] = field(default_factory=list)
  unknown: list[str] = field(default_factory=list)
  loops: dict[str, list[CycleOutcome]] = field(default_factory=dict)

  @property
  def ok(self) -> bool:
    return self.status == CycleStatus.OK


class CommandQueue:
  """
  Reads the tenant's command queue and starts the loops it asks for.

  Each entry is ``{"type": ..., "payload_data": {"process": bool}}``. A
  triggered command runs once per poll even when it is queued twice.
  """

  def __init__(
    self,
    agent: Agent,
    start_loop: Optional[Callable[[str], list[CycleOutcome]]] = None,
    stop: Optional[threading.Event] = None,
  ):
    self.agent = agent
    self.start_loop = start_loop or self._poll_loop
    self.stop = stop or threading.Event()

  def _poll_loop(self, command: str) -> list[CycleOutcome]:
    return PollLoop(self.agent, stop=self.stop).run(command)

  def poll(self) -> QueueOutcome:
    if not self.agent.gate.check():
      log.error("connectivity failed, not reading the command queue", extra={"event": "queue_skipped"})
      return QueueOutcome(status=CycleStatus.CONNECTIVITY_FAILED)
    try:
      items = self.agent.client.get_json(QUEUE_PATH)
    except FetchError as exc:
      log.error("failed to fetch the command queue: %s", exc, extra={"event": "queue_fetch_failed", "status_code": exc.status_code})
      return QueueOutcome(status=CycleStatus.FETCH_FAILED)
    if items is None:
      items = []
    if not isinstance(items, list):
      log.error("command queue is not a list", extra={"event": "queue_fetch_failed"})
      return QueueOutcome(status=CycleStatus.FETCH_FAILED)

    outcome = QueueOutcome(status=CycleStatus.OK, received=len(items))
    log.debug("command queue items received", extra={"event": "queue_received", "count": len(items)})
    for item in items:
      kind = _entry_type(item)
      log.debug("processing queue item %s", kind, extra={"event": "queue_item", "process": _process_flag(item)})
      if kind in TRIGGERS:
        command = TRIGGERS[kind]
        if command not in outcome.triggered:
          outcome.triggered.append(command)
      elif kind in NOT_HANDLED:
        log.info("queue item %s is not handled by this agent", kind, extra={"event": "queue_item_skipped"})
      else:
        log.warning("unknown command type %r", kind, extra={"event": "queue_item_unknown"})
        outcome.unknown.append(str(kind))

    for command in outcome.triggered:
      log.info("triggering %s loop", command, extra={"event": "queue_trigger", "command": command})
      outcome.loops[command] = self.start_loop(command)
    return outcome


def _entry_type(item: Any) -> Optional[str]:
  if not isinstance(item, dict):
    return None
  kind = item.get("type")
  return str(kind) if kind is not None else None


def _process_flag(item: Any) -> bool:
  payload = item.get("payload_data") if isinstance(item, dict) else None
  return bool(payload.get("process")) if isinstance(payload, dict) else False
