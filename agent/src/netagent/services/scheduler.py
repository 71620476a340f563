import logging
import threading
import time
from typing import Callable, Optional

from netagent.models import COMMANDS
from netagent.services.cycle import Agent, CycleOutcome, CycleStatus

log = logging.getLogger(__name__)

MAX_KEPT_OUTCOMES = 100


class PollLoop:
  """
  Repeats cycles of one command until the loop budget is spent.

  The command lock is held for the whole loop, so a cron-started cycle of
  the same command cannot overlap it. Once the budget is spent no new fetch
  starts; the cycle in progress is allowed to finish.
  """

  def __init__(
    self,
    agent: Agent,
    interval: Optional[float] = None,
    max_runtime: Optional[float] = None,
    stop: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
  ):
    self.agent = agent
    self.interval = float(interval if interval is not None else agent.config.get("loop.poll_interval_seconds"))
    self.max_runtime = float(max_runtime if max_runtime is not None else agent.config.get("loop.max_runtime_seconds"))
    self.stop = stop or threading.Event()
    self.clock = clock

  def run(self, command: str, mode: Optional[str] = None) -> list[CycleOutcome]:
    spec = COMMANDS[command]
    outcomes: list[CycleOutcome] = []
    with self.agent.lock(spec).hold() as acquired:
      if not acquired:
        log.info("skipping loop, previous run still in progress", extra={"event": "loop_locked", "command": command})
        return [CycleOutcome(command=command, status=CycleStatus.LOCKED)]
      deadline = self.clock() + self.max_runtime if self.max_runtime > 0 else float("inf")
      log.info("poll loop starting", extra={"event": "loop_start", "command": command})
      while not self.stop.is_set() and self.clock() < deadline:
        try:
          outcomes.append(self.agent.run_cycle_locked(spec, mode))
          del outcomes[:-MAX_KEPT_OUTCOMES]
        except Exception:
          log.exception("cycle crashed", extra={"event": "cycle_crashed", "command": command})
        remaining = deadline - self.clock()
        if remaining <= 0:
          break
        self.stop.wait(min(self.interval, remaining))
      log.info("max runtime reached, exiting", extra={"event": "loop_done", "command": command, "count": len(outcomes)})
    return outcomes
