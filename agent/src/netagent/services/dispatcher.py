import contextlib
import fcntl
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterator, Optional

from netagent.exceptions import ExecutionError, ValidationError
from netagent.models import BatchContext, ExecutionResult, WorkItem

log = logging.getLogger(__name__)

Execute = Callable[[WorkItem, BatchContext], Optional[ExecutionResult]]
Report = Callable[[ExecutionResult], object]

BUDGET_EXHAUSTED = "timed out: run budget exhausted before execution"

_process_locks: dict[str, threading.Lock] = {}
_process_locks_guard = threading.Lock()


def _process_lock(name: str) -> threading.Lock:
  with _process_locks_guard:
    if name not in _process_locks:
      _process_locks[name] = threading.Lock()
    return _process_locks[name]


class CommandLock:
  """
  Mutual exclusion keyed by command name.

  An in-process lock covers the poll loop; an fcntl lock file covers separate
  invocations started by cron or a timer.
  """

  def __init__(self, name: str, lock_dir: str | Path | None = None):
    self.name = name
    self.lock_dir = Path(lock_dir) if lock_dir else None
    self._fd: Optional[int] = None
    self._held = False

  def acquire(self) -> bool:
    lock = _process_lock(self.name)
    if not lock.acquire(blocking=False):
      return False
    if self.lock_dir is None:
      self._held = True
      return True
    try:
      self.lock_dir.mkdir(parents=True, exist_ok=True)
      fd = os.open(self.lock_dir / f"{self.name}.lock", os.O_CREAT | os.O_RDWR, 0o600)
    except OSError:
      lock.release()
      raise
    try:
      fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
      os.close(fd)
      lock.release()
      return False
    os.ftruncate(fd, 0)
    os.write(fd, str(os.getpid()).encode())
    self._fd = fd
    self._held = True
    return True

  def release(self) -> None:
    if not self._held:
      return
    if self._fd is not None:
      fcntl.flock(self._fd, fcntl.LOCK_UN)
      os.close(self._fd)
      self._fd = None
    self._held = False
    _process_lock(self.name).release()

  @contextlib.contextmanager
  def hold(self) -> Iterator[bool]:
    acquired = self.acquire()
    try:
      yield acquired
    finally:
      if acquired:
        self.release()


class Dispatcher:
  def __init__(self, execute: Execute, report: Report, mode: str = "fanout", workers: int = 8):
    if mode not in ("inline", "fanout"):
      raise ValueError(f"unknown dispatch mode: {mode}")
    self.execute = execute
    self.report = report
    self.mode = mode
    self.workers = max(1, workers)

  def dispatch(self, items: list[WorkItem], ctx: BatchContext) -> list[ExecutionResult]:
    logger = ctx.logger(log)
    logger.info("dispatching %d item(s) (%s)", len(items), self.mode, extra={"event": "dispatch_start", "count": len(items)})
    if self.mode == "inline":
      results = self._inline(items, ctx)
    else:
      results = self._fanout(items, ctx)
    logger.info("dispatch finished", extra={"event": "dispatch_done", "count": len(results)})
    return results

  def _inline(self, items: list[WorkItem], ctx: BatchContext) -> list[ExecutionResult]:
    results = []
    for item in items:
      result = self._run_one(item, ctx)
      if result is not None:
        results.append(result)
    return results

  def _fanout(self, items: list[WorkItem], ctx: BatchContext) -> list[ExecutionResult]:
    results: list[ExecutionResult] = []
    if not items:
      return results
    with ThreadPoolExecutor(max_workers=min(self.workers, len(items)), thread_name_prefix=f"{ctx.command}-worker") as pool:
      futures = [pool.submit(self._run_one, item, ctx) for item in items]
      for fut in as_completed(futures):
        result = fut.result()
        if result is not None:
          results.append(result)
    return results

  def _run_one(self, item: WorkItem, ctx: BatchContext) -> Optional[ExecutionResult]:
    logger = ctx.logger(log, item_id=item.id)
    if ctx.expired():
      logger.error("run budget exhausted, item not started", extra={"event": "item_budget_exhausted"})
      result: Optional[ExecutionResult] = ExecutionResult.failure(item, BUDGET_EXHAUSTED)
    else:
      logger.debug("executing item", extra={"event": "item_start"})
      try:
        result = self.execute(item, ctx)
      except ValidationError as exc:
        logger.error("invalid work item: %s", exc, extra={"event": "item_invalid"})
        result = ExecutionResult.failure(item, f"invalid payload: {exc}")
      except ExecutionError as exc:
        logger.error("execution failed: %s", exc, extra={"event": "item_failed", "timed_out": exc.timed_out})
        result = ExecutionResult.failure(item, str(exc))
      except Exception as exc:
        logger.exception("unexpected error while executing item", extra={"event": "item_crashed"})
        result = ExecutionResult.failure(item, f"internal error: {exc}")
    if result is None:
      logger.debug("item produced no result", extra={"event": "item_skipped"})
      return None
    try:
      self.report(result)
    except Exception:
      logger.exception("reporter raised", extra={"event": "report_crashed"})
    logger.debug("item finished with %s", result.status.value, extra={"event": "item_done"})
    return result
