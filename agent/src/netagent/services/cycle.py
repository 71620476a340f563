import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from netagent.clients.tenant_client import TenantClient
from netagent.config import AgentConfig
from netagent.exceptions import ConnectivityError, ExecutionError, FetchError
from netagent.executors.backup import DeviceBackupExecutor
from netagent.executors.probe import ProbeExecutor
from netagent.executors.query import QueryCommandExecutor
from netagent.models import COMMANDS, BatchContext, CommandSpec, ExecutionResult, ResultStatus, WorkItem, WorkKind
from netagent.runner import CommandRunner
from netagent.services.connectivity import ConnectivityGate
from netagent.services.dispatcher import CommandLock, Dispatcher
from netagent.services.fetcher import PayloadFetcher
from netagent.services.reporter import ResultReporter
from netagent.ssh import SshTransport, build_transport
from netagent.storage.spool import ResultSpool

log = logging.getLogger(__name__)


class CycleStatus(str, Enum):
  OK = "ok"
  CONNECTIVITY_FAILED = "connectivity_failed"
  FETCH_FAILED = "fetch_failed"
  TOOLS_MISSING = "tools_missing"
  LOCKED = "locked"


@dataclass
class CycleOutcome:
  command: str
  status: CycleStatus
  batch_id: Optional[str] = None
  fetched: int = 0
  results: list[ExecutionResult] = field(default_factory=list)

  @property
  def ok(self) -> bool:
    return self.status == CycleStatus.OK

  def count(self, status: ResultStatus) -> int:
    return sum(1 for r in self.results if r.status == status)


class Agent:
  """Wires the pipeline together for one process; components can be swapped in tests."""

  def __init__(
    self,
    config: AgentConfig,
    client: Optional[TenantClient] = None,
    runner: Optional[CommandRunner] = None,
    transport: Optional[SshTransport] = None,
    directory_check: Optional[Callable[[], bool]] = None,
  ):
    self.config = config
    self.client = client or TenantClient(config)
    self.runner = runner or CommandRunner()
    self.transport = transport or build_transport(config, self.runner)
    self.gate = ConnectivityGate(self.client, directory_check)
    self.fetcher = PayloadFetcher(self.client)
    spool_dir = str(config.get("agent.spool_dir") or "")
    self.reporter = ResultReporter(
      self.client,
      attempts=int(config.get("tenant.report_attempts")),
      spool=ResultSpool(spool_dir) if spool_dir else None,
    )
    self.executors = {
      WorkKind.DEVICE_BACKUP: DeviceBackupExecutor(config, self.transport),
      WorkKind.PROBE: ProbeExecutor(config, self.runner),
      WorkKind.QUERY_COMMAND: QueryCommandExecutor(config, self.transport),
    }

  def required_tools(self, spec: CommandSpec) -> tuple[str, ...]:
    if spec.kind == WorkKind.PROBE:
      return ("fping", "nc")
    if str(self.config.get("ssh.transport")).lower() == "sshpass":
      return ("sshpass", "ssh")
    return ()

  def lock(self, spec: CommandSpec) -> CommandLock:
    return CommandLock(spec.name, self.config.get("agent.lock_dir") or None)

  def execute(self, item: WorkItem, ctx: BatchContext) -> Optional[ExecutionResult]:
    return self.executors[item.kind](item, ctx)

  def dispatcher(self, spec: CommandSpec, mode: Optional[str] = None) -> Dispatcher:
    return Dispatcher(
      execute=self.execute,
      report=lambda result: self.reporter.report(spec, result),
      mode=mode or str(self.config.get("dispatch.mode")),
      workers=int(self.config.get("dispatch.workers")),
    )

  def run_cycle(self, command: str, mode: Optional[str] = None) -> CycleOutcome:
    spec = COMMANDS[command]
    lock = self.lock(spec)
    with lock.hold() as acquired:
      if not acquired:
        log.info("skipping cycle, previous run still in progress", extra={"event": "cycle_locked", "command": command})
        return CycleOutcome(command=command, status=CycleStatus.LOCKED)
      return self.run_cycle_locked(spec, mode)

  def run_cycle_locked(self, spec: CommandSpec, mode: Optional[str] = None) -> CycleOutcome:
    ctx = BatchContext(spec.name, budget_seconds=float(self.config.get("dispatch.budget_seconds")) or None)
    logger = ctx.logger(log)
    logger.info("cycle starting", extra={"event": "cycle_start"})
    try:
      self.gate.ensure()
    except ConnectivityError as exc:
      logger.error("%s, bailing out", exc, extra={"event": "cycle_aborted"})
      return CycleOutcome(command=spec.name, status=CycleStatus.CONNECTIVITY_FAILED, batch_id=ctx.batch_id)

    try:
      self.runner.require(*self.required_tools(spec))
    except ExecutionError as exc:
      logger.error("%s", exc, extra={"event": "cycle_aborted"})
      return CycleOutcome(command=spec.name, status=CycleStatus.TOOLS_MISSING, batch_id=ctx.batch_id)

    self.reporter.flush_spool(spec)

    try:
      items = self.fetcher.fetch(spec, ctx)
    except FetchError:
      return CycleOutcome(command=spec.name, status=CycleStatus.FETCH_FAILED, batch_id=ctx.batch_id)

    if not items:
      logger.info("no payloads received", extra={"event": "cycle_done", "count": 0})
      return CycleOutcome(command=spec.name, status=CycleStatus.OK, batch_id=ctx.batch_id)

    results = self.dispatcher(spec, mode).dispatch(items, ctx)
    outcome = CycleOutcome(command=spec.name, status=CycleStatus.OK, batch_id=ctx.batch_id, fetched=len(items), results=results)
    logger.info(
      "cycle completed: %d fetched, %d success, %d unchanged, %d error",
      len(items), outcome.count(ResultStatus.SUCCESS), outcome.count(ResultStatus.SKIPPED_NO_CHANGE), outcome.count(ResultStatus.ERROR),
      extra={"event": "cycle_done", "count": len(results)},
    )
    return outcome
