import logging
import re
from dataclasses import dataclass
from typing import Optional

from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError
from netagent.models import BatchContext, ExecutionResult, ProbeSpec, ResultStatus, WorkItem, WorkKind, decode_payload
from netagent.runner import CommandRunner
from netagent.sanitize import require_hostname, require_port

log = logging.getLogger(__name__)

# one sample of "host : 0.41 0.39 - 0.44" from fping -C <n> -q; "-" is a lost packet.
FPING_SAMPLE_RE = re.compile(r"\d+(?:\.\d+)?|-")
# "host : xmt/rcv/%loss = 5/5/0%, min/avg/max = ..." from fping -c <n> -q.
FPING_LOSS_RE = re.compile(r"xmt/rcv/%loss = \d+/\d+/(\d+)%")


def _sample_tokens(output: str) -> Optional[list[str]]:
  for line in output.splitlines():
    host, sep, rest = line.rpartition(" : ")
    if not sep or not host.strip():
      continue
    tokens = rest.split()
    if tokens and all(FPING_SAMPLE_RE.fullmatch(t) for t in tokens):
      return tokens
  return None


@dataclass
class PingMetrics:
  ping_data: Optional[float] = None
  packet_loss_data: Optional[int] = None


def parse_fping_metrics(output: str) -> PingMetrics:
  """Average RTT and loss percentage from fping output; empty metrics when unparseable."""
  tokens = _sample_tokens(output or "")
  if tokens is None:
    return PingMetrics()
  samples = [float(t) for t in tokens if t != "-"]
  if not samples:
    return PingMetrics()
  loss_match = FPING_LOSS_RE.search(output)
  if loss_match:
    loss = int(loss_match.group(1))
  else:
    loss = round(100 * (len(tokens) - len(samples)) / len(tokens))
  return PingMetrics(ping_data=sum(samples) / len(samples), packet_loss_data=loss)


class ProbeExecutor:
  def __init__(self, config: AgentConfig, runner: Optional[CommandRunner] = None):
    self.config = config
    self.runner = runner or CommandRunner()

  def __call__(self, item: WorkItem, ctx: BatchContext) -> ExecutionResult:
    probe = decode_payload(WorkKind.PROBE, item.payload)
    host = require_hostname(probe.host)
    port = require_port(probe.port) if probe.check_type == "tcp" else None
    return self.run(ProbeSpec(probe_id=probe.probe_id, host=host, check_type=probe.check_type, port=port), ctx, item_id=item.id)

  def run(self, probe: ProbeSpec, ctx: BatchContext, item_id: Optional[str] = None) -> ExecutionResult:
    logger = ctx.logger(log, item_id=probe.probe_id, host=probe.host)
    metrics = self.generate_metrics(probe.host, ctx)
    logger.info("probe metrics: ping=%s loss=%s", metrics.ping_data, metrics.packet_loss_data, extra={"event": "probe_metrics"})
    if probe.check_type == "tcp":
      status = self.tcp_check(probe.host, probe.port, ctx)
    else:
      status = self.ping_check(probe.host, ctx)
    logger.info("probe %s check: %s", probe.check_type, status, extra={"event": "probe_done"})
    return ExecutionResult(
      item_id=item_id or probe.probe_id,
      kind=WorkKind.PROBE,
      status=ResultStatus.SUCCESS,
      data={"ping_data": metrics.ping_data, "packet_loss_data": metrics.packet_loss_data, "status": status},
    )

  def _timeout(self, ctx: BatchContext) -> float:
    return ctx.bound(float(self.config.get("probe.timeout_seconds")))

  def tcp_check(self, host: str, port: int | None, ctx: BatchContext) -> str:
    wait = int(self.config.get("probe.tcp_timeout_seconds"))
    result = self.runner.run(["nc", "-vz", "-w", str(wait), host, str(port)], timeout=self._timeout(ctx))
    if result.timed_out:
      raise ExecutionError(f"tcp check of {host}:{port} timed out", timed_out=True)
    return "up" if result.returncode == 0 else "down"

  def ping_check(self, host: str, ctx: BatchContext) -> str:
    count = int(self.config.get("probe.ping_count"))
    result = self.runner.run(["fping", f"-c{count}", host], timeout=self._timeout(ctx))
    if result.timed_out:
      raise ExecutionError(f"ping check of {host} timed out", timed_out=True)
    return "up" if result.returncode == 0 else "down"

  def generate_metrics(self, host: str, ctx: BatchContext) -> PingMetrics:
    count = int(self.config.get("probe.metric_count"))
    try:
      result = self.runner.run(["fping", f"-C{count}", "-q", host], timeout=self._timeout(ctx))
    except ExecutionError as exc:
      log.warning("metric generation failed: %s", exc, extra={"event": "probe_metrics_failed", "host": host})
      return PingMetrics()
    # fping writes the per-host summary to stderr whatever the exit code.
    metrics = parse_fping_metrics(result.stderr + "\n" + result.stdout)
    if metrics.ping_data is None:
      log.warning("could not parse fping output", extra={"event": "probe_metrics_unparsed", "host": host})
    return metrics
