import logging
import signal
import sys
import threading

import click

from netagent.config import AgentConfig
from netagent.exceptions import ExecutionError
from netagent.logging_utils import setup_logging
from netagent.models import COMMANDS
from netagent.services.commandqueue import CommandQueue
from netagent.services.cycle import Agent, CycleOutcome, CycleStatus
from netagent.services.heartbeat import heartbeat as send_heartbeat
from netagent.services.scheduler import PollLoop

log = logging.getLogger("netagent")

EXIT_CODES = {
  CycleStatus.OK: 0,
  CycleStatus.CONNECTIVITY_FAILED: 1,
  CycleStatus.FETCH_FAILED: 1,
  CycleStatus.TOOLS_MISSING: 1,
  CycleStatus.LOCKED: 2,
}


def _stop_on_signals(stop: threading.Event) -> None:
  def _handler(signum, frame):
    log.info("received signal %s, stopping after the current cycle", signum)
    stop.set()

  for sig in (signal.SIGINT, signal.SIGTERM):
    signal.signal(sig, _handler)


def _overrides(mode: str | None, budget: float | None) -> dict:
  out: dict = {}
  if mode:
    out["dispatch.mode"] = mode
  if budget is not None:
    out["dispatch.budget_seconds"] = budget
  return out


def _finish(outcome: CycleOutcome) -> None:
  click.echo(f"{outcome.command}: {outcome.status.value} ({outcome.fetched} fetched, {len(outcome.results)} reported)")
  sys.exit(EXIT_CODES[outcome.status])


@click.group(help="netagent: polls the tenant for work and runs it inside the local network")
@click.option("--config", "config_path", envvar="NETAGENT_CONFIG", default=None, type=click.Path(dir_okay=False), help="TOML config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
  ctx.ensure_object(dict)
  ctx.obj["config_path"] = config_path
  ctx.obj["verbose"] = verbose


def _agent(ctx, overrides: dict | None = None) -> Agent:
  try:
    config = AgentConfig(ctx.obj["config_path"], overrides=overrides)
  except (KeyError, ValueError) as exc:
    raise click.ClickException(f"invalid configuration: {exc}") from exc
  level = "DEBUG" if ctx.obj["verbose"] else str(config.get("logging.level"))
  setup_logging(level, str(config.get("logging.format")), config.get("logging.dir") or None)
  if not config.get("tenant.url"):
    raise click.ClickException("tenant.url is not configured (set TENANT_URL or use --config)")
  return Agent(config)


def _cycle_command(name: str, help_text: str):
  @cli.command(name, help=help_text)
  @click.option("--inline/--fanout", "inline", default=None, help="Run items in the calling thread or in the worker pool")
  @click.option("--budget", type=float, default=None, help="Wall-clock budget for the run, in seconds")
  @click.pass_context
  def _command(ctx, inline, budget):
    mode = None if inline is None else ("inline" if inline else "fanout")
    agent = _agent(ctx, _overrides(mode, budget))
    _finish(agent.run_cycle(name))

  return _command


_cycle_command("devicemanager", "Back up managed network devices")
_cycle_command("monitoring", "Run monitoring probes")


@cli.command("devicequery", help="Poll for on-demand device queries until the loop budget is spent")
@click.option("--max-runtime", type=float, default=None, help="Seconds before the loop exits")
@click.option("--interval", type=float, default=None, help="Seconds between polls")
@click.pass_context
def devicequery(ctx, max_runtime, interval):
  agent = _agent(ctx)
  stop = threading.Event()
  _stop_on_signals(stop)
  outcomes = PollLoop(agent, interval=interval, max_runtime=max_runtime, stop=stop).run("devicequery")
  if outcomes and outcomes[-1].status == CycleStatus.LOCKED:
    sys.exit(EXIT_CODES[CycleStatus.LOCKED])


@cli.command("run", help="Run one command repeatedly (0 max runtime = until stopped)")
@click.argument("command", type=click.Choice(sorted(COMMANDS)))
@click.option("--interval", type=float, default=60.0, show_default=True, help="Seconds between cycles")
@click.option("--max-runtime", type=float, default=0.0, show_default=True)
@click.pass_context
def run(ctx, command, interval, max_runtime):
  agent = _agent(ctx)
  stop = threading.Event()
  _stop_on_signals(stop)
  PollLoop(agent, interval=interval, max_runtime=max_runtime, stop=stop).run(command)


@cli.command("commandqueue", help="Read the tenant command queue and run the loops it requests")
@click.pass_context
def commandqueue(ctx):
  agent = _agent(ctx)
  stop = threading.Event()
  _stop_on_signals(stop)
  outcome = CommandQueue(agent, stop=stop).poll()
  click.echo(f"command queue: {outcome.status.value} ({outcome.received} received, triggered: {', '.join(outcome.triggered) or 'none'})")
  sys.exit(EXIT_CODES[outcome.status])


@cli.command("heartbeat", help="Confirm the tenant acknowledges this agent")
@click.pass_context
def heartbeat(ctx):
  agent = _agent(ctx)
  sys.exit(0 if send_heartbeat(agent.client) else 1)


@cli.command("check", help="Test tenant connectivity and local tool availability")
@click.pass_context
def check(ctx):
  agent = _agent(ctx)
  ok = True
  if agent.gate.check():
    click.echo("tenant: ok")
  else:
    click.echo("tenant: connectivity failed", err=True)
    ok = False
  for name, spec in sorted(COMMANDS.items()):
    try:
      agent.runner.require(*agent.required_tools(spec))
      click.echo(f"{name}: tools ok")
    except ExecutionError as exc:
      click.echo(f"{name}: {exc}", err=True)
      ok = False
  sys.exit(0 if ok else 1)


def main() -> None:
  cli(obj={})


if __name__ == "__main__":
  main()
