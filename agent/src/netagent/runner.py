import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Mapping, Sequence

from netagent.exceptions import ExecutionError

log = logging.getLogger(__name__)


@dataclass
class CommandResult:
  argv: list[str]
  returncode: int
  stdout: str
  stderr: str
  timed_out: bool = False
  duration: float = 0.0

  @property
  def ok(self) -> bool:
    return not self.timed_out and self.returncode == 0


class CommandRunner:
  """Runs external tools with a hard timeout; the whole process group is killed on expiry."""

  def require(self, *names: str) -> None:
    missing = [n for n in names if shutil.which(n) is None]
    if missing:
      raise ExecutionError(f"required executables not found: {', '.join(missing)}")

  def run(
    self,
    argv: Sequence[str],
    timeout: float,
    pass_fds: Sequence[int] = (),
    env: Mapping[str, str] | None = None,
  ) -> CommandResult:
    args = [str(a) for a in argv]
    if timeout <= 0:
      raise ExecutionError(f"{args[0]}: no time left to run", timed_out=True)
    started = time.monotonic()
    try:
      proc = subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        pass_fds=tuple(pass_fds),
        env=dict(env) if env is not None else None,
        start_new_session=True,
      )
    except FileNotFoundError:
      raise ExecutionError(f"executable not found: {args[0]}") from None
    except OSError as exc:
      raise ExecutionError(f"failed to start {args[0]}: {exc}") from exc

    timed_out = False
    try:
      out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
      timed_out = True
      _kill_group(proc)
      out, err = proc.communicate()
    duration = time.monotonic() - started
    result = CommandResult(
      argv=args,
      returncode=proc.returncode,
      stdout=out.decode("utf-8", errors="replace"),
      stderr=err.decode("utf-8", errors="replace"),
      timed_out=timed_out,
      duration=duration,
    )
    log.debug("command finished", extra={"event": "command_finished", "tool": args[0], "returncode": result.returncode, "timed_out": timed_out, "duration": round(duration, 3)})
    return result


def _kill_group(proc: subprocess.Popen) -> None:
  try:
    os.killpg(proc.pid, signal.SIGKILL)
  except ProcessLookupError:
    pass
  except OSError:
    proc.kill()
