import logging
import threading
import time
from typing import Callable

log = logging.getLogger(__name__)


class TokenBucket:
  """
  Client-side request throttle shared by every thread of one agent.

  Starts full with ``max_tokens``; one token comes back every
  ``refill_seconds``, up to the maximum.
  """

  def __init__(
    self,
    max_tokens: int = 100,
    refill_seconds: float = 0.1,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
  ):
    if max_tokens < 1:
      raise ValueError("max_tokens must be at least 1")
    if refill_seconds <= 0:
      raise ValueError("refill_seconds must be positive")
    self.max_tokens = max_tokens
    self.refill_seconds = refill_seconds
    self._clock = clock
    self._sleep = sleep
    self._tokens = float(max_tokens)
    self._last = clock()
    self._lock = threading.Lock()

  def _refill(self) -> None:
    now = self._clock()
    earned = int((now - self._last) / self.refill_seconds)
    if earned > 0:
      self._tokens = min(float(self.max_tokens), self._tokens + earned)
      self._last += earned * self.refill_seconds
    if self._tokens >= self.max_tokens:
      self._last = now

  def allow(self) -> bool:
    with self._lock:
      self._refill()
      if self._tokens >= 1:
        self._tokens -= 1
        return True
      return False

  def wait(self) -> float:
    """Block until a token is taken; returns the seconds spent waiting."""
    waited = 0.0
    while not self.allow():
      self._sleep(self.refill_seconds)
      waited += self.refill_seconds
    return waited

  @property
  def available(self) -> int:
    with self._lock:
      self._refill()
      return int(self._tokens)
