"""
Ephemeral credential storage.

A SecretHandle keeps one credential in a mutable buffer and, when a child
process needs it, writes it to an anonymous file that has no name on disk
(memfd on Linux, an unlinked temporary file elsewhere). The descriptor is
inherited by the child (``sshpass -d <fd>``). On release the store is
overwritten with random bytes before it is closed and the buffer is zeroed.
"""

import logging
import os
import tempfile
from typing import Callable, Optional

log = logging.getLogger(__name__)

WIPE_SIZE = 4096


class SecretStore:
  def __init__(self, fd: int):
    self._fd = fd
    self.closed = False

  @classmethod
  def create(cls) -> "SecretStore":
    if hasattr(os, "memfd_create"):
      fd = os.memfd_create("netagent-secret", 0)
    else:
      handle = tempfile.TemporaryFile()
      fd = os.dup(handle.fileno())
      handle.close()
    os.set_inheritable(fd, True)
    return cls(fd)

  def fileno(self) -> int:
    return self._fd

  def write(self, data: bytes | bytearray) -> None:
    os.ftruncate(self._fd, 0)
    os.lseek(self._fd, 0, os.SEEK_SET)
    os.write(self._fd, bytes(data))
    os.lseek(self._fd, 0, os.SEEK_SET)

  def rewind(self) -> None:
    os.lseek(self._fd, 0, os.SEEK_SET)

  def read_all(self) -> bytes:
    self.rewind()
    chunks = []
    while True:
      chunk = os.read(self._fd, 65536)
      if not chunk:
        break
      chunks.append(chunk)
    # the offset is shared with any child holding the descriptor
    self.rewind()
    return b"".join(chunks)

  def wipe(self) -> None:
    size = max(WIPE_SIZE, os.fstat(self._fd).st_size)
    os.lseek(self._fd, 0, os.SEEK_SET)
    os.write(self._fd, os.urandom(size))

  def close(self) -> None:
    if self.closed:
      return
    os.close(self._fd)
    self.closed = True


class SecretHandle:
  """Holds one secret; use as a context manager so release always runs."""

  def __init__(self, value: str, store_factory: Callable[[], SecretStore] = SecretStore.create):
    self._value = bytearray(value.encode("utf-8"))
    self._store_factory = store_factory
    self._store: Optional[SecretStore] = None
    self.released = False

  def __enter__(self) -> "SecretHandle":
    return self

  def __exit__(self, exc_type, exc, tb) -> None:
    self.release()

  def __repr__(self) -> str:
    return "SecretHandle(<redacted>)"

  def is_empty(self) -> bool:
    return self.released or len(self._value) == 0

  def reveal(self) -> str:
    if self.released:
      raise RuntimeError("secret already released")
    return self._value.decode("utf-8")

  def open_store(self) -> SecretStore:
    if self.released:
      raise RuntimeError("secret already released")
    if self._store is None:
      self._store = self._store_factory()
      self._store.write(self._value)
    else:
      self._store.rewind()
    return self._store

  def release(self) -> None:
    if self.released:
      return
    try:
      if self._store is not None:
        try:
          self._store.wipe()
        finally:
          self._store.close()
    finally:
      for i in range(len(self._value)):
        self._value[i] = 0
      self._store = None
      self.released = True
