from abc import ABC, abstractmethod


class BaseVendorBackup(ABC):
  @property
  @abstractmethod
  def vendor(self) -> str:
    raise NotImplementedError

  @property
  @abstractmethod
  def read_command(self) -> str:
    raise NotImplementedError

  @abstractmethod
  def extract_config(self, output: str) -> str:
    """Stable part of the device output used for change detection. Must be pure."""
    raise NotImplementedError

  def has_markers(self, output: str) -> bool:
    return True
