from netagent.vendors.base import BaseVendorBackup


def extract_mikrotik_config(output: str) -> str:
  # RouterOS prefixes the export with a "# <date> by RouterOS" header.
  idx = output.find("/interface")
  if idx < 0:
    return output
  return output[idx:]


class MikrotikBackup(BaseVendorBackup):
  @property
  def vendor(self) -> str:
    return "mikrotik"

  @property
  def read_command(self) -> str:
    return "export show-sensitive verbose"

  def extract_config(self, output: str) -> str:
    return extract_mikrotik_config(output)

  def has_markers(self, output: str) -> bool:
    return "/interface" in output
