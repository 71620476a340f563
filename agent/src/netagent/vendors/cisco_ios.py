from netagent.vendors.base import BaseVendorBackup


def extract_cisco_config(output: str) -> str:
  """
  Text from the first "version" keyword that follows the first "!".

  Drops the timestamp and banner lines IOS prints ahead of the config. This is
  a heuristic: output without both markers is returned unchanged.
  """
  bang = output.find("!")
  if bang < 0:
    return output
  version = output.find("version", bang)
  if version < 0:
    return output
  return output[version:]


class CiscoIOSBackup(BaseVendorBackup):
  @property
  def vendor(self) -> str:
    return "cisco"

  @property
  def read_command(self) -> str:
    return "show running-config view full"

  def extract_config(self, output: str) -> str:
    return extract_cisco_config(output)

  def has_markers(self, output: str) -> bool:
    bang = output.find("!")
    return bang >= 0 and output.find("version", bang) >= 0
