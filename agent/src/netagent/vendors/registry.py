from netagent.exceptions import ValidationError
from netagent.vendors.base import BaseVendorBackup
from netagent.vendors.cisco_ios import CiscoIOSBackup
from netagent.vendors.mikrotik import MikrotikBackup

VENDORS: dict[str, BaseVendorBackup] = {
  "cisco": CiscoIOSBackup(),
  "mikrotik": MikrotikBackup(),
}


def get_vendor(device_type: str) -> BaseVendorBackup:
  try:
    return VENDORS[(device_type or "").lower()]
  except KeyError:
    raise ValidationError(f"unsupported device type: {device_type!r}") from None
