import pytest

from netagent.exceptions import ValidationError
from netagent.sanitize import is_valid_hostname, require_hostname, require_port, require_username


@pytest.mark.parametrize("host", ["10.0.0.1", "core-sw1.example.net", "fe80::1", "[2001:db8::1]"])
def test_valid_hostnames(host):
  assert is_valid_hostname(host)


@pytest.mark.parametrize("host", ["", "-oProxyCommand=x", "a b", "host;rm -rf /", "$(id)", "a" * 254])
def test_invalid_hostnames(host):
  assert not is_valid_hostname(host)


def test_require_hostname_strips_and_raises():
  assert require_hostname(" 10.0.0.1 ") == "10.0.0.1"
  with pytest.raises(ValidationError):
    require_hostname("bad host")
  with pytest.raises(ValidationError):
    require_hostname(None)


def test_require_port():
  assert require_port("22") == 22
  assert require_port(8728.0) == 8728
  for bad in (0, 65536, "ssh", None, True, 22.5):
    with pytest.raises(ValidationError):
      require_port(bad)


def test_require_username():
  assert require_username("admin") == "admin"
  assert require_username("DOMAIN\\ops.user") == "DOMAIN\\ops.user"
  for bad in ("", "-l root", "a b", "x;y"):
    with pytest.raises(ValidationError):
      require_username(bad)
