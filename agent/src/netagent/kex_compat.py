"""
SSH KEX compatibility helpers.

Scope: key-exchange negotiation for old network gear, used by both SSH
transports. For the sshpass transport this module only classifies failures;
for the paramiko transport it also opens connections with legacy KEX
enabled per connection.

Security note: legacy KEX (SHA-1 based DH groups) weakens security. It is
enabled per connection and only for devices flagged legacy or after a
negotiation failure, never by modifying Paramiko globals.
"""

from __future__ import annotations

import re
import socket
from typing import Optional

import paramiko

# Algorithms old Cisco IOS / RouterOS builds still insist on.
# Order matters: prefer group14 over group1 (group1 is weaker).
LEGACY_KEX = [
    "diffie-hellman-group14-sha256",
    "diffie-hellman-group14-sha1",
    "diffie-hellman-group1-sha1",
]

LEGACY_CIPHERS = [
    "aes128-cbc",
    "3des-cbc",
]

_KEX_FAILURE_PATTERNS = [
    r"no matching key exchange method found",
    r"unable to negotiate.*key exchange",
    r"kex negotiation failed",
    r"key exchange negotiation failed",
    r"no matching kex",
    r"incompatible ssh peer \(no acceptable kex algorithm\)",
]


def is_kex_failure(message: object) -> bool:
    """
    Detect KEX-specific negotiation failure.
    Matches OpenSSH stderr and Paramiko exception text.
    """
    msg = str(message).lower()
    return any(re.search(p, msg) for p in _KEX_FAILURE_PATTERNS)


def _extend(current: tuple[str, ...] | list[str], extra: list[str], supported: tuple[str, ...]) -> list[str]:
    out = list(current)
    for alg in extra:
        if alg not in out and alg in supported:
            out.append(alg)
    return out


def connect_default(
    host: str,
    port: int,
    username: str,
    password: Optional[str],
    timeout: float,
) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    # Devices are addressed by the tenant registry; unknown host keys are accepted.
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    client.connect(
        hostname=host,
        port=port,
        username=username,
        password=password,
        timeout=timeout,
        banner_timeout=timeout,
        auth_timeout=timeout,
        allow_agent=False,
        look_for_keys=False,
    )
    return client


def connect_legacy(
    host: str,
    port: int,
    username: str,
    password: Optional[str],
    timeout: float,
) -> paramiko.SSHClient:
    """
    Manual Transport handshake with legacy KEX and ciphers appended to the
    per-connection proposals.
    """
    sock = socket.create_connection((host, port), timeout=timeout)
    transport = paramiko.Transport(sock)
    try:
        opts = transport.get_security_options()
        opts.kex = _extend(opts.kex, LEGACY_KEX, tuple(transport._kex_info.keys()))
        opts.ciphers = _extend(opts.ciphers, LEGACY_CIPHERS, tuple(transport._cipher_info.keys()))
        transport.start_client(timeout=timeout)
        transport.auth_password(username, password or "")
    except Exception:
        transport.close()
        raise
    client = paramiko.SSHClient()
    client._transport = transport  # type: ignore[attr-defined]
    return client


def connect_with_kex_fallback(
    host: str,
    *,
    port: int = 22,
    username: str,
    password: Optional[str] = None,
    timeout: float = 15.0,
    legacy: bool = False,
) -> paramiko.SSHClient:
    """
    Open an SSH client connection.

    Legacy devices go straight to the legacy handshake. Others try the
    default client first and retry with legacy KEX only on a KEX mismatch.
    """
    if legacy:
        return connect_legacy(host, port, username, password, timeout)
    try:
        return connect_default(host, port, username, password, timeout)
    except (paramiko.SSHException, EOFError) as e:
        if not is_kex_failure(e):
            raise
        return connect_legacy(host, port, username, password, timeout)
