"""Instrument address resolution.

Users type addresses into a single free-text field. This module turns the
shorthand forms into a fully qualified VISA resource string:

=====================  ===============  ===============================
Input                  Subnet prefix    Result
=====================  ===============  ===============================
``""``                 any              the configured default
``"5"``                none             ``GPIB0::5::INSTR``
``"136"``              ``"192.168.1"``  ``TCPIP::192.168.1.136::INSTR``
``"192.168.1.50"``     any              ``TCPIP::192.168.1.50::INSTR``
``"GPIB0::2::INSTR"``  any              unchanged
anything else          any              unchanged
=====================  ===============  ===============================

Resolution never fails. An unusable string surfaces later as an
:class:`dp832.errors.InstrumentConnectionError` when the session opens.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "GPIB0::1::INSTR"

_RESOURCE_DELIMITER = "::"
_BARE_INTEGER_RE = re.compile(r"^\d+$", re.ASCII)

# Routable address used only to pick the outbound interface; nothing is sent.
_PROBE_HOST = ("198.51.100.1", 9)


def format_gpib_address(device_number: int) -> str:
    """Build a GPIB resource string from a device number.

    Args:
        device_number: GPIB primary address.

    Returns:
        Resource string such as ``GPIB0::5::INSTR``.
    """
    return f"GPIB0::{device_number}::INSTR"


def format_tcpip_address(host: str) -> str:
    """Build a LAN resource string from a host address.

    Args:
        host: IPv4 address or host name.

    Returns:
        Resource string such as ``TCPIP::192.168.1.50::INSTR``.
    """
    return f"TCPIP::{host}::INSTR"


def is_ipv4_address(text: str) -> bool:
    """Return True if *text* is four dot-separated decimal octets (0-255)."""
    parts = text.split(".")
    if len(parts) != 4:
        return False
    return all(_BARE_INTEGER_RE.match(part) and int(part) <= 255 for part in parts)


def resolve_address(
    text: str,
    subnet_prefix: str | None = None,
    *,
    default: str = DEFAULT_ADDRESS,
) -> str:
    """Resolve a user-supplied address into a VISA resource string.

    Args:
        text: Free-text address as typed by the user.
        subnet_prefix: First three octets of the instrument LAN (e.g.
            ``"192.168.1"``). When given, a bare integer is read as the last
            octet of a host on that subnet instead of a GPIB device number.
        default: Address returned for empty input.

    Returns:
        The resolved resource string.
    """
    candidate = text.strip()
    if not candidate:
        return default

    if _BARE_INTEGER_RE.match(candidate):
        if subnet_prefix:
            host = f"{subnet_prefix.strip().rstrip('.')}.{candidate}"
            return format_tcpip_address(host)
        return format_gpib_address(int(candidate))

    if _RESOURCE_DELIMITER in candidate:
        return candidate

    if is_ipv4_address(candidate):
        return format_tcpip_address(candidate)

    logger.debug("Passing unrecognized address through unchanged: %r", candidate)
    return candidate


def detect_subnet_prefix() -> str | None:
    """Detect the /24 prefix of the host's active IPv4 interface.

    Opens a UDP socket towards a routable address so the OS selects the
    outbound interface, then reads the local address back. No datagram is
    sent.

    Returns:
        The first three octets (e.g. ``"192.168.1"``), or None when the host
        has no usable non-loopback IPv4 interface.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(_PROBE_HOST)
            local_ip = sock.getsockname()[0]
    except OSError as exc:
        logger.debug("Subnet detection failed: %s", exc)
        return None

    try:
        address = ipaddress.IPv4Address(local_ip)
    except ValueError:
        return None
    if address.is_loopback or address.is_unspecified:
        return None
    prefix = ".".join(str(address).split(".")[:3])
    logger.debug("Detected local subnet prefix %s", prefix)
    return prefix
