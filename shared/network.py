# fshare/shared/network.py

import ipaddress
import re
import socket

from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)

_IPV4_PATTERN = re.compile(r"\d+\.\d+\.\d+\.\d+")


def is_loopback(addr: str) -> bool:
    """Checks if an IP address is a loopback address. Unparsable input is not."""
    try:
        return ipaddress.ip_address(addr).is_loopback
    except ValueError:
        return False


def get_loopback(family: str = "ipv4") -> str:
    if family.lower() == "ipv6":
        return "::1"
    return "127.0.0.1"


def get_local_ip(family: str = "ipv4") -> str:
    """Attempts to get the address of the interface used for outbound traffic."""
    if family.lower() == "ipv6":
        af, route_target = socket.AF_INET6, ("2001:4860:4860::8888", 80)
    else:
        af, route_target = socket.AF_INET, ("8.8.8.8", 80)
    try:
        # Connecting a UDP socket sends nothing, it only picks the route
        with socket.socket(af, socket.SOCK_DGRAM) as s:
            s.connect(route_target)
            local_ip = s.getsockname()[0]
        if not is_loopback(local_ip):
            return local_ip
    except OSError as e:
        logger.debug(f"Outbound route lookup failed: {e}")
    try:
        local_ip = socket.gethostbyname(socket.gethostname())
        if af == socket.AF_INET and not is_loopback(local_ip):
            return local_ip
    except OSError as e:
        logger.debug(f"Hostname resolution failed: {e}")
    return get_loopback(family)


def get_client_ip(request) -> str:
    """Client address for ownership tagging: X-Real-IP wins over the peer address."""
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client is None:
        return ""
    match = _IPV4_PATTERN.search(request.client.host or "")
    return match.group(0) if match else request.client.host
