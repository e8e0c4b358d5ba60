"""Address parsing helpers (IPv4/IPv6 aware)."""

from __future__ import annotations

from ipaddress import ip_address, ip_network
from typing import Iterable

from crawlscope.domain.headers import HeaderMap, first_header

IPV4_SUBNET_PREFIX = 24
IPV6_SUBNET_PREFIX = 64


def normalize_address(value: str | None) -> str | None:
    """Return the canonical text form of an address, or None if it is not one."""
    if not value:
        return None
    candidate = str(value).strip().strip('"').strip("'")
    if not candidate or candidate.lower() == 'unknown':
        return None
    if '%' in candidate:
        candidate = candidate.split('%', 1)[0]
    if candidate.startswith('[') and ']' in candidate:
        candidate = candidate[1:candidate.index(']')]
    if candidate.count(':') == 1 and candidate.count('.') == 3:
        candidate = candidate.split(':', 1)[0]
    try:
        return str(ip_address(candidate))
    except ValueError:
        return None


def is_public_address(value: str | None) -> bool:
    normalized = normalize_address(value)
    if not normalized:
        return False
    return ip_address(normalized).is_global


def subnet_key(address: str) -> str:
    """Cluster key: the /24 (IPv4) or /64 (IPv6) network containing ``address``."""
    normalized = normalize_address(address)
    if not normalized:
        raise ValueError(f'not an IP address: {address!r}')
    parsed = ip_address(normalized)
    prefix = IPV4_SUBNET_PREFIX if parsed.version == 4 else IPV6_SUBNET_PREFIX
    return str(ip_network(f'{normalized}/{prefix}', strict=False))


def split_list(value: str | Iterable[str] | None) -> list[str]:
    """Split a comma separated setting (or pass through an iterable)."""
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


def parse_networks(value: str | Iterable[str] | None) -> list:
    """Parse CIDRs/addresses from config; invalid items are skipped."""
    networks = []
    for item in split_list(value):
        try:
            if '/' in item:
                networks.append(ip_network(item, strict=False))
            else:
                suffix = '/128' if ':' in item else '/32'
                networks.append(ip_network(f'{item}{suffix}', strict=False))
        except ValueError:
            continue
    return networks


def address_in_networks(address: str | None, networks: list) -> bool:
    normalized = normalize_address(address)
    if not normalized or not networks:
        return False
    parsed = ip_address(normalized)
    return any(parsed.version == network.version and parsed in network for network in networks)


def resolve_client_address(headers: HeaderMap | None, remote_ip: str | None) -> str | None:
    """Pick the client address behind the CDN.

    Order: ``Cf-Connecting-Ip``, first ``X-Forwarded-For`` hop, then the
    socket peer reported by the web server.
    """
    candidates = [first_header(headers, 'Cf-Connecting-Ip')]
    forwarded_for = first_header(headers, 'X-Forwarded-For')
    if forwarded_for:
        candidates.append(forwarded_for.split(',', 1)[0])
    candidates.append(remote_ip)

    for candidate in candidates:
        normalized = normalize_address(candidate)
        if normalized:
            return normalized
    return None
