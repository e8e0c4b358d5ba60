"""CrowdSec denylist with a bounded refresh interval.

Refresh failures keep the previous set (fail open); classification still
runs on whatever gets through.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from dataclasses import dataclass, field
from ipaddress import ip_address, ip_network

import requests

from crawlscope.utils.addresses import normalize_address

logger = logging.getLogger(__name__)


class DenylistSourceError(RuntimeError):
    pass


@dataclass(frozen=True)
class Denylist:
    addresses: frozenset = frozenset()
    networks: tuple = ()

    def __len__(self):
        return len(self.addresses) + len(self.networks)

    def contains(self, address: str | None) -> bool:
        normalized = normalize_address(address)
        if not normalized:
            return False
        if normalized in self.addresses:
            return True
        if not self.networks:
            return False
        parsed = ip_address(normalized)
        return any(parsed.version == net.version and parsed in net for net in self.networks)


EMPTY_DENYLIST = Denylist()


def denylist_from_decisions(decisions) -> Denylist:
    """Build a Denylist from CrowdSec decision objects.

    ``Ip`` decisions carry an address, ``Range`` decisions a CIDR. Other
    scopes (country, AS) are ignored.
    """
    addresses = set()
    networks = []
    for decision in decisions or []:
        if not isinstance(decision, dict):
            continue
        value = decision.get('value')
        if not value:
            continue
        scope = str(decision.get('scope') or 'Ip').lower()
        if scope == 'range' or '/' in str(value):
            try:
                networks.append(ip_network(str(value), strict=False))
            except ValueError:
                continue
        elif scope == 'ip':
            normalized = normalize_address(value)
            if normalized:
                addresses.add(normalized)
    return Denylist(frozenset(addresses), tuple(networks))


def _flatten_cscli_alerts(payload):
    # ``cscli decisions list -o json`` returns alerts, each with a decisions list.
    for item in payload or []:
        if isinstance(item, dict) and isinstance(item.get('decisions'), list):
            yield from item['decisions']
        else:
            yield item


class CrowdSecLapiSource:
    """Bouncer query against the CrowdSec Local API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch(self) -> Denylist:
        try:
            response = self._session.get(
                f'{self.base_url}/v1/decisions',
                headers={'X-Api-Key': self.api_key, 'User-Agent': 'crawlscope-bouncer/1.0'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise DenylistSourceError(f'CrowdSec LAPI query failed: {exc}') from exc
        # LAPI answers ``null`` when there are no active decisions.
        return denylist_from_decisions(payload)


class CscliDecisionSource:
    """Local ``cscli`` query; needs permission to read the CrowdSec database."""

    def __init__(self, command=('cscli', 'decisions', 'list', '-o', 'json'), timeout: float = 30.0, runner=subprocess.run):
        self.command = list(command)
        self.timeout = timeout
        self._runner = runner

    def fetch(self) -> Denylist:
        try:
            result = self._runner(self.command, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise DenylistSourceError(f'cscli failed: {exc}') from exc
        if result.returncode != 0:
            raise DenylistSourceError(f'cscli exited with {result.returncode}: {(result.stderr or "").strip()[:200]}')
        stdout = (result.stdout or '').strip()
        if not stdout or stdout == 'null':
            return EMPTY_DENYLIST
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise DenylistSourceError(f'cscli returned invalid JSON: {exc.msg}') from exc
        return denylist_from_decisions(_flatten_cscli_alerts(payload))


@dataclass
class DenylistCache:
    """Time-bounded view over a denylist source.

    ``refresh()`` queries the source at most once per ``ttl_seconds``. A
    failed query is logged, the stale set is kept and the next attempt waits
    for a full TTL as well.
    """

    source: object = None
    ttl_seconds: float = 60
    clock: object = time.monotonic
    _current: Denylist = field(default=EMPTY_DENYLIST, init=False)
    _checked_at: float | None = field(default=None, init=False)
    refresh_failures: int = field(default=0, init=False)

    @property
    def current(self) -> Denylist:
        return self._current

    def is_stale(self) -> bool:
        if self._checked_at is None:
            return True
        return self.clock() - self._checked_at >= self.ttl_seconds

    def refresh(self, force: bool = False) -> Denylist:
        if self.source is None:
            return self._current
        if not force and not self.is_stale():
            return self._current

        self._checked_at = self.clock()
        try:
            self._current = self.source.fetch()
        except DenylistSourceError as exc:
            self.refresh_failures += 1
            logger.warning('Denylist refresh failed, keeping %d cached entries: %s', len(self._current), exc)
            return self._current

        logger.info('Denylist refreshed: %d entries', len(self._current))
        return self._current

    def contains(self, address: str | None) -> bool:
        self.refresh()
        return self._current.contains(address)
