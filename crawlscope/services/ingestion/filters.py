"""Pre-enrichment exclusion rules.

Records dropped here are counted per reason but never enriched or stored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from crawlscope.domain.records import NormalizedEvent
from crawlscope.utils.addresses import address_in_networks, parse_networks, split_list

REASON_DENYLIST = 'denylist'
REASON_EXCLUDED_ADDRESS = 'excluded_address'
REASON_EXCLUDED_SITE = 'excluded_site'
REASON_NOISE = 'noise'

# Scanner traffic dropped before enrichment. Tested on path + '?' + query.
NOISE_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    # WordPress probes
    r'^/wp-admin',
    r'^/wordpress/wp-admin',
    r'^/wp/',
    r'wp-login\.php',
    r'xmlrpc\.php',
    r'wp-config',
    r'setup-config\.php',
    r'/wp-content/(plugins|themes)',
    r'/wp-includes/',
    r'wp-json/wp/v2/users',
    r'readme\.html$',
    r'license\.txt$',
    r'wp-cron\.php',
    r'\?author=',
    r'wp-sitemap',
    # secrets and admin panels
    r'debug\.log',
    r'/\.env',
    r'phpmyadmin',
    r'/pma/',
    r'/dbadmin',
    r'sqladmin',
    r'mysqladmin',
    r'/\.git',
    r'/\.svn',
    # editor and backup leftovers
    r'\.(bak|backup|old|save|orig|swp)$',
)) + (re.compile(r'~$'),)


def is_noise(path: str, query_string: str | None = None) -> bool:
    target = path + (f'?{query_string}' if query_string else '')
    return any(pattern.search(target) for pattern in NOISE_PATTERNS)


@dataclass(frozen=True)
class ExclusionRules:
    networks: tuple = ()
    sites: frozenset = frozenset()
    drop_noise: bool = True

    @classmethod
    def from_config(cls, config) -> 'ExclusionRules':
        return cls(
            networks=tuple(parse_networks(config.get('EXCLUDED_ADDRESSES'))),
            sites=frozenset(s.lower() for s in split_list(config.get('EXCLUDED_SITES'))),
        )


@dataclass
class RecordFilter:
    rules: ExclusionRules = field(default_factory=ExclusionRules)
    denylist: object = None

    def reason_for(self, event: NormalizedEvent) -> str | None:
        """Why ``event`` should be dropped, or None to keep it."""
        if self.denylist is not None and self.denylist.contains(event.client_address):
            return REASON_DENYLIST
        if address_in_networks(event.client_address, list(self.rules.networks)):
            return REASON_EXCLUDED_ADDRESS
        if event.site in self.rules.sites:
            return REASON_EXCLUDED_SITE
        if self.rules.drop_noise and is_noise(event.path, event.query_string):
            return REASON_NOISE
        return None
