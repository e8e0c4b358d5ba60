"""Datacenter detection from the autonomous network of an address.

The provider table is an immutable value: explicit ASN labels first, then
keyword patterns over the registered organization name. ``with_mapping``
returns a new resolver so a table is never changed under a running pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from geoip2.errors import AddressNotFoundError

from crawlscope.domain.records import NetworkOrigin
from crawlscope.utils.addresses import is_public_address, normalize_address, split_list
from crawlscope.utils.geoip import open_mmdb_reader
from crawlscope.utils.ttl_cache import TTLCache

GENERIC_HOSTING_LABEL = 'hosting'
NULL_ORIGIN = NetworkOrigin()

DATACENTER_ASNS: dict[int, str] = {
    8075: 'azure',
    15169: 'gcp', 396982: 'gcp',
    16509: 'aws', 14618: 'aws',
    13335: 'cloudflare', 132892: 'cloudflare',
    16276: 'ovh',
    14061: 'digitalocean',
    20473: 'vultr',
    63949: 'linode',
    24940: 'hetzner',
    132203: 'tencent', 45090: 'tencent',
    45102: 'alibaba', 37963: 'alibaba',
    136907: 'huawei',
    55967: 'baidu',
    134756: 'telecom-cloud', 59223: 'telecom-cloud', 134768: 'telecom-cloud',
    23724: 'telecom-cloud', 137693: 'telecom-cloud',
}

# Smaller hosting and VPS networks seen crawling the sites.
_HOSTING_ASNS = (
    58519, 199785, 204916, 36352, 18779, 23576, 48282, 51396, 55286, 142002,
    198584, 216071, 394474, 9009, 46261, 212512, 11878, 49505, 50340, 26548, 64267,
)
DATACENTER_ASNS.update({asn: GENERIC_HOSTING_LABEL for asn in _HOSTING_ASNS})

HOSTING_ORG_KEYWORDS = (
    'cloud',
    'hosting',
    'server',
    'datacenter',
    'data center',
    'vps',
    'virtual private server',
    'compute',
    'infrastructure',
    'colocation',
    'colo',
    'idc',
    'cdn',
)


def _keyword_pattern(keyword: str):
    return re.compile(r'\b' + re.escape(keyword).replace(r'\ ', r'\s+') + r'\b', re.IGNORECASE)


@dataclass(frozen=True)
class ProviderTable:
    """Explicit ``asn -> label`` entries plus org-name keyword fallback.

    A label of ``None`` marks an ASN as known non-hosting; it still wins over
    the keyword patterns.
    """

    explicit: Mapping[int, Optional[str]] = field(default_factory=dict)
    keywords: tuple[str, ...] = HOSTING_ORG_KEYWORDS

    def __post_init__(self):
        object.__setattr__(self, 'explicit', MappingProxyType(dict(self.explicit)))
        object.__setattr__(self, '_patterns', tuple(_keyword_pattern(k) for k in self.keywords))

    @classmethod
    def default(cls) -> 'ProviderTable':
        return cls(DATACENTER_ASNS)

    def with_mapping(self, asn: int, label: Optional[str]) -> 'ProviderTable':
        merged = dict(self.explicit)
        merged[int(asn)] = label.lower() if label else None
        return ProviderTable(merged, self.keywords)

    def with_mappings(self, mappings: Mapping[int, Optional[str]]) -> 'ProviderTable':
        table = self
        for asn, label in mappings.items():
            table = table.with_mapping(asn, label)
        return table

    def provider_for(self, asn: int | None, asn_org: str | None) -> str | None:
        if asn is not None and asn in self.explicit:
            return self.explicit[asn]
        if asn_org and any(pattern.search(asn_org) for pattern in self._patterns):
            return GENERIC_HOSTING_LABEL
        return None


def parse_asn_overrides(value: str | Iterable[str] | None) -> dict[int, Optional[str]]:
    """Parse ``"asn:label,asn:label"``. ``none`` or ``-`` as label means not a datacenter."""
    overrides: dict[int, Optional[str]] = {}
    for item in split_list(value):
        asn_text, sep, label = item.partition(':')
        if not sep:
            raise ValueError(f'expected ASN:LABEL, got {item!r}')
        asn_text = asn_text.strip().upper()
        if asn_text.startswith('AS'):
            asn_text = asn_text[2:]
        try:
            asn = int(asn_text)
        except ValueError:
            raise ValueError(f'invalid ASN in {item!r}') from None
        label = label.strip().lower()
        overrides[asn] = None if label in ('', 'none', '-') else label
    return overrides


class NetworkOriginResolver:
    """Address -> (asn, asn_org, datacenter_provider) using a GeoLite2-ASN reader."""

    def __init__(self, reader=None, table: ProviderTable | None = None, cache: TTLCache | None = None):
        self._reader = reader
        self.table = table if table is not None else ProviderTable.default()
        self._cache = cache if cache is not None else TTLCache[str, NetworkOrigin](ttl_seconds=3600, max_items=8192)

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def with_mapping(self, asn: int, label: Optional[str]) -> 'NetworkOriginResolver':
        """New resolver over an extended table; this one is left untouched."""
        return NetworkOriginResolver(self._reader, self.table.with_mapping(asn, label))

    def is_datacenter_asn(self, asn: int | None) -> bool:
        return self.provider_for_asn(asn) is not None

    def provider_for_asn(self, asn: int | None, asn_org: str | None = None) -> str | None:
        return self.table.provider_for(asn, asn_org)

    def resolve(self, address: str | None) -> NetworkOrigin:
        normalized = normalize_address(address)
        if not normalized or self._reader is None or not is_public_address(normalized):
            return NULL_ORIGIN
        return self._cache.get_or_set(normalized, lambda: self._resolve_uncached(normalized))

    def _resolve_uncached(self, address: str) -> NetworkOrigin:
        try:
            response = self._reader.asn(address)
        except (AddressNotFoundError, ValueError):
            return NULL_ORIGIN
        asn = response.autonomous_system_number
        org = response.autonomous_system_organization
        return NetworkOrigin(asn=asn, asn_org=org, datacenter_provider=self.table.provider_for(asn, org))


def open_network_origin_resolver(db_path: str | None, log=None, overrides=None, cache_ttl_seconds: int = 3600):
    reader = open_mmdb_reader(db_path, log, label='GeoIP ASN')
    table = ProviderTable.default().with_mappings(parse_asn_overrides(overrides))
    cache = TTLCache[str, NetworkOrigin](ttl_seconds=cache_ttl_seconds, max_items=8192)
    return NetworkOriginResolver(reader, table, cache)
