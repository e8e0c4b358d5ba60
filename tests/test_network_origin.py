import logging

import pytest

from crawlscope.utils.network_origin import (
    DATACENTER_ASNS,
    GENERIC_HOSTING_LABEL,
    NetworkOriginResolver,
    ProviderTable,
    open_network_origin_resolver,
    parse_asn_overrides,
)

from factories import AZURE_IP, DEFAULT_NETWORKS, HETZNER_IP, RESIDENTIAL_IP, FakeAsnReader


@pytest.fixture
def reader():
    return FakeAsnReader(DEFAULT_NETWORKS)


def test_known_datacenter_asns(reader):
    resolver = NetworkOriginResolver(reader)

    azure = resolver.resolve(AZURE_IP)
    assert azure.asn == 8075
    assert azure.datacenter_provider == 'azure'
    assert azure.is_datacenter
    assert resolver.resolve(HETZNER_IP).datacenter_provider == 'hetzner'


def test_residential_network(reader):
    origin = NetworkOriginResolver(reader).resolve(RESIDENTIAL_IP)

    assert origin.asn == 20712
    assert origin.asn_org == 'Andrews & Arnold Ltd'
    assert origin.datacenter_provider is None
    assert not origin.is_datacenter


def test_org_keyword_marks_hosting():
    table = ProviderTable.default()

    assert table.provider_for(64500, 'Example Cloud Services LLC') == GENERIC_HOSTING_LABEL
    assert table.provider_for(64501, 'Acme VPS') == GENERIC_HOSTING_LABEL
    assert table.provider_for(64502, 'Big Data Center Ltd') == GENERIC_HOSTING_LABEL
    assert table.provider_for(64503, 'Comcast Cable Communications') is None
    # keywords match whole words only
    assert table.provider_for(64504, 'Colorado State University') is None


def test_explicit_mapping_beats_keywords():
    table = ProviderTable.default().with_mapping(64500, 'examplecloud')
    assert table.provider_for(64500, 'Example Cloud Services LLC') == 'examplecloud'


def test_none_mapping_means_not_a_datacenter():
    table = ProviderTable.default().with_mapping(64500, None)
    assert table.provider_for(64500, 'Example Cloud Services LLC') is None

    resolver = NetworkOriginResolver(None, ProviderTable.default()).with_mapping(8075, None)
    assert not resolver.is_datacenter_asn(8075)


def test_with_mapping_returns_a_new_table():
    base = ProviderTable.default()
    extended = base.with_mapping(64500, 'Example')

    assert 64500 not in base.explicit
    assert extended.explicit[64500] == 'example'
    with pytest.raises(TypeError):
        base.explicit[64500] = 'x'


def test_resolver_with_mapping_leaves_original_untouched(reader):
    resolver = NetworkOriginResolver(reader)
    extended = resolver.with_mapping(20712, 'aaisp')

    assert extended.resolve(RESIDENTIAL_IP).datacenter_provider == 'aaisp'
    assert resolver.resolve(RESIDENTIAL_IP).datacenter_provider is None


def test_provider_for_asn():
    resolver = NetworkOriginResolver()
    assert resolver.provider_for_asn(16509) == 'aws'
    assert resolver.is_datacenter_asn(14061)
    assert not resolver.is_datacenter_asn(None)
    assert DATACENTER_ASNS[58519] == GENERIC_HOSTING_LABEL


@pytest.mark.parametrize('address', ['10.0.0.1', '192.168.1.10', '127.0.0.1', '::1', 'not-an-ip', '', None])
def test_non_public_addresses_yield_null_origin(reader, address):
    origin = NetworkOriginResolver(reader).resolve(address)

    assert origin.asn is None
    assert origin.datacenter_provider is None
    assert reader.calls == 0


def test_unknown_address_yields_null_origin(reader):
    origin = NetworkOriginResolver(reader).resolve('8.8.4.4')
    assert origin.asn is None
    assert origin.datacenter_provider is None


def test_no_reader_yields_null_origin():
    resolver = NetworkOriginResolver(None)
    assert not resolver.enabled
    assert resolver.resolve(AZURE_IP).datacenter_provider is None


def test_lookups_are_cached(reader):
    resolver = NetworkOriginResolver(reader)
    resolver.resolve(AZURE_IP)
    resolver.resolve(AZURE_IP)
    resolver.resolve('8.8.4.4')
    resolver.resolve('8.8.4.4')
    assert reader.calls == 2


def test_parse_asn_overrides():
    assert parse_asn_overrides('AS64500:Example, 64501:none,64502:-') == {
        64500: 'example',
        64501: None,
        64502: None,
    }
    assert parse_asn_overrides(None) == {}
    assert parse_asn_overrides(['64500:foo']) == {64500: 'foo'}


@pytest.mark.parametrize('value', ['64500', 'abc:foo', 'AS:foo'])
def test_parse_asn_overrides_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_asn_overrides(value)


def test_open_resolver_without_database_logs_warning(caplog, tmp_path):
    with caplog.at_level(logging.WARNING):
        resolver = open_network_origin_resolver(str(tmp_path / 'missing.mmdb'), overrides='64500:example')

    assert not resolver.enabled
    assert resolver.provider_for_asn(64500) == 'example'
    assert 'lookups disabled' in caplog.text
