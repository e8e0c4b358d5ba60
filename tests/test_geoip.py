import logging

from crawlscope.utils.geoip import GeoResolver, open_geo_resolver, open_mmdb_reader

from factories import AZURE_IP, DEFAULT_CITIES, RESIDENTIAL_IP, FakeCityReader


def test_lookup_public_address():
    location = GeoResolver(FakeCityReader(DEFAULT_CITIES)).lookup(RESIDENTIAL_IP)

    assert location.country == 'GB'
    assert location.city == 'Boxford'
    assert location.latitude == 51.75
    assert location.longitude == -1.25


def test_lookup_without_city_name():
    reader = FakeCityReader({AZURE_IP: ('US', None, 37.75, -97.82)})
    location = GeoResolver(reader).lookup(AZURE_IP)

    assert location.country == 'US'
    assert location.city is None


def test_private_and_unknown_addresses_are_null():
    resolver = GeoResolver(FakeCityReader(DEFAULT_CITIES))

    for address in ('10.1.2.3', 'fe80::1', 'garbage', None, '203.0.113.9'):
        location = resolver.lookup(address)
        assert location.country is None
        assert location.latitude is None


def test_disabled_resolver():
    resolver = GeoResolver(None)
    assert not resolver.enabled
    assert resolver.lookup(RESIDENTIAL_IP).country is None


def test_missing_database_file_warns(tmp_path, caplog):
    log = logging.getLogger('crawlscope.tests')
    with caplog.at_level(logging.WARNING):
        reader = open_mmdb_reader(str(tmp_path / 'GeoLite2-City.mmdb'), log, label='GeoIP City')

    assert reader is None
    assert 'GeoIP City database not found' in caplog.text


def test_unconfigured_database_warns(caplog):
    with caplog.at_level(logging.WARNING):
        resolver = open_geo_resolver(None)

    assert not resolver.enabled
    assert 'not configured' in caplog.text


def test_corrupt_database_file_warns(tmp_path, caplog):
    path = tmp_path / 'broken.mmdb'
    path.write_bytes(b'not a maxmind database')

    with caplog.at_level(logging.WARNING):
        resolver = open_geo_resolver(str(path))

    assert not resolver.enabled
    assert 'reader init failed' in caplog.text
