import math

from sima.geo import distance_km, extract_lat_long, is_renderable


def test_extract_lat_long_parses_pair():
    lat, lon = extract_lat_long("-6.2, 106.8")
    assert lat == -6.2
    assert lon == 106.8


def test_extract_lat_long_accepts_unicode_minus():
    lat, lon = extract_lat_long("−6.2,106.8")
    assert lat == -6.2
    assert lon == 106.8


def test_extract_lat_long_without_comma_is_nan():
    lat, lon = extract_lat_long("-6.2 106.8")
    assert math.isnan(lat) and math.isnan(lon)


def test_extract_lat_long_bad_half_is_nan():
    lat, lon = extract_lat_long("abc,106.8")
    assert math.isnan(lat)
    assert lon == 106.8
    assert not is_renderable(lat, lon)


def test_is_renderable():
    assert is_renderable(-6.2, 106.8)
    assert not is_renderable(None, 106.8)
    assert not is_renderable(float("nan"), 106.8)
    assert not is_renderable(91, 0)
    assert not is_renderable(0, 181)
    assert not is_renderable("x", 0)


def test_distance_km():
    jakarta = (-6.2, 106.816666)
    bandung = (-6.917464, 107.619123)
    assert 110 < distance_km(jakarta, bandung) < 130
    assert distance_km(jakarta, jakarta) == 0


def test_extract_lat_long_with_spaces_and_unicode_minus():
    assert extract_lat_long("−6.2238477 ,  106.9694887") == (-6.2238477, 106.9694887)
    lat, lon = extract_lat_long("abc,def")
    assert math.isnan(lat) and math.isnan(lon)
