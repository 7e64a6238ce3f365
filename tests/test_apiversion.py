"""Tests for ApiVersion parsing, ordering, negotiation and headers."""

import itertools

import pytest

from openstack_session import apiversion, errors
from openstack_session.apiversion import ApiVersion

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2.53", ApiVersion(2, 53)),
        ("2", ApiVersion(2, 0)),
        ("v2.1", ApiVersion(2, 1)),
        (" 1.10 ", ApiVersion(1, 10)),
        (3, ApiVersion(3, 0)),
    ],
)
def test_parse_accepts_valid_versions(text, expected):
    """Major.minor strings, bare majors and integers are parsed."""
    assert ApiVersion.parse(text) == expected


@pytest.mark.parametrize("text", ["", "2.", ".1", "2.x", "latest", "2.1.3", "-1", "v"])
def test_parse_rejects_malformed_text(text):
    """Malformed version strings raise InvalidInput."""
    with pytest.raises(errors.InvalidInput):
        ApiVersion.parse(text)


def test_parse_rejects_negative_integer():
    """Negative integers are not versions."""
    with pytest.raises(errors.InvalidInput):
        ApiVersion.parse(-2)


def test_parse_invalid_input_is_a_value_error():
    """InvalidInput can be caught as a plain ValueError."""
    with pytest.raises(ValueError, match="Invalid API version"):
        ApiVersion.parse("abc")


def test_parse_roundtrips_through_str():
    """parse(str(v)) == v for a spread of versions."""
    for major, minor in itertools.product([0, 1, 2, 10], [0, 1, 9, 10, 90]):
        version = ApiVersion(major, minor)
        assert ApiVersion.parse(str(version)) == version


def test_str_formats_major_and_minor():
    assert str(ApiVersion(2, 0)) == "2.0"


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def test_ordering_compares_major_before_minor():
    """2.10 > 2.9 and 3.0 > 2.99: components compare numerically."""
    assert ApiVersion(2, 10) > ApiVersion(2, 9)
    assert ApiVersion(3, 0) > ApiVersion(2, 99)


def test_ordering_is_total_and_antisymmetric():
    """Exactly one of <, ==, > holds for every pair."""
    versions = [ApiVersion(m, n) for m in range(3) for n in range(3)]
    for a, b in itertools.product(versions, repeat=2):
        assert sum([a < b, a == b, a > b]) == 1


def test_ordering_is_transitive():
    versions = [ApiVersion(m, n) for m in range(3) for n in range(3)]
    for a, b, c in itertools.product(versions, repeat=3):
        if a <= b and b <= c:
            assert a <= c


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


def test_negotiate_returns_max_when_nothing_requested():
    actual = apiversion.negotiate(None, ApiVersion(2, 1), ApiVersion(2, 90))
    assert actual == ApiVersion(2, 90)


@pytest.mark.parametrize("requested", [ApiVersion(2, 1), ApiVersion(2, 53), ApiVersion(2, 90)])
def test_negotiate_returns_requested_within_inclusive_range(requested):
    actual = apiversion.negotiate(requested, ApiVersion(2, 1), ApiVersion(2, 90))
    assert actual == requested


@pytest.mark.parametrize("requested", [ApiVersion(2, 0), ApiVersion(2, 91), ApiVersion(3, 0)])
def test_negotiate_rejects_requested_outside_range(requested):
    """Requested versions outside [min, max] raise UnsupportedVersion with context."""
    with pytest.raises(errors.UnsupportedVersion) as exc_info:
        apiversion.negotiate(requested, ApiVersion(2, 1), ApiVersion(2, 90), "compute")

    assert exc_info.value.service_type == "compute"
    assert exc_info.value.requested == requested
    assert exc_info.value.available_range == (ApiVersion(2, 1), ApiVersion(2, 90))


def test_negotiate_rejects_inverted_range():
    with pytest.raises(errors.UnsupportedVersion):
        apiversion.negotiate(None, ApiVersion(2, 5), ApiVersion(2, 1))


def test_version_range_str_for_unversioned_service():
    assert str(apiversion.VersionRange.unversioned()) == "no microversions"
    assert not apiversion.VersionRange.unversioned().is_versioned


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


def test_version_headers_empty_for_unversioned_request():
    assert apiversion.version_headers("compute", None) == {}


def test_version_headers_compute_includes_legacy_header():
    headers = apiversion.version_headers("compute", ApiVersion(2, 53))
    assert headers == {
        "OpenStack-API-Version": "compute 2.53",
        "X-OpenStack-Nova-API-Version": "2.53",
    }


def test_version_headers_block_storage_announced_as_volume():
    headers = apiversion.version_headers("block-storage", ApiVersion(3, 10))
    assert headers == {"OpenStack-API-Version": "volume 3.10"}
