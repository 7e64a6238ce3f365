"""Tests for the compute operations against the fake cloud."""

import pytest

from openstack_session import compute, errors, pagination, session

from conftest import FakeCloud, make_server_record


@pytest.fixture
def detailed_cloud(cloud: FakeCloud) -> FakeCloud:
    """Fake cloud serving five fully populated servers."""
    cloud.servers = [make_server_record(id=f"server-{i}", name=f"vm-{i}") for i in range(1, 6)]
    return cloud


def _compute_requests(cloud: FakeCloud, path: str):
    return cloud.requests_to("nova.test", path)


# ---------------------------------------------------------------------------
# ServerQuery
# ---------------------------------------------------------------------------


def test_server_query_to_params():
    query = compute.ServerQuery(
        limit=2,
        sort_key=compute.ServerSortKey.CREATED_AT,
        sort_dir="desc",
        filters={"status": "ACTIVE"},
    )

    assert query.to_params() == {
        "status": "ACTIVE",
        "limit": 2,
        "sort_key": "created_at",
        "sort_dir": "desc",
    }


def test_server_query_defaults_to_no_params():
    assert compute.ServerQuery().to_params() == {}


def test_server_query_rejects_non_positive_limit():
    with pytest.raises(ValueError):  # noqa: PT011
        compute.ServerQuery(limit=0)


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


def test_list_servers_pages_through_all_servers(cloud: FakeCloud, os_session: session.Session):
    stream = compute.list_servers(os_session, compute.ServerQuery(limit=2))

    servers = list(stream)

    assert [s.id for s in servers] == [f"server-{i}" for i in range(1, 6)]
    assert all(isinstance(s, compute.ServerSummary) for s in servers)
    assert stream.pages_fetched == 3
    assert stream.state is pagination.StreamState.EXHAUSTED


def test_list_servers_sends_negotiated_version(cloud: FakeCloud, os_session: session.Session):
    list(compute.list_servers(os_session, compute.ServerQuery(limit=2)))

    requests = _compute_requests(cloud, "/v2.1/servers")
    assert len(requests) == 3
    assert {r.headers["OpenStack-API-Version"] for r in requests} == {"compute 2.90"}


def test_list_servers_explicit_version(cloud: FakeCloud, os_session: session.Session):
    list(compute.list_servers(os_session, api_version="2.47"))

    request = _compute_requests(cloud, "/v2.1/servers")[0]
    assert request.headers["X-OpenStack-Nova-API-Version"] == "2.47"


def test_list_servers_unsupported_version(os_session: session.Session):
    with pytest.raises(errors.UnsupportedVersion):
        compute.list_servers(os_session, api_version="2.100")


def test_list_servers_after_token_revocation(cloud: FakeCloud, os_session: session.Session):
    """Revoking the token before the first listing re-authenticates once."""
    os_session.get_endpoint(compute.SERVICE_TYPE)
    cloud.revoke_all()

    servers = list(compute.list_servers(os_session))

    assert len(servers) == 5  # noqa: PLR2004
    assert len(cloud.token_requests) == 2
    assert _compute_requests(cloud, "/v2.1/servers")[-1].headers["X-Auth-Token"] == "token-2"


def test_list_servers_internal_interface(cloud: FakeCloud, os_session: session.Session):
    list(compute.list_servers(os_session, interface="internal"))

    assert len(cloud.requests_to("nova-internal.test", "/v2.1")) == 1
    assert len(cloud.requests_to("nova-internal.test", "/v2.1/servers")) == 1
    assert _compute_requests(cloud, "/v2.1") == []
    assert _compute_requests(cloud, "/v2.1/servers") == []


def test_list_servers_detail(detailed_cloud: FakeCloud, os_session: session.Session):
    servers = list(compute.list_servers_detail(os_session, compute.ServerQuery(limit=3)))

    assert len(servers) == 5  # noqa: PLR2004
    assert all(s.status is compute.ServerStatus.ACTIVE for s in servers)
    assert len(_compute_requests(detailed_cloud, "/v2.1/servers/detail")) == 2


def test_get_server(detailed_cloud: FakeCloud, os_session: session.Session):
    server = compute.get_server(os_session, "server-3")

    assert server.id == "server-3"
    assert server.name == "vm-3"
    assert server.access_ipv4 is None


def test_get_server_missing_is_resource_not_found(os_session: session.Session):
    with pytest.raises(errors.ResourceNotFound) as exc_info:
        compute.get_server(os_session, "nope")

    assert exc_info.value.service_type == "compute"
    assert "could not be found" in exc_info.value.message


def test_get_server_malformed_record_is_protocol_mismatch(os_session: session.Session):
    """The plain fake records lack required detail fields."""
    with pytest.raises(errors.ProtocolMismatch, match="Invalid server record"):
        compute.get_server(os_session, "server-1")


# ---------------------------------------------------------------------------
# Flavors
# ---------------------------------------------------------------------------


def test_list_flavors(cloud: FakeCloud, os_session: session.Session):
    flavors = list(compute.list_flavors(os_session, limit=2))

    assert [f.name for f in flavors] == ["m1.size1", "m1.size2", "m1.size3"]
    assert len(_compute_requests(cloud, "/v2.1/flavors")) == 2


def test_list_flavors_detail(os_session: session.Session):
    flavors = list(compute.list_flavors_detail(os_session))

    assert [f.vcpus for f in flavors] == [1, 2, 3]
    assert all(f.swap == 0 for f in flavors)


def test_get_flavor(os_session: session.Session):
    flavor = compute.get_flavor(os_session, "flavor-2")

    assert flavor.ram == 1024  # noqa: PLR2004
    assert flavor.is_public is True


def test_get_flavor_missing_is_resource_not_found(os_session: session.Session):
    with pytest.raises(errors.ResourceNotFound):
        compute.get_flavor(os_session, "flavor-9")
