"""Shared fixtures: a fake identity service and compute service on MockTransport."""

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from openstack_session import identity, pipeline, session

AUTH_URL = "http://keystone.test/identity"
COMPUTE_PUBLIC = "http://nova.test/v2.1"
COMPUTE_INTERNAL = "http://nova-internal.test/v2.1"
PASSWORD = "s3cret"
PREISSUED_TOKEN = "preissued-token"


def make_catalog() -> list[dict[str, Any]]:
    """Catalog with a compute service on two interfaces and an identity service."""
    return [
        {
            "type": "identity",
            "name": "keystone",
            "endpoints": [
                {"interface": "public", "region": "RegionOne", "url": f"{AUTH_URL}/v3"},
            ],
        },
        {
            "type": "compute",
            "name": "nova",
            "endpoints": [
                {"interface": "public", "region": "RegionOne", "url": COMPUTE_PUBLIC},
                {"interface": "internal", "region": "RegionOne", "url": COMPUTE_INTERNAL},
            ],
        },
    ]


def make_servers(count: int) -> list[dict[str, Any]]:
    return [{"id": f"server-{i}", "name": f"vm-{i}", "links": []} for i in range(1, count + 1)]


def make_server_record(**overrides) -> dict[str, Any]:
    """A fully populated server as returned by GET /servers/{id}."""
    record: dict[str, Any] = {
        "id": "server-1",
        "name": "vm-1",
        "status": "ACTIVE",
        "accessIPv4": "",
        "accessIPv6": "",
        "addresses": {
            "private": [
                {
                    "addr": "10.0.0.5",
                    "version": 4,
                    "OS-EXT-IPS-MAC:mac_addr": "fa:16:3e:00:00:01",
                    "OS-EXT-IPS:type": "fixed",
                },
                {"addr": "fd00::5", "version": 6, "OS-EXT-IPS:type": "floating"},
            ],
        },
        "OS-EXT-AZ:availability_zone": "nova",
        "created": "2024-05-01T10:00:00Z",
        "updated": "2024-05-01T10:05:00Z",
        "image": {"id": "image-1", "links": [{"rel": "bookmark", "href": "http://x/images/image-1"}]},
        "flavor": {"original_name": "m1.small", "vcpus": 1},
        "tenant_id": "project-1",
        "user_id": "user-1",
        "metadata": {},
    }
    record.update(overrides)
    return record


def make_flavors(count: int) -> list[dict[str, Any]]:
    return [
        {
            "id": f"flavor-{i}",
            "name": f"m1.size{i}",
            "vcpus": i,
            "ram": 512 * i,
            "disk": 10 * i,
            "OS-FLV-EXT-DATA:ephemeral": 0,
            "swap": "",
            "os-flavor-access:is_public": True,
        }
        for i in range(1, count + 1)
    ]


class FakeCloud:
    """Minimal Keystone + Nova implementation for MockTransport.

    Tokens are issued as ``token-1``, ``token-2``, ...; compute answers 401
    for tokens that were revoked or never issued.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.requests: list[httpx.Request] = []
        self.issued: list[str] = []
        self.revoked: set[str] = set()
        self.token_lifetime = timedelta(hours=1)
        self.catalog = make_catalog()
        self.servers = make_servers(5)
        self.flavors = make_flavors(3)
        self.version_document: dict[str, Any] = {
            "version": {
                "id": "v2.1",
                "status": "CURRENT",
                "min_version": "2.1",
                "version": "2.90",
            },
        }
        # Compute answers 401 for the next N calls regardless of token.
        self.reject_next = 0
        self.fail_identity_with: int | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def requests_to(self, host: str, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == host and (path is None or r.url.path == path)
        ]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return self.requests_to("keystone.test", "/identity/v3/auth/tokens")

    def revoke_all(self) -> None:
        self.revoked.update(self.issued)

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            if request.url.host == "keystone.test":
                return self._identity(request)
            return self._compute(request)

    # Identity

    def _token_document(self, token: str) -> dict[str, Any]:
        expires_at = datetime.now(timezone.utc) + self.token_lifetime
        return {
            "token": {
                "expires_at": expires_at.isoformat(),
                "user": {"id": "user-1"},
                "project": {"id": "project-1"},
                "catalog": self.catalog,
            },
        }

    def _identity(self, request: httpx.Request) -> httpx.Response:
        if self.fail_identity_with is not None:
            return httpx.Response(self.fail_identity_with, json={"error": {"message": "down"}})

        if request.method == "POST":
            body = json.loads(request.content)
            user = body["auth"]["identity"]["password"]["user"]
            if user["password"] != PASSWORD:
                return httpx.Response(
                    401,
                    json={"error": {"code": 401, "message": "The request you have made requires authentication.", "title": "Unauthorized"}},
                )
            token = f"token-{len(self.issued) + 1}"
            self.issued.append(token)
            return httpx.Response(
                201,
                headers={"X-Subject-Token": token},
                json=self._token_document(token),
            )

        subject = request.headers.get("X-Subject-Token")
        if subject == PREISSUED_TOKEN or (subject in self.issued and subject not in self.revoked):
            return httpx.Response(200, json=self._token_document(subject))
        return httpx.Response(404, json={"error": {"code": 404, "message": "Could not find token"}})

    # Compute

    def _valid_token(self, token: str | None) -> bool:
        if token == PREISSUED_TOKEN:
            return True
        return token in self.issued and token not in self.revoked

    def _compute(self, request: httpx.Request) -> httpx.Response:
        if self.reject_next > 0:
            self.reject_next -= 1
            return httpx.Response(401, json={"error": {"message": "Unauthorized"}})
        if not self._valid_token(request.headers.get("X-Auth-Token")):
            return httpx.Response(401, json={"error": {"message": "Invalid token"}})

        path = request.url.path
        if path == "/v2.1":
            return httpx.Response(200, json=self.version_document)
        for kind, records in (("servers", self.servers), ("flavors", self.flavors)):
            prefix = f"/v2.1/{kind}"
            if path in (prefix, f"{prefix}/detail"):
                return self._list(request, kind, records)
            if path.startswith(f"{prefix}/"):
                return self._show(kind, records, path.rsplit("/", 1)[-1])
        return httpx.Response(404, text="not found")

    def _show(self, kind: str, records: list[dict[str, Any]], record_id: str) -> httpx.Response:
        for record in records:
            if record["id"] == record_id:
                return httpx.Response(200, json={kind[:-1]: record})
        return httpx.Response(
            404,
            json={"itemNotFound": {"code": 404, "message": f"{kind[:-1].title()} {record_id} could not be found."}},
        )

    def _list(self, request: httpx.Request, kind: str, records: list[dict[str, Any]]) -> httpx.Response:
        query = parse_qs(urlsplit(str(request.url)).query)
        limit = int(query.get("limit", ["1000"])[0])
        marker = query.get("marker", [None])[0]
        start = 0
        if marker is not None:
            start = next(i for i, r in enumerate(records) if r["id"] == marker) + 1
        chunk = records[start : start + limit]
        body: dict[str, Any] = {kind: chunk}
        if start + limit < len(records):
            body[f"{kind}_links"] = [
                {
                    "rel": "next",
                    "href": f"{COMPUTE_PUBLIC}{request.url.path.removeprefix('/v2.1')}"
                    f"?limit={limit}&marker={chunk[-1]['id']}",
                },
            ]
        return httpx.Response(200, json=body)


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def request_pipeline(cloud: FakeCloud) -> pipeline.RequestPipeline:
    return pipeline.RequestPipeline(transport=cloud.transport)


@pytest.fixture
def password_auth(request_pipeline: pipeline.RequestPipeline) -> identity.AuthProvider:
    return identity.AuthProvider(
        auth_url=AUTH_URL,
        credentials=identity.PasswordCredentials(
            username="demo",
            password=PASSWORD,
            project_name="demo",
        ),
        pipeline=request_pipeline,
    )


@pytest.fixture
def os_session(password_auth: identity.AuthProvider) -> session.Session:
    """Session against the fake cloud, authenticated lazily."""
    return session.Session(password_auth)
