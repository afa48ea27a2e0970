"""Tests for the HTTP API, served from file storage."""

import json
import tempfile
from contextlib import contextmanager

from fastapi.testclient import TestClient

from cathub.config import config_from_dict
from cathub.errors import (
    CatalogError,
    InvalidOptionError,
    NotManagedRegistryError,
    RegistryNotFoundError,
    UnsupportedOperationError,
)
from cathub.storage.factory import FileStorageFactory
from web.backend.app.main import create_app, status_for


def _inline(*servers):
    return json.dumps({"servers": [{"name": n, "version": v} for n, v in servers]})


@contextmanager
def _client(enable_aggregated=True):
    with tempfile.TemporaryDirectory() as tmpdir:
        cfg = config_from_dict({
            "file_storage": {"base_dir": tmpdir},
            "enable_aggregated_endpoints": enable_aggregated,
            "registries": [
                {"name": "a", "file": {"data": _inline(("s", "1.0.0"), ("t", "2.0.0"))}},
                {"name": "b", "file": {"data": _inline(("s", "1.0.0"))}},
                {"name": "internal", "managed": {}},
            ],
        })
        with FileStorageFactory(cfg) as factory:
            app = create_app(components=factory.build(), config=cfg)
            with TestClient(app) as client:
                yield client


def _publish(client, name="io.acme/tool", version="1.0.0", registry="internal"):
    return client.post(
        f"/registry/{registry}/v0.1/publish",
        json={"name": name, "version": version, "description": "A tool"},
    )


def _skill(version="1.0.0", **overrides):
    body = {"namespace": "acme", "name": "lint", "version": version, "description": "Lint code"}
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


def test_health_and_readiness():
    with _client() as client:
        assert client.get("/health").json() == {"status": "healthy"}
        resp = client.get("/readiness")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


def test_aggregated_listing_prefixes_names():
    with _client() as client:
        resp = client.get("/registry/v0.1/servers", params={"search": "s"})
        assert resp.status_code == 200
        body = resp.json()
        assert {s["name"] for s in body["servers"]} == {"a.s", "b.s"}
        assert body["metadata"]["count"] == 2
        assert body["metadata"]["nextCursor"] == ""


def test_scoped_listing_keeps_names_and_paginates():
    with _client() as client:
        first = client.get("/registry/a/v0.1/servers", params={"limit": "1"}).json()
        assert [s["name"] for s in first["servers"]] == ["s"]
        cursor = first["metadata"]["nextCursor"]
        assert cursor

        second = client.get("/registry/a/v0.1/servers", params={"limit": "1", "cursor": cursor}).json()
        assert [s["name"] for s in second["servers"]] == ["t"]
        assert second["metadata"]["nextCursor"] == ""


def test_aggregated_endpoints_can_be_disabled():
    with _client(enable_aggregated=False) as client:
        assert client.get("/registry/v0.1/servers").status_code == 404
        assert client.get("/registry/a/v0.1/servers").status_code == 200


def test_bad_query_parameters():
    with _client() as client:
        resp = client.get("/registry/a/v0.1/servers", params={"limit": "lots"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "invalid limit parameter: must be an integer"

        resp = client.get("/registry/a/v0.1/servers", params={"limit": "1001"})
        assert resp.json()["detail"] == "invalid limit parameter: must be between 1 and 1000"

        resp = client.get("/registry/a/v0.1/servers", params={"updated_since": "yesterday"})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid request")

        assert client.get("/registry/a/v0.1/servers", params={"cursor": "!!"}).status_code == 400


def test_unknown_registry_is_404():
    with _client() as client:
        resp = client.get("/registry/ghost/v0.1/servers")
        assert resp.status_code == 404
        assert "ghost" in resp.json()["detail"]


def test_publish_get_and_delete():
    with _client() as client:
        resp = _publish(client)
        assert resp.status_code == 201
        assert resp.json()["is_latest"] is True
        assert _publish(client, version="2.0.0").status_code == 201

        latest = client.get("/registry/internal/v0.1/servers/io.acme/tool/versions/latest")
        assert latest.status_code == 200
        assert latest.json()["version"] == "2.0.0"

        versions = client.get("/registry/internal/v0.1/servers/io.acme/tool/versions").json()
        assert [v["version"] for v in versions["servers"]] == ["1.0.0", "2.0.0"]

        resp = client.delete("/registry/internal/v0.1/servers/io.acme/tool/versions/2.0.0")
        assert resp.status_code == 204
        latest = client.get("/registry/internal/v0.1/servers/io.acme/tool/versions/latest").json()
        assert latest["version"] == "1.0.0"

        resp = client.delete("/registry/internal/v0.1/servers/io.acme/tool/versions/9.9.9")
        assert resp.status_code == 404


def test_publish_errors():
    with _client() as client:
        _publish(client)
        resp = _publish(client)
        assert resp.status_code == 409
        assert "already exists" in resp.json()["detail"]

        resp = _publish(client, version="")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "version is required"

        assert _publish(client, version="latest").status_code == 400
        assert _publish(client, registry="a").status_code == 403
        assert _publish(client, registry="ghost").status_code == 404


def test_published_server_is_visible_aggregated():
    with _client() as client:
        _publish(client)
        resp = client.get("/registry/v0.1/servers/internal.io.acme/tool/versions/1.0.0")
        assert resp.status_code == 200
        assert resp.json()["name"] == "internal.io.acme/tool"


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


def test_skill_lifecycle():
    base = "/registry/internal/v0.1/x/skills"
    with _client() as client:
        assert client.post(base, json=_skill("1.0.0")).status_code == 201
        assert client.post(base, json=_skill("1.2.0")).status_code == 201

        listed = client.get(base).json()
        assert [(s["name"], s["version"]) for s in listed["skills"]] == [("lint", "1.2.0")]

        latest = client.get(f"{base}/acme/lint").json()
        assert latest["version"] == "1.2.0"

        versions = client.get(f"{base}/acme/lint/versions").json()
        assert [s["version"] for s in versions["skills"]] == ["1.0.0", "1.2.0"]

        assert client.delete(f"{base}/acme/lint/versions/1.2.0").status_code == 204
        assert client.get(f"{base}/acme/lint/versions/1.2.0").status_code == 404
        assert client.get(f"{base}/acme/lint").json()["version"] == "1.0.0"


def test_skill_validation_messages():
    base = "/registry/internal/v0.1/x/skills"
    with _client() as client:
        resp = client.post(base, json=_skill(namespace=""))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "namespace is required"

        resp = client.post(base, json=_skill(description=""))
        assert resp.json()["detail"] == "description is required"

        resp = client.get(base, params={"limit": "101"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "invalid limit parameter: must be between 1 and 100"

        resp = client.get(base, params={"status": "deprecated"})
        assert resp.status_code == 200
        assert resp.json()["skills"] == []


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


def test_registry_endpoints_in_file_mode():
    with _client() as client:
        listed = client.get("/extension/v0/registries").json()
        assert [r["name"] for r in listed["registries"]] == ["a", "b", "internal"]

        internal = client.get("/extension/v0/registries/internal").json()
        assert internal["type"] == "managed"
        assert internal["creation_type"] == "CONFIG"
        assert internal["sync_status"]["phase"] == "Complete"

        a = client.get("/extension/v0/registries/a").json()
        assert a["sync_status"]["message"] == "Inline data processed"

        assert client.get("/extension/v0/registries/ghost").status_code == 404
        resp = client.put("/extension/v0/registries/team", json={"managed": {}})
        assert resp.status_code == 501
        assert client.delete("/extension/v0/registries/a").status_code == 501


def test_error_status_mapping():
    assert status_for(RegistryNotFoundError("x")) == 404
    assert status_for(NotManagedRegistryError("x")) == 403
    assert status_for(InvalidOptionError("x")) == 400
    assert status_for(UnsupportedOperationError("x")) == 501
    assert status_for(CatalogError("x")) == 500
