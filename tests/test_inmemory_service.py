"""Tests for the in-memory registry service (file storage mode)."""

import copy
import threading
import time

import pytest

from cathub.errors import (
    NotFoundError,
    NotManagedRegistryError,
    ProviderError,
    RegistryNotFoundError,
    UnsupportedOperationError,
    ValidationError,
    VersionAlreadyExistsError,
)
from cathub.registry.inmemory import InMemoryRegistryService
from cathub.registry.models import CatalogSnapshot, RegistryData, Server, Skill, SourceType
from cathub.registry.options import (
    with_cursor,
    with_limit,
    with_name,
    with_namespace,
    with_next,
    with_prev,
    with_registry_name,
    with_search,
    with_server_data,
    with_status,
    with_version,
)
from cathub.registry.provider import RegistryDataProvider
from cathub.registry.service import clamp_limit
from cathub.registry.versions import mark_latest


class StaticProvider(RegistryDataProvider):
    """Serves fixed registries and counts fetches."""

    def __init__(self, registries, delay=0.0):
        self.registries = registries
        self.delay = delay
        self.fail = False
        self.calls = 0

    def get_registry_data(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProviderError("upstream unavailable")
        return CatalogSnapshot(registries={r.name: copy.deepcopy(r) for r in self.registries})

    def get_source(self):
        return "static"

    @property
    def registry_name(self):
        return "test"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _registries():
    return [
        RegistryData(
            name="a",
            source_type=SourceType.FILE,
            servers=mark_latest([Server("s", "1.0.0"), Server("fetch", "2.0.0", description="Fetch URLs")]),
        ),
        RegistryData(name="b", source_type=SourceType.FILE, servers=mark_latest([Server("s", "1.0.0")])),
        RegistryData(
            name="internal",
            source_type=SourceType.MANAGED,
            skills=mark_latest(
                [
                    Skill("acme", "lint", "1.0.0", description="Lint"),
                    Skill("acme", "lint", "1.1.0", description="Lint"),
                    Skill("acme", "format", "0.1.0", description="Format", status="deprecated"),
                ],
                group_of=lambda s: (s.namespace, s.name),
            ),
        ),
    ]


def _service(provider=None, clock=None, ttl=30.0):
    provider = provider or StaticProvider(_registries())
    return InMemoryRegistryService(provider, cache_ttl=ttl, clock=clock or FakeClock())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def test_aggregated_listing_prefixes_every_entry():
    svc = _service()
    result = svc.list_servers()
    names = [s.name for s in result.entries]
    assert names == ["a.fetch", "a.s", "b.s"]
    assert result.next_cursor == ""


def test_scoped_listing_keeps_raw_names():
    svc = _service()
    result = svc.list_servers(with_registry_name("a"))
    assert [s.name for s in result.entries] == ["fetch", "s"]


def test_unknown_registry_scope():
    svc = _service()
    with pytest.raises(RegistryNotFoundError):
        svc.list_servers(with_registry_name("nope"))


def test_pagination_walks_all_pages_without_overlap():
    servers = [Server(f"srv-{i}", "1.0.0") for i in range(5)]
    provider = StaticProvider([RegistryData(name="r", servers=mark_latest(servers))])
    svc = _service(provider)

    seen = []
    cursor = None
    while True:
        options = [with_registry_name("r"), with_limit(2)]
        if cursor:
            options.append(with_cursor(cursor))
        page = svc.list_servers(*options)
        assert page.count <= 2
        seen.extend(s.name for s in page.entries)
        cursor = page.next_cursor
        if not cursor:
            break
    assert seen == [f"srv-{i}" for i in range(5)]


def test_limits_are_clamped():
    assert clamp_limit(0, 30, 1000) == 30
    assert clamp_limit(5000, 30, 1000) == 1000
    assert clamp_limit(7, 50, 100) == 7


def test_search_version_and_status_filters():
    svc = _service()
    assert [s.name for s in svc.list_servers(with_search("fetch urls")).entries] == ["a.fetch"]
    assert svc.list_servers(with_version("latest")).count == 3
    assert svc.list_servers(with_version("2.0.0")).count == 1
    skills = svc.list_skills(with_registry_name("internal"), with_status("deprecated"))
    assert [s.name for s in skills.entries] == ["format"]


def test_get_server_version_and_latest_alias():
    svc = _service()
    server = svc.get_server_version(with_registry_name("a"), with_name("fetch"), with_version("latest"))
    assert server.version == "2.0.0"
    aggregated = svc.get_server_version(with_name("b.s"), with_version("1.0.0"))
    assert aggregated.name == "b.s"
    with pytest.raises(NotFoundError):
        svc.get_server_version(with_registry_name("a"), with_name("fetch"), with_version("9.9.9"))
    with pytest.raises(NotFoundError):
        svc.get_server_version(with_registry_name("a"), with_name("ghost"), with_version("1.0.0"))


def test_list_server_versions_requires_name_and_one_direction():
    svc = _service()
    with pytest.raises(ValidationError):
        svc.list_server_versions(with_registry_name("a"))

    from datetime import datetime, timezone

    when = datetime(2025, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        svc.list_server_versions(with_name("s"), with_next(when), with_prev(when))

    versions = svc.list_server_versions(with_registry_name("a"), with_name("s"))
    assert [v.version for v in versions] == ["1.0.0"]


def test_skill_listing_latest_only_unless_named():
    svc = _service()
    latest = svc.list_skills(with_registry_name("internal"))
    assert [(s.name, s.version) for s in latest.entries] == [("format", "0.1.0"), ("lint", "1.1.0")]

    versions = svc.list_skills(with_registry_name("internal"), with_namespace("acme"), with_name("lint"))
    assert [s.version for s in versions.entries] == ["1.0.0", "1.1.0"]


def test_get_registry_merges_everything_prefixed():
    merged = _service().get_registry()
    assert {s.name for s in merged.servers} == {"a.fetch", "a.s", "b.s"}
    assert {s.name for s in merged.skills} == {"internal.lint", "internal.format"}


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


def test_cache_is_reused_within_ttl_and_refreshed_after():
    clock = FakeClock()
    provider = StaticProvider(_registries())
    svc = _service(provider, clock)
    assert provider.calls == 1

    svc.list_servers()
    clock.now += 29
    svc.list_servers()
    assert provider.calls == 1

    clock.now += 2
    svc.list_servers()
    assert provider.calls == 2


def test_failed_refresh_keeps_stale_snapshot():
    clock = FakeClock()
    provider = StaticProvider(_registries())
    svc = _service(provider, clock)

    provider.fail = True
    clock.now += 60
    assert svc.list_servers().count == 3
    assert provider.calls == 2


def test_failure_without_any_snapshot_propagates():
    provider = StaticProvider(_registries())
    provider.fail = True
    svc = _service(provider)
    with pytest.raises(ProviderError):
        svc.list_servers()


def test_readiness_always_asks_provider():
    provider = StaticProvider(_registries())
    svc = _service(provider)
    svc.check_readiness()
    provider.fail = True
    with pytest.raises(ProviderError):
        svc.check_readiness()


def test_concurrent_expired_reads_fetch_once():
    clock = FakeClock()
    provider = StaticProvider(_registries(), delay=0.05)
    svc = _service(provider, clock)
    clock.now += 60

    threads = [threading.Thread(target=svc.list_servers) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert provider.calls == 2


def test_invalidate_forces_refetch():
    provider = StaticProvider(_registries())
    svc = _service(provider)
    svc.invalidate()
    svc.list_servers()
    assert provider.calls == 2


# ---------------------------------------------------------------------------
# Managed writes
# ---------------------------------------------------------------------------


def _publish(svc, version):
    return svc.publish_server_version(
        with_registry_name("internal"), with_server_data(Server("tool", version))
    )


def test_publish_moves_latest_only_forward():
    svc = _service()
    assert _publish(svc, "1.0.0").is_latest
    assert _publish(svc, "2.0.0").is_latest
    assert not _publish(svc, "1.5.0").is_latest

    latest = svc.get_server_version(with_registry_name("internal"), with_name("tool"), with_version("latest"))
    assert latest.version == "2.0.0"


def test_deleting_latest_promotes_next_newest():
    svc = _service()
    for version in ("1.0.0", "2.0.0", "1.5.0"):
        _publish(svc, version)
    svc.delete_server_version(with_registry_name("internal"), with_name("tool"), with_version("2.0.0"))

    latest = svc.get_server_version(with_registry_name("internal"), with_name("tool"), with_version("latest"))
    assert latest.version == "1.5.0"
    with pytest.raises(NotFoundError):
        svc.delete_server_version(with_registry_name("internal"), with_name("tool"), with_version("2.0.0"))


def test_publish_rules():
    svc = _service()
    _publish(svc, "1.0.0")
    with pytest.raises(VersionAlreadyExistsError):
        _publish(svc, "1.0.0")
    with pytest.raises(NotManagedRegistryError):
        svc.publish_server_version(with_registry_name("a"), with_server_data(Server("x", "1.0.0")))
    with pytest.raises(RegistryNotFoundError):
        svc.publish_server_version(with_registry_name("zzz"), with_server_data(Server("x", "1.0.0")))
    with pytest.raises(ValidationError):
        _publish(svc, "latest")


def test_publish_does_not_mutate_published_snapshot():
    svc = _service()
    before = svc.list_skills(with_registry_name("internal"), with_namespace("acme"), with_name("lint"))
    svc.publish_skill(
        Skill("acme", "lint", "2.0.0", description="Lint"), with_registry_name("internal")
    )
    assert [s.is_latest for s in before.entries] == [False, True]

    after = svc.list_skills(with_registry_name("internal"), with_namespace("acme"), with_name("lint"))
    assert [(s.version, s.is_latest) for s in after.entries] == [
        ("1.0.0", False), ("1.1.0", False), ("2.0.0", True),
    ]


def test_skill_delete_and_missing_fields():
    svc = _service()
    svc.delete_skill_version(
        with_registry_name("internal"), with_namespace("acme"), with_name("lint"), with_version("1.1.0")
    )
    latest = svc.get_skill_version(
        with_registry_name("internal"), with_namespace("acme"), with_name("lint"), with_version("latest")
    )
    assert latest.version == "1.0.0"

    with pytest.raises(ValidationError, match="version is required"):
        svc.publish_skill(
            Skill("acme", "lint", "", description="Lint"), with_registry_name("internal")
        )


def test_registry_management_is_unsupported():
    svc = _service()
    with pytest.raises(UnsupportedOperationError):
        svc.create_registry("new", None)
    with pytest.raises(UnsupportedOperationError):
        svc.delete_registry("a")
    assert [r.name for r in svc.list_registries()] == ["a", "b", "internal"]
