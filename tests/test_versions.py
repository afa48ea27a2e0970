"""Tests for version ordering and latest pointers."""

from cathub.registry.models import Server, Skill
from cathub.registry.versions import compare_versions, is_newer_version, mark_latest, newest, version_key


def test_semantic_ordering_beats_string_ordering():
    assert is_newer_version("1.10.0", "1.9.0")
    assert not is_newer_version("1.9.0", "1.10.0")


def test_leading_v_is_ignored():
    assert compare_versions("v2.0.0", "2.0.0") == 0
    assert is_newer_version("v2.1", "2.0.9")


def test_prereleases_sort_before_release():
    assert is_newer_version("1.0.0", "1.0.0rc1")


def test_non_versions_fall_back_to_string_order():
    assert compare_versions("beta", "alpha") == 1
    assert compare_versions("nightly", "nightly") == 0


def test_version_key_sorts():
    assert sorted(["1.10.0", "1.2.0", "1.9.1"], key=version_key) == ["1.2.0", "1.9.1", "1.10.0"]


def test_newest():
    servers = [Server("s", "1.0.0"), Server("s", "3.0.0"), Server("s", "2.5.0")]
    assert newest(servers).version == "3.0.0"
    assert newest([]) is None


def test_mark_latest_per_name():
    servers = mark_latest([
        Server("a", "1.0.0"), Server("a", "1.1.0"), Server("b", "0.1.0"),
    ])
    latest = {(s.name, s.version) for s in servers if s.is_latest}
    assert latest == {("a", "1.1.0"), ("b", "0.1.0")}


def test_mark_latest_groups_skills_by_namespace():
    skills = mark_latest(
        [Skill("acme", "lint", "1.0.0"), Skill("other", "lint", "0.5.0")],
        group_of=lambda s: (s.namespace, s.name),
    )
    assert all(s.is_latest for s in skills)


def test_mixed_versions_sort_consistently():
    mixed = ["nightly", "1.10.0", "", "1.2.0", "beta", "v1.9.0"]
    expected = ["", "1.2.0", "v1.9.0", "1.10.0", "beta", "nightly"]
    assert sorted(mixed, key=version_key) == expected
    assert sorted(reversed(mixed), key=version_key) == expected


def test_free_form_versions_outrank_release_versions():
    assert is_newer_version("invalid-version", "1.0.0")
    assert not is_newer_version("1.0.0", "invalid-version")
    assert not is_newer_version("", "1.0.0")
    assert is_newer_version("1.0.0", "")
    assert compare_versions("", "") == 0
