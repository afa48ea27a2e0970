"""Tests for aggregated-read naming."""

from cathub.registry.naming import prefix_name, render_name, should_prefix


def test_only_unscoped_reads_are_prefixed():
    assert should_prefix(None)
    assert not should_prefix("prod")
    assert not should_prefix("")


def test_prefix_uses_dot_delimiter():
    assert prefix_name("prod", "fetch") == "prod.fetch"


def test_prefix_is_deterministic_for_empty_parts():
    assert prefix_name("", "fetch") == ".fetch"
    assert prefix_name("prod", "") == "prod."


def test_dotted_names_are_prefixed_once():
    assert prefix_name("prod", "io.github.fetch") == "prod.io.github.fetch"


def test_render_name_depends_on_scope():
    assert render_name(None, "a", "s") == "a.s"
    assert render_name("a", "a", "s") == "s"
