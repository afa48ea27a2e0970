"""Tests for per-operation options."""

from datetime import datetime, timezone

import pytest

from cathub.errors import IncompatibleOptionError, InvalidOptionError
from cathub.registry.models import Server
from cathub.registry.options import (
    GetServerVersionOptions,
    ListServersOptions,
    ListServerVersionsOptions,
    ListSkillsOptions,
    PublishServerVersionOptions,
    PublishSkillOptions,
    apply_options,
    with_cursor,
    with_limit,
    with_name,
    with_next,
    with_registry_name,
    with_search,
    with_server_data,
    with_status,
    with_statuses,
    with_updated_since,
)


def test_options_apply_in_order_last_wins():
    opts = apply_options(ListServersOptions(), [with_limit(5), with_search("x"), with_limit(7)])
    assert opts.limit == 7
    assert opts.search == "x"


def test_defaults_when_no_options():
    opts = apply_options(ListSkillsOptions(), [])
    assert opts.registry_name is None
    assert opts.limit == 0
    assert opts.cursor == ""


def test_incompatible_option_is_rejected():
    with pytest.raises(IncompatibleOptionError) as excinfo:
        apply_options(GetServerVersionOptions(), [with_cursor("abc")])
    assert "incompatible option for this operation" in str(excinfo.value)


def test_applies_to_reports_capability():
    assert with_name("fetch").applies_to(ListServerVersionsOptions)
    assert not with_limit(3).applies_to(PublishSkillOptions)
    assert with_registry_name("prod").applies_to(PublishSkillOptions)


def test_invalid_values_fail_at_construction():
    for build in (
        lambda: with_cursor(""),
        lambda: with_search(""),
        lambda: with_registry_name(""),
        lambda: with_limit(0),
        lambda: with_limit(-3),
        lambda: with_updated_since(None),
        lambda: with_next(datetime(1970, 1, 1, tzinfo=timezone.utc)),
        lambda: with_server_data(None),
        lambda: with_statuses(" ", ""),
    ):
        with pytest.raises(InvalidOptionError):
            build()


def test_time_options_accept_real_times():
    since = datetime(2025, 8, 7, 13, 15, tzinfo=timezone.utc)
    opts = apply_options(ListServersOptions(), [with_updated_since(since)])
    assert opts.updated_since == since


def test_status_csv_is_normalized():
    opts = apply_options(ListServersOptions(), [with_status("Active, deprecated")])
    assert opts.statuses == ["active", "deprecated"]


def test_server_data_option():
    server = Server(name="fetch", version="1.0.0")
    opts = apply_options(PublishServerVersionOptions(), [with_server_data(server)])
    assert opts.server_data is server
    with pytest.raises(IncompatibleOptionError):
        apply_options(ListServersOptions(), [with_server_data(server)])
