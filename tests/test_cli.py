"""Tests for the cathub command line."""

import json
import tempfile
from pathlib import Path

import yaml
from click.testing import CliRunner

from cathub.cli import main


def _write_config(tmpdir):
    inline = json.dumps({"servers": [{"name": "fetch", "version": "1.0.0", "description": "Fetch URLs"}]})
    path = Path(tmpdir) / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({
            "file_storage": {"base_dir": str(Path(tmpdir) / "data")},
            "registries": [
                {"name": "pinned", "file": {"data": inline}},
                {"name": "internal", "managed": {}},
            ],
        }, f)
    return str(path)


def _run(*args):
    with tempfile.TemporaryDirectory() as tmpdir:
        runner = CliRunner()
        return runner.invoke(main, ["--config", _write_config(tmpdir), *args])


def test_servers_lists_prefixed_names():
    result = _run("servers")
    assert result.exit_code == 0, result.output
    assert "pinned.fetch" in result.output


def test_servers_scoped_to_registry():
    result = _run("servers", "--registry", "pinned")
    assert result.exit_code == 0, result.output
    assert "pinned.fetch" not in result.output
    assert "fetch" in result.output


def test_unknown_registry_is_reported():
    result = _run("servers", "--registry", "ghost")
    assert result.exit_code != 0
    assert "ghost" in result.output


def test_bad_limit_is_reported():
    result = _run("servers", "--limit", "0")
    assert result.exit_code != 0
    assert "invalid limit" in result.output


def test_skills_empty():
    result = _run("skills")
    assert result.exit_code == 0, result.output
    assert "No skills found" in result.output


def test_registries_table():
    result = _run("registries")
    assert result.exit_code == 0, result.output
    assert "pinned" in result.output
    assert "managed" in result.output


def test_status_shows_inline_load():
    result = _run("status")
    assert result.exit_code == 0, result.output
    assert "Inline data processed" in result.output
    assert "Non-synced registry" in result.output


def test_missing_config():
    runner = CliRunner()
    result = runner.invoke(main, ["--config", "/nonexistent/cathub.yaml", "servers"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_skills_bad_limit_is_reported():
    result = _run("skills", "--limit", "0")
    assert result.exit_code != 0
    assert "invalid limit" in result.output
