"""Tests for the tipsync command line (offline store, no remote configured)."""

import json

import pytest
from typer.testing import CliRunner

from tipsync.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("TIPSYNC_STORE_PATH", "TIPSYNC_API_URL", "TIPSYNC_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cli(tmp_path):
    store = str(tmp_path / "store")

    def invoke(*args):
        return runner.invoke(app, ["--store", store, *args])

    return invoke


def _add(cli, title="Study daily", description="Short sessions beat cramming."):
    result = cli("--json", "add", title, description)
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestTipCommands:
    def test_add_and_list(self, cli):
        result = cli("add", "Study daily", "Short sessions beat cramming.")
        assert result.exit_code == 0
        assert "Study daily" in result.output
        assert result.output.startswith("*")

        listed = cli("list")
        assert "Study daily" in listed.output

    def test_add_json(self, cli):
        tip = _add(cli)
        assert tip["title"] == "Study daily"
        assert tip["is_synced"] is False

    def test_add_blank_title_fails(self, cli):
        result = cli("add", " ", "D")
        assert result.exit_code == 1
        assert "validation" in result.output

    def test_show(self, cli):
        tip = _add(cli)
        result = cli("show", tip["id"])
        assert result.exit_code == 0
        assert "Short sessions beat cramming." in result.output
        assert "synced: no" in result.output

    def test_show_missing(self, cli):
        assert cli("show", "nope").exit_code == 1

    def test_edit(self, cli):
        tip = _add(cli)
        result = cli("edit", tip["id"], "--title", "Study every day")
        assert result.exit_code == 0
        assert "Study every day" in result.output

    def test_edit_missing(self, cli):
        result = cli("edit", "nope", "--title", "x")
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_rm_and_purge(self, cli):
        tip = _add(cli)
        assert cli("rm", tip["id"]).exit_code == 0
        assert "No tips." in cli("list").output

        # No remote is configured, so the delete stays pending
        result = cli("purge")
        assert "Purged 0 tips" in result.output

    def test_list_json_by_author(self, cli):
        cli("login", "u1", "--name", "Ana")
        _add(cli, title="Mine")
        cli("logout")
        _add(cli, title="Orphan")

        result = cli("--json", "list", "--author", "u1")
        assert [t["title"] for t in json.loads(result.output)] == ["Mine"]

    def test_authors(self, cli):
        cli("login", "u1", "--name", "Ana")
        _add(cli)
        result = cli("authors")
        assert "u1\tAna" in result.output


class TestUserCommands:
    def test_login_whoami_logout(self, cli):
        result = cli("login", "u1", "--name", "Ana")
        assert result.exit_code == 0
        assert "Logged in as Ana (u1)" in result.output

        _add(cli)
        assert "Ana (u1), 0 tips" in cli("whoami").output

        mine = cli("--json", "list", "--mine")
        assert len(json.loads(mine.output)) == 1

        assert cli("logout").exit_code == 0
        assert cli("whoami").exit_code == 1

    def test_login_needs_name(self, cli):
        result = cli("login", "u1")
        assert result.exit_code == 1


class TestSyncCommands:
    @pytest.mark.parametrize("command", ["sync", "pull", "push"])
    def test_offline_reports_unavailable(self, cli, command):
        result = cli(command)
        assert result.exit_code == 1
        assert "remote_unavailable" in result.output

    def test_repair(self, cli):
        _add(cli)
        cli("login", "u1", "--name", "Ana")
        result = cli("repair")
        assert result.exit_code == 0
        assert "Repaired 1 tips" in result.output

        tips = json.loads(cli("--json", "list").output)
        assert tips[0]["author_id"] == "u1"


class TestConfigCommand:
    def test_api_key_hidden(self, cli, monkeypatch):
        monkeypatch.setenv("TIPSYNC_API_KEY", "secret")
        result = cli("config")
        data = json.loads(result.output)
        assert data["remote"]["api_key"] == "***"
        assert "secret" not in result.output
