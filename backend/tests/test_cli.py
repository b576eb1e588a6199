"""Read-only CLI commands; these need no API keys or ffmpeg."""

import uuid

import pytest
from typer.testing import CliRunner

from storyreel.cli.commands import app
from storyreel.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORYREEL_STORAGE__DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("STORYREEL_STORAGE__LOCAL_ROOT", str(tmp_path / "artifacts"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_init_db_then_empty_list():
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert "Schema ready" in result.output

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No chats found" in result.output


def test_status_rejects_malformed_id():
    result = runner.invoke(app, ["status", "not-a-uuid"])

    assert result.exit_code == 1
    assert "Invalid chat UUID" in result.output


def test_status_unknown_chat():
    result = runner.invoke(app, ["status", str(uuid.uuid4())])

    assert result.exit_code == 1
    assert "Chat not found" in result.output
