"""Tests for CLI commands."""

import asyncio
import re
import time

import pytest
from pathlib import Path
from rich.console import Console
from typer.testing import CliRunner

import tickler.cli.main as cli_main
from tickler.cli.main import app
from tickler.scheduler.store import IntentStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Isolated home and working directory; returns the db path to pass via --db."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_main, "console", Console(width=200))
    return str(tmp_path / "scheduler.db")


def schedule(runner, db, when, payload="check the weather", *extra):
    return runner.invoke(app, ["--db", db, "schedule", when, payload, *extra])


def intent_id(output: str) -> str:
    return re.search(r"id: ([0-9a-f]{32})", output).group(1)


def test_version(runner):
    """tickler version shows version."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.stdout


def test_schedule_and_list(runner, db):
    result = schedule(runner, db, "in 1 hour", "check the weather", "-d", "weather")
    assert result.exit_code == 0
    assert "Scheduled" in result.stdout
    new_id = intent_id(result.stdout)

    listed = runner.invoke(app, ["--db", db, "list"])
    assert listed.exit_code == 0
    assert new_id in listed.stdout
    assert "weather" in listed.stdout


def test_schedule_recurring(runner, db):
    result = schedule(runner, db, "every monday at 9am", "weekly review")
    assert result.exit_code == 0
    listed = runner.invoke(app, ["--db", db, "list"])
    assert "0 9 * * 1" in listed.stdout


def test_schedule_unparseable_exits_1(runner, db):
    result = schedule(runner, db, "purple elephants")
    assert result.exit_code == 1
    assert "Could not understand" in result.stdout


def test_schedule_past_exits_1(runner, db):
    result = schedule(runner, db, "2020-01-01 10:00")
    assert result.exit_code == 1
    assert "past" in result.stdout


def test_list_empty(runner, db):
    result = runner.invoke(app, ["--db", db, "list"])
    assert result.exit_code == 0
    assert "No scheduled intents" in result.stdout


def test_cancel(runner, db):
    new_id = intent_id(schedule(runner, db, "in 2 hours").stdout)

    result = runner.invoke(app, ["--db", db, "cancel", new_id])
    assert result.exit_code == 0
    assert "Cancelled" in result.stdout

    assert new_id not in runner.invoke(app, ["--db", db, "list"]).stdout
    everything = runner.invoke(app, ["--db", db, "list", "--all"]).stdout
    assert new_id in everything
    assert "inactive" in everything


def test_cancel_unknown_is_not_an_error(runner, db):
    result = runner.invoke(app, ["--db", db, "cancel", "deadbeef"])
    assert result.exit_code == 0
    assert "nothing to cancel" in result.stdout


def test_history_empty(runner, db):
    new_id = intent_id(schedule(runner, db, "in 1 hour").stdout)
    result = runner.invoke(app, ["--db", db, "history", new_id])
    assert result.exit_code == 0
    assert "No fire attempts" in result.stdout


def test_status(runner, db):
    schedule(runner, db, "in 1 hour", "ping", "-d", "ping me")
    result = runner.invoke(app, ["--db", db, "status"])
    assert result.exit_code == 0
    assert "Heartbeat" in result.stdout
    assert "never" in result.stdout
    assert "ping me" in result.stdout


def test_heartbeat_check(runner, db):
    stalled = runner.invoke(app, ["--db", db, "heartbeat-check"])
    assert stalled.exit_code == 1
    assert "stalled" in stalled.stdout

    async def beat():
        store = IntentStore(Path(db))
        await store.initialize()
        await store.upsert_heartbeat(time.time())
        await store.close()

    asyncio.run(beat())
    alive = runner.invoke(app, ["--db", db, "heartbeat-check"])
    assert alive.exit_code == 0
    assert "alive" in alive.stdout


def test_schedule_sentence_text_before_time(runner, db):
    result = runner.invoke(app, ["--db", db, "schedule", "remind me to call mom tomorrow at 5pm"])
    assert result.exit_code == 0
    assert "'call mom'" in result.stdout
    assert "17:00" in result.stdout


def test_schedule_sentence_time_before_text(runner, db):
    result = runner.invoke(app, ["--db", db, "schedule", "Tomorrow at 10am, pick up laundry"])
    assert result.exit_code == 0
    listed = runner.invoke(app, ["--db", db, "list"])
    assert "pick up laundry" in listed.stdout


def test_schedule_sentence_without_time_exits_1(runner, db):
    result = runner.invoke(app, ["--db", db, "schedule", "remind me to call mom"])
    assert result.exit_code == 1
    assert "Could not understand" in result.stdout


def test_store_commands_ignore_executor_config(runner, db, monkeypatch):
    """A webhook executor without a URL only matters to 'run'."""
    monkeypatch.setenv("TICKLER_EXECUTOR", "webhook")
    assert schedule(runner, db, "in 1 hour").exit_code == 0
    listed = runner.invoke(app, ["--db", db, "list"])
    assert listed.exit_code == 0
    assert "check the weather" in listed.stdout
    assert runner.invoke(app, ["--db", db, "status"]).exit_code == 0

    refused = runner.invoke(app, ["--db", db, "run"])
    assert refused.exit_code == 1
    assert "webhook_url" in refused.stdout
