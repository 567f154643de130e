"""
End-to-end CLI flows, run in-process with click's CliRunner:
enqueue, auto/manual sync, failure and retry, config, reset and watch.
"""
from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from offlineq.cli import cli


@pytest.fixture
def run(db_path):
    runner = CliRunner()

    def invoke(*args, input=None):
        result = runner.invoke(cli, ["--db", db_path, *args], input=input)
        return result

    # no real latency, failures or pacing unless a test asks for them
    for key, value in (("small_delay", "0"), ("large_delay", "0"), ("failure_rate", "0"),
                       ("pacing", "0"), ("initial_backoff", "0"), ("startup_sync_delay", "0")):
        assert invoke("config", "set", key, value).exit_code == 0
    return invoke


def status(run, network="--network=offline"):
    result = run(network, "status")
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def test_config_get_and_reject_unknown_key(run):
    result = run("config", "get")
    assert result.exit_code == 0
    assert json.loads(result.output)["max_retries"] == "3"

    result = run("config", "set", "colour", "red")
    assert result.exit_code == 1
    assert "Allowed keys" in result.output


def test_enqueue_offline_stays_pending(run):
    result = run("--network=offline", "enqueue", "--class", "large", "--size", "1000")
    assert result.exit_code == 0, result.output
    assert "Enqueued LARGE item" in result.output
    run("--network=offline", "enqueue", "--class", "small", "--payload", "hello")

    stats = status(run)
    assert stats["total_pending"] == 2
    assert stats["online"] is False
    assert stats["mode"] == "AUTO"

    listing = run("--network=offline", "list").output.splitlines()
    assert "SMALL" in listing[0] and "LARGE" in listing[1]


def test_enqueue_rejects_conflicting_payload_options(run):
    result = run("--network=offline", "enqueue", "--class", "small", "--payload", "a", "--size", "3")
    assert result.exit_code == 1
    assert "either --payload or --size" in result.output


def test_sync_while_offline_sends_nothing(run):
    run("--network=offline", "enqueue", "--class", "small")
    result = run("--network=offline", "sync")
    assert "Offline - nothing sent." in result.output
    assert status(run)["total_pending"] == 1


def test_sync_online_delivers_and_logs(run):
    run("--network=offline", "enqueue", "--class", "large", "--count", "2")
    run("--network=offline", "enqueue", "--class", "small")
    result = run("--network=online", "sync")
    assert result.exit_code == 0, result.output
    assert "completed=3" in result.output

    log = run("log").output.splitlines()
    assert len(log) == 3
    assert "LARGE" in log[0]
    assert "SMALL" in log[-1]


def test_auto_mode_online_enqueue_sends_immediately(run):
    result = run("--network=online", "enqueue", "--class", "small", "--payload", "now")
    assert "completed=1" in result.output
    assert run("list").output.strip() == "No items."


def test_manual_mode_requires_sync(run):
    assert run("--network=offline", "mode", "set", "manual").exit_code == 0
    assert run("--network=offline", "mode", "get").output.strip() == "MANUAL"

    run("--network=online", "enqueue", "--class", "small")
    assert status(run, "--network=online")["total_pending"] == 1

    # back to AUTO with a backlog while online drains it
    result = run("--network=online", "mode", "set", "auto")
    assert result.exit_code == 0
    assert status(run, "--network=online")["total_completed"] == 1


def test_failed_items_can_be_retried(run):
    run("config", "set", "failure_rate", "1")
    run("config", "set", "max_retries", "2")
    run("--network=online", "enqueue", "--class", "small", "--payload", "flaky")

    failed = run("failed", "list").output.splitlines()
    assert len(failed) == 1
    assert "FAILED" in failed[0]
    assert "retries=2" in failed[0]
    assert "last_error=Network request failed" in failed[0]
    item_id = failed[0].split("|")[0].strip()

    run("config", "set", "failure_rate", "0")
    result = run("--network=online", "failed", "retry", item_id)
    assert result.exit_code == 0, result.output
    assert run("failed", "list").output.strip() == "No failed items."
    assert status(run)["total_completed"] == 1


def test_retry_unknown_item_fails(run):
    result = run("--network=offline", "failed", "retry", "nope")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_failed_clear(run):
    run("config", "set", "failure_rate", "1")
    run("config", "set", "max_retries", "1")
    run("--network=online", "enqueue", "--class", "large")
    run("--network=offline", "enqueue", "--class", "small")
    result = run("failed", "clear")
    assert "Cleared 1 failed item(s)." in result.output
    assert status(run)["total_pending"] == 1


def test_list_by_state(run):
    run("config", "set", "failure_rate", "1")
    run("config", "set", "max_retries", "1")
    run("--network=online", "enqueue", "--class", "large")
    assert "FAILED" in run("list", "--state", "failed").output
    assert run("list", "--state", "pending").output.strip() == "No items."


def test_reset_clears_everything(run):
    run("--network=online", "enqueue", "--class", "small")
    run("--network=offline", "enqueue", "--class", "small")
    run("--network=offline", "mode", "set", "manual")
    result = run("reset", "--yes")
    assert result.exit_code == 0
    stats = status(run)
    assert (stats["total_pending"], stats["total_completed"], stats["mode"]) == (0, 0, "AUTO")


def test_watch_drains_backlog_when_online(run):
    run("--network=offline", "enqueue", "--class", "small", "--count", "2")
    result = run("--network=online", "watch", "--for", "1s")
    assert result.exit_code == 0, result.output
    assert "Watcher stopped." in result.output
    assert status(run)["total_completed"] == 2


def test_watch_rejects_bad_duration(run):
    result = run("--network=offline", "watch", "--for", "soon")
    assert result.exit_code == 1
