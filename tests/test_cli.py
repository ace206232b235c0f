"""CLI tests using click's runner against a temporary database."""

import asyncio
import json

import pytest
from click.testing import CliRunner

from postscan.cli import cli
from postscan.core.scanner import ScanStateStore
from postscan.db.database import close_db, init_db
from tests.helpers import make_coordinator, processed_markers, seed_posts


def run(scenario):
    async def wrapper():
        await init_db()
        try:
            return await scenario()
        finally:
            await close_db()

    return asyncio.run(wrapper())


@pytest.fixture
def seeded(db_url, app_config):
    run(lambda: seed_posts({"post": 45, "page": 4}))
    return db_url


def invoke(db_url, *args):
    return CliRunner().invoke(cli, ["--database-url", db_url, *args])


def test_scan_processes_every_post(seeded):
    result = invoke(seeded, "scan", "--categories", "post", "--batch-size", "20")

    assert result.exit_code == 0, result.output
    assert "Found 45 posts to process (batch size 20)" in result.output
    assert "Success: Scanned 45 posts." in result.output
    assert len(run(processed_markers)) == 45


def test_scan_warns_about_invalid_post_types(seeded):
    result = invoke(seeded, "scan", "--post-types", "page,bogus")

    assert result.exit_code == 0, result.output
    assert "Invalid post types: bogus" in result.output
    assert "Success: Scanned 4 posts." in result.output


def test_scan_refuses_while_another_is_running(seeded, scan_config):
    run(lambda: make_coordinator(scan_config).start_scan(["post"]))

    result = invoke(seeded, "scan")
    assert result.exit_code == 1
    assert "already running" in result.output


def test_resume_finishes_running_scan(seeded, scan_config):
    async def partial():
        coordinator = make_coordinator(scan_config)
        await coordinator.start_scan(["post"], 20)
        await coordinator.run_one(0)

    run(partial)

    result = invoke(seeded, "resume")
    assert result.exit_code == 0, result.output
    assert "Resuming scan at 20/45 posts." in result.output
    assert "Success: Scanned 45 posts." in result.output


def test_resume_without_running_scan(seeded):
    result = invoke(seeded, "resume")
    assert result.exit_code == 0
    assert "No scan is currently running." in result.output


def test_status_prints_json(seeded):
    invoke(seeded, "scan", "--categories", "page")

    result = invoke(seeded, "status")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["running"] is False
    assert data["processed"] == 4
    assert data["selected_filter"] == ["page"]
    assert "trigger_available" not in data
    assert "pending_batches" not in data


def test_cancel(seeded, scan_config):
    assert "No scan is currently running." in invoke(seeded, "cancel").output

    run(lambda: make_coordinator(scan_config).start_scan(["post"]))
    result = invoke(seeded, "cancel")
    assert "Scan cancelled." in result.output
    assert not run(lambda: ScanStateStore().load()).state.running
