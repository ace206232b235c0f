"""Tests for the batch scan coordinator."""

import asyncio
import math
from datetime import timedelta

import pytest
from sqlalchemy import select

from postscan.core.scanner import (
    PostItemSource,
    QueueTrigger,
    ScanState,
    SourceUnavailableError,
)
from postscan.core.scanner.coordinator import TRIGGER_UNAVAILABLE_WARNING
from postscan.core.scanner.models import utcnow
from postscan.db.database import close_db, get_db_session, init_db
from postscan.db.models import Activity, ActionType, PostStatus
from tests.helpers import add_post_type, make_coordinator, processed_markers, seed_posts


def run(scenario):
    """Run one async scenario against a freshly initialized database."""
    async def wrapper():
        await init_db()
        try:
            return await scenario()
        finally:
            await close_db()

    return asyncio.run(wrapper())


async def activity_types():
    async with get_db_session() as db:
        return [a.action_type for a in await db.scalars(select(Activity).order_by(Activity.id))]


def test_scan_of_45_posts_in_batches_of_20(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 45})
        coordinator = make_coordinator(scan_config)

        started = await coordinator.start_scan(["post"], 20)
        assert started.accepted
        assert started.state.running
        assert started.state.total == 45
        assert started.state.batch_size == 20
        assert coordinator.trigger.pending_count() == 1

        first = await coordinator.run_one(0)
        assert (first.fetched, first.processed, first.offset, first.completed) == (20, 20, 20, False)
        status = await coordinator.get_status()
        assert status.percentage == 44.4
        assert status.running

        second = await coordinator.run_one(1)
        assert (second.processed, second.offset, second.completed) == (40, 40, False)

        third = await coordinator.run_one(2)
        assert (third.fetched, third.processed, third.completed) == (5, 45, True)
        assert third.offset == 60

        state = (await coordinator.store.load()).state
        assert not state.running
        assert state.processed == 45
        assert state.percentage == 100.0
        assert state.last_scan_completed_at is not None

        markers = await processed_markers()
        assert len(markers) == 45
        assert await activity_types() == [ActionType.SCAN_STARTED, ActionType.SCAN_COMPLETED]

    run(scenario)


def test_empty_collection_completes_on_first_batch(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 3})
        coordinator = make_coordinator(scan_config)

        started = await coordinator.start_scan(["page"])
        assert started.accepted
        assert started.state.total == 0

        result = await coordinator.run_one(0)
        assert result.completed
        assert result.fetched == 0

        state = (await coordinator.store.load()).state
        assert not state.running
        assert state.processed == 0
        assert state.percentage == 0.0
        assert state.last_scan_completed_at is not None
        assert coordinator.trigger.pending_count() == 1  # only the initial arm, nothing re-armed

    run(scenario)


def test_oversized_batch_falls_back_to_default(db_url, scan_config):
    async def scenario():
        coordinator = make_coordinator(scan_config)
        started = await coordinator.start_scan(None, 500)
        assert started.state.batch_size == 50

    run(scenario)


@pytest.mark.parametrize("requested,expected", [
    (None, 50),
    (0, 50),
    (-3, 50),
    (201, 50),
    ("abc", 50),
    (True, 50),
    (1, 1),
    (20, 20),
    ("25", 25),
    (200, 200),
])
def test_clamp_batch_size(scan_config, requested, expected):
    coordinator = make_coordinator(scan_config)
    assert coordinator.clamp_batch_size(requested) == expected


def test_unknown_categories_are_dropped(db_url, scan_config):
    async def scenario():
        await add_post_type("revision", "Revisions", public=False)
        coordinator = make_coordinator(scan_config)

        started = await coordinator.start_scan(["post", "bogus_type", "revision"])
        assert started.state.item_filter == ["post"]
        assert started.dropped_categories == ["bogus_type", "revision"]
        assert not started.default_filter_applied

    run(scenario)


def test_no_valid_category_uses_default_filter(db_url, scan_config):
    async def scenario():
        coordinator = make_coordinator(scan_config)

        selected, dropped, default_applied = await coordinator.resolve_filter(["nope"])
        assert selected == ["post", "page"]
        assert dropped == ["nope"]
        assert default_applied

        selected, dropped, default_applied = await coordinator.resolve_filter("page, post,page")
        assert selected == ["page", "post"]
        assert dropped == []
        assert not default_applied

        selected, _, default_applied = await coordinator.resolve_filter([])
        assert selected == ["post", "page"]
        assert default_applied

    run(scenario)


def test_second_start_leaves_running_scan_untouched(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 30, "page": 5})
        coordinator = make_coordinator(scan_config)

        await coordinator.start_scan(["post"], 20)
        await coordinator.run_one(0)
        before = await coordinator.store.load()

        again = await coordinator.start_scan(["page"], 5)
        assert not again.accepted
        assert again.state == before.state

        after = await coordinator.store.load()
        assert after.version == before.version
        assert after.state == before.state

    run(scenario)


def test_progress_is_monotonic_and_terminates(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 45})
        trigger = QueueTrigger()
        coordinator = make_coordinator(scan_config, trigger)
        await coordinator.start_scan(["post"], 7)

        seen = []
        executed = await trigger.run_pending(
            coordinator.run_one,
            honor_delay=False,
            on_batch=lambda n, result: seen.append(result.processed),
        )

        assert seen == sorted(seen)
        assert all(p <= 45 for p in seen)
        assert seen[-1] == 45
        assert executed <= math.ceil(45 / 7) + 1
        assert trigger.pending_count() == 0

    run(scenario)


def test_only_published_posts_are_stamped(db_url, scan_config):
    async def scenario():
        published = await seed_posts({"post": 10})
        drafts = await seed_posts({"post": 5}, status=PostStatus.DRAFT)
        trigger = QueueTrigger()
        coordinator = make_coordinator(scan_config, trigger)

        started = await coordinator.start_scan(["post"], 4)
        assert started.state.total == 10

        await trigger.run_pending(coordinator.run_one, honor_delay=False)

        markers = await processed_markers()
        assert set(markers) == set(published)
        assert not set(markers) & set(drafts)

    run(scenario)


def test_cancel_stops_the_chain(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 45})
        coordinator = make_coordinator(scan_config)

        await coordinator.start_scan(["post"], 20)
        await coordinator.run_one(0)

        cancelled = await coordinator.cancel_scan()
        assert cancelled.cancelled
        assert not cancelled.state.running
        assert cancelled.state.cancelled_at is not None
        assert cancelled.state.last_scan_completed_at is None
        assert coordinator.trigger.pending_count() == 0

        assert await coordinator.run_one(1) is None
        assert (await coordinator.store.load()).state.processed == 20

        again = await coordinator.cancel_scan()
        assert not again.cancelled
        assert ActionType.SCAN_CANCELLED in await activity_types()

    run(scenario)


def test_stale_batch_is_dropped(db_url, scan_config):
    class InterferingSource(PostItemSource):
        """Bumps the stored state version while a batch is in flight."""

        def __init__(self, store):
            super().__init__()
            self.store = store

        async def page(self, categories, active_only, offset, limit):
            ids = await super().page(categories, active_only, offset, limit)
            stored = await self.store.load()
            await self.store.save(stored.state, stored.version)
            return ids

    async def scenario():
        await seed_posts({"post": 10})
        coordinator = make_coordinator(scan_config)
        coordinator.source = InterferingSource(coordinator.store)

        await coordinator.start_scan(["post"], 5)
        pending_before = coordinator.trigger.pending_count()

        result = await coordinator.run_one(0)
        assert result.stale
        assert not result.completed
        assert coordinator.trigger.pending_count() == pending_before

        state = (await coordinator.store.load()).state
        assert state.processed == 0
        assert state.offset == 0
        assert state.running

    run(scenario)


def test_repeated_batch_number_is_dropped(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 100})
        trigger = QueueTrigger()
        coordinator = make_coordinator(scan_config, trigger)
        await coordinator.start_scan(["post"], 20)
        trigger.cancel_all_pending()

        first = await coordinator.run_one(0)
        assert first.processed == 20

        assert await coordinator.run_one(0) is None
        assert await coordinator.run_one(3) is None
        assert trigger.pending_count() == 1
        assert trigger.pop_next()[1] == 1

        state = (await coordinator.store.load()).state
        assert state.processed == 20
        assert state.offset == 20
        assert len(await processed_markers()) == 20

    run(scenario)


def test_total_captured_at_start_is_not_recounted(db_url, scan_config):
    async def scenario():
        coordinator = make_coordinator(scan_config)
        started = await coordinator.start_scan(["page"])
        assert started.state.total == 0

        # Pages published after the start do not change the captured total
        await seed_posts({"page": 3})
        result = await coordinator.run_one(0)

        assert result.completed
        assert result.total == 0
        assert (await coordinator.store.load()).state.total == 0

    run(scenario)


def test_missing_total_is_backfilled(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 30})
        coordinator = make_coordinator(scan_config)

        stored = await coordinator.store.load()
        legacy = ScanState(running=True, item_filter=["post"], batch_size=20, updated_at=utcnow())
        assert legacy.total is None
        await coordinator.store.save(legacy, stored.version)

        result = await coordinator.run_one(0)
        assert result.total == 30
        assert not result.completed
        assert (await coordinator.store.load()).state.total == 30

    run(scenario)


def test_unavailable_trigger_is_reported(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 5})
        coordinator = make_coordinator(scan_config, QueueTrigger(available=False))

        started = await coordinator.start_scan(["post"])
        assert started.accepted
        assert started.state.running
        assert started.warning == TRIGGER_UNAVAILABLE_WARNING

        assert await coordinator.run_one(0) is None
        assert (await coordinator.store.load()).state.processed == 0

        status = await coordinator.get_status()
        assert not status.trigger_available
        assert TRIGGER_UNAVAILABLE_WARNING in status.warning

    run(scenario)


def test_source_failure_records_no_progress(db_url, scan_config):
    class FlakySource(PostItemSource):
        fail = True

        async def mark_processed(self, item_id, timestamp):
            if self.fail:
                raise SourceUnavailableError("database is locked")
            return await super().mark_processed(item_id, timestamp)

    async def scenario():
        await seed_posts({"post": 8})
        source = FlakySource()
        coordinator = make_coordinator(scan_config, source=source)

        await coordinator.start_scan(["post"], 5)
        before = await coordinator.store.load()

        with pytest.raises(SourceUnavailableError):
            await coordinator.run_one(0)

        after = await coordinator.store.load()
        assert after.version == before.version
        assert after.state.running
        assert after.state.processed == 0
        assert after.state.offset == 0
        assert ActionType.BATCH_FAILED in await activity_types()

        source.fail = False
        result = await coordinator.run_one(0)
        assert result.processed == 5

    run(scenario)


def test_start_fails_cleanly_when_source_is_down(db_url, scan_config):
    class DownSource(PostItemSource):
        async def count(self, categories, active_only=True):
            raise SourceUnavailableError("connection refused")

    async def scenario():
        coordinator = make_coordinator(scan_config, source=DownSource())

        with pytest.raises(SourceUnavailableError):
            await coordinator.start_scan(["post"])

        state = (await coordinator.store.load()).state
        assert not state.running
        assert coordinator.trigger.pending_count() == 0

    run(scenario)


def test_resume_rearms_interrupted_scan(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 45})
        first = make_coordinator(scan_config)
        assert not await first.resume()

        await first.start_scan(["post"], 20)
        await first.run_one(0)

        # New process: empty queue, same persisted state
        trigger = QueueTrigger()
        restarted = make_coordinator(scan_config, trigger)
        assert await restarted.resume()
        assert trigger.pop_next()[1] == 1

        trigger.arm(1)
        assert not await restarted.resume()

        await trigger.run_pending(restarted.run_one, honor_delay=False)
        state = (await restarted.store.load()).state
        assert not state.running
        assert state.processed == 45

    run(scenario)


def test_status_when_idle(db_url, scan_config):
    async def scenario():
        coordinator = make_coordinator(scan_config)
        status = await coordinator.get_status()

        assert not status.running
        assert status.total == 0
        assert status.percentage == 0.0
        assert status.selected_filter == ["post", "page"]
        assert [c.slug for c in status.available_categories] == ["page", "post"]
        assert status.trigger_available
        assert status.warning is None
        assert not status.stale
        assert status.default_batch_size == 50
        assert status.max_batch_size == 200

    run(scenario)


def test_status_flags_stale_scan(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 3})
        coordinator = make_coordinator(scan_config)
        await coordinator.start_scan(["post"])

        stored = await coordinator.store.load()
        stored.state.updated_at = utcnow() - timedelta(seconds=scan_config.stale_after_seconds + 60)
        await coordinator.store.save(stored.state, stored.version)

        status = await coordinator.get_status()
        assert status.running
        assert status.stale

    run(scenario)


def test_new_scan_keeps_last_completion_time(db_url, scan_config):
    async def scenario():
        await seed_posts({"post": 3})
        trigger = QueueTrigger()
        coordinator = make_coordinator(scan_config, trigger)

        await coordinator.start_scan(["post"])
        await trigger.run_pending(coordinator.run_one, honor_delay=False)
        completed_at = (await coordinator.store.load()).state.last_scan_completed_at

        restarted = await coordinator.start_scan(["post"])
        assert restarted.accepted
        assert restarted.state.processed == 0
        assert restarted.state.last_scan_completed_at == completed_at

    run(scenario)


@pytest.mark.parametrize("processed,total,expected", [
    (0, 0, 0.0),
    (5, 0, 0.0),
    (5, None, 0.0),
    (20, 45, 44.4),
    (45, 45, 100.0),
    (50, 45, 100.0),
])
def test_percentage(processed, total, expected):
    assert ScanState(processed=processed, total=total).percentage == expected
