"""
Event manager tests: immediate publication, delayed health events,
reconciliation with restores, and the never-raise ingestion boundary.

All delays run on a VirtualScheduler; `advance_minutes` is the only way
time passes.
"""

import json
import logging

from models import health_id

from conftest import download, health, ping, restored


class TestImmediatePublication:
    def test_delay_disabled_publishes_everything(self, make_harness):
        h = make_harness(feed_health_delay=0)

        h.manager.receive(health())
        h.manager.receive(restored())
        h.manager.receive(ping())

        assert h.titles() == ["Health", "Health Restored", "Test"]
        assert h.manager.delayed == {}
        assert h.manager.types_to_delay == set()
        assert h.scheduler.pending() == 0

    def test_health_type_not_configured_for_delay(self, make_harness):
        h = make_harness()

        h.manager.receive(health(type_="IndexerStatusCheck"))

        assert h.titles() == ["Health"]
        assert h.manager.delayed == {}

    def test_restore_without_pending_health_is_published(self, make_harness):
        h = make_harness()

        h.manager.receive(restored())

        assert h.titles() == ["Health Restored"]

    def test_receive_persists_before_returning(self, make_harness):
        h = make_harness()

        event = h.manager.receive(ping())

        rows = json.loads(open(h.settings.history_file, encoding="utf-8").read())
        assert [r["id"] for r in rows] == [event.id]
        assert h.feed_ids() == [event.id]

    def test_water_marks_keep_newest_items(self, make_harness):
        h = make_harness(feed_low_water_mark=2, feed_high_water_mark=3)

        events = [h.manager.receive(ping(n)) for n in range(4)]

        assert h.feed_ids() == [events[2].id, events[3].id]
        assert len(h.history) == 4


class TestDelayedHealth:
    def test_restore_within_window_suppresses_both(self, make_harness):
        h = make_harness()

        first = h.manager.receive(health())
        assert h.titles() == []
        assert list(h.manager.delayed) == [health_id(first)]

        h.scheduler.advance_minutes(5)
        h.manager.receive(restored())

        assert h.titles() == []
        assert h.manager.delayed == {}
        assert h.scheduler.pending() == 0
        assert len(h.history) == 2

        h.scheduler.advance_minutes(60)
        assert h.titles() == []

    def test_full_scenario(self, make_harness):
        h = make_harness()

        h.manager.receive(health())
        h.scheduler.advance_minutes(5)
        h.manager.receive(restored())
        assert len(h.feed) == 0

        h.scheduler.advance_minutes(15)
        again = h.manager.receive(health())
        h.scheduler.advance_minutes(9)
        assert len(h.feed) == 0

        h.scheduler.advance_minutes(1)
        assert h.feed_ids() == [again.id]

    def test_discard_purges_pair_from_history(self, make_harness):
        h = make_harness(discard_resolved_health_events=True)

        before = h.manager.receive(ping(1))
        pending = h.manager.receive(health())
        h.manager.receive(ping(2))
        h.scheduler.advance_minutes(2)
        restore = h.manager.receive(restored())

        assert h.history.get(pending.id) is None
        assert h.history.get(restore.id) is None
        assert [e.index for e in h.history.records] == [0, 1]
        assert h.titles() == ["Test", "Test"]

        rows = json.loads(open(h.settings.history_file, encoding="utf-8").read())
        assert [r["id"] for r in rows] == [before.id, h.history.records[1].id]
        assert [r["index"] for r in rows] == [0, 1]

    def test_suppress_only_keeps_pair_in_history(self, make_harness, caplog):
        h = make_harness(discard_resolved_health_events=False)

        with caplog.at_level(logging.INFO, logger="feed"):
            pending = h.manager.receive(health())
            h.scheduler.advance_minutes(3)
            restore = h.manager.receive(restored())

        assert h.titles() == []
        assert h.history.get(pending.id) is pending
        assert h.history.get(restore.id) is restore
        assert "restored after 3 minutes. Suppressing from feed." in caplog.text

    def test_timeout_publishes_original_then_restore_standalone(self, make_harness):
        h = make_harness()

        pending = h.manager.receive(health())
        h.scheduler.advance_minutes(11)
        assert h.feed_ids() == [pending.id]
        assert h.manager.delayed == {}

        h.manager.receive(restored())
        assert h.titles() == ["Health", "Health Restored"]

    def test_restore_on_the_expiry_instant_publishes_health_once(self, make_harness):
        h = make_harness()

        h.manager.receive(health())
        h.scheduler.advance_minutes(10)
        h.manager.receive(restored())

        assert h.titles() == ["Health", "Health Restored"]

    def test_consumed_timer_cannot_fire(self, make_harness):
        h = make_harness()

        pending = h.manager.receive(health())
        timer = h.manager.delayed[health_id(pending)]
        h.manager.receive(restored())

        h.manager._on_timeout(timer)

        assert h.titles() == []

    def test_identity_must_match_exactly(self, make_harness):
        h = make_harness()

        h.manager.receive(health(message="disk full"))
        h.manager.receive(restored(message="Disk full"))
        h.manager.receive(restored(message="disk full", level="error"))

        assert h.titles() == ["Health Restored", "Health Restored"]
        assert len(h.manager.delayed) == 1

    def test_repeated_health_replaces_pending_timer(self, make_harness, caplog):
        h = make_harness()

        h.manager.receive(health())
        h.scheduler.advance_minutes(3)
        with caplog.at_level(logging.WARNING, logger="feed"):
            newer = h.manager.receive(health())

        assert len(h.manager.delayed) == 1
        assert h.scheduler.pending() == 1
        assert "already delayed" in caplog.text

        h.scheduler.advance_minutes(7)
        assert h.titles() == []
        h.scheduler.advance_minutes(3)
        assert h.feed_ids() == [newer.id]

    def test_late_restore_in_replay_mode_is_published(self, make_harness):
        h = make_harness()
        h.manager.install_delay_timeouts = False

        h.manager.receive(health())
        assert h.scheduler.pending() == 0
        h.scheduler.advance_minutes(30)
        h.manager.receive(restored())

        assert h.titles() == ["Health Restored"]
        assert h.manager.delayed == {}

    def test_replaced_health_is_purged_alongside_the_pair(self, make_harness):
        h = make_harness(discard_resolved_health_events=True)

        h.manager.receive(ping())
        h.manager.receive(health())
        h.scheduler.advance_minutes(4)
        h.manager.receive(health())
        h.scheduler.advance_minutes(4)
        h.manager.receive(health())
        h.scheduler.advance_minutes(1)
        h.manager.receive(restored())

        assert [e.event.event_type.value for e in h.history.records] == ["Test"]
        assert h.titles() == ["Test"]

    def test_expired_pending_health_is_not_taken_over(self, make_harness):
        h = make_harness(discard_resolved_health_events=True)
        h.manager.install_delay_timeouts = False

        first = h.manager.receive(health())
        h.scheduler.advance_minutes(30)
        second = h.manager.receive(health())

        assert h.manager.delayed[health_id(second)].replaced == []

        h.scheduler.advance_minutes(2)
        h.manager.receive(restored())

        assert [e.id for e in h.history.records] == [first.id]

    def test_clear_cancels_pending_timers(self, make_harness):
        h = make_harness()
        h.manager.receive(health())
        h.manager.receive(health(message="other"))

        h.manager.clear()
        h.scheduler.advance_minutes(60)

        assert h.manager.delayed == {}
        assert h.scheduler.pending() == 0
        assert h.titles() == []


class TestIngestionBoundary:
    def test_publish_failure_is_logged_not_raised(self, make_harness, monkeypatch, caplog):
        h = make_harness()

        def broken(event):
            raise RuntimeError("template exploded")

        monkeypatch.setattr(h.feed, "publish", broken)
        with caplog.at_level(logging.ERROR, logger="feed"):
            event = h.manager.receive(ping())

        assert event is not None
        assert len(h.history) == 1
        assert "Error sending event to feed" in caplog.text
        rows = json.loads(open(h.settings.history_file, encoding="utf-8").read())
        assert rows[0]["id"] == event.id

    def test_series_lookup_requested_for_series_events(self, make_harness):
        requested = []
        h = make_harness(series_hook=requested.append)

        h.manager.receive(download(series_id=42))
        h.manager.receive(ping())

        assert requested == [{42}]
        assert h.titles() == ["Downloaded Andor S1 E3 - Reckoning - upgrade"]
