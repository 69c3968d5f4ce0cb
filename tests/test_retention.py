"""Tests for the retention policy and sweep."""

import json
import os
import time
from datetime import datetime, timedelta, timezone

from terminal_bridge.retention import RetentionDecision, RetentionPolicy, sweep
from terminal_bridge.session import SessionState


DAY = timedelta(days=1)
HOUR = timedelta(hours=1)


def age_log(paths, session_id, age: timedelta, content="output\n"):
    path = paths.session_log(session_id)
    path.write_text(content)
    mtime = time.time() - age.total_seconds()
    os.utime(path, (mtime, mtime))
    return path


def write_active(paths, entries):
    paths.active_sessions.write_text(json.dumps(entries))


class TestRetentionPolicy:
    """Tests for the pure retention decisions."""

    def test_archive_when_keeping(self):
        assert RetentionPolicy(keep_days=1).archive_on_completion
        assert not RetentionPolicy(keep_days=0).archive_on_completion

    def test_completed_within_window_kept(self):
        policy = RetentionPolicy(keep_days=1)
        assert policy.decide(HOUR, SessionState.COMPLETED) == RetentionDecision.KEEP

    def test_completed_past_window_deleted(self):
        policy = RetentionPolicy(keep_days=1)
        assert policy.decide(DAY + HOUR, SessionState.FAILED) == RetentionDecision.DELETE

    def test_zero_keep_deletes_immediately(self):
        policy = RetentionPolicy(keep_days=0)
        assert policy.decide(timedelta(0), SessionState.COMPLETED) == RetentionDecision.DELETE

    def test_running_kept_until_threshold(self):
        policy = RetentionPolicy(keep_days=1, orphan_after=timedelta(hours=24))
        assert policy.decide(23 * HOUR, SessionState.RUNNING) == RetentionDecision.KEEP
        assert policy.decide(25 * HOUR, SessionState.RUNNING) == RetentionDecision.ORPHAN

    def test_threshold_never_below_keep_window(self):
        policy = RetentionPolicy(keep_days=7, orphan_after=timedelta(hours=24))
        assert policy.orphan_threshold == timedelta(days=7)
        assert policy.decide(3 * DAY, SessionState.RUNNING) == RetentionDecision.KEEP

    def test_zero_keep_does_not_orphan_fresh_sessions(self):
        policy = RetentionPolicy(keep_days=0)
        assert policy.decide(HOUR, SessionState.RUNNING) == RetentionDecision.KEEP

    def test_orphaned_follows_keep_window(self):
        policy = RetentionPolicy(keep_days=1)
        assert policy.decide(HOUR, SessionState.ORPHANED) == RetentionDecision.KEEP
        assert policy.decide(2 * DAY, SessionState.ORPHANED) == RetentionDecision.DELETE

    def test_unknown_age(self):
        policy = RetentionPolicy(keep_days=1)
        assert policy.decide(None, SessionState.RUNNING) == RetentionDecision.ORPHAN
        assert policy.decide(None, SessionState.COMPLETED) == RetentionDecision.KEEP

    def test_from_config(self, config):
        config.keep_days = 3
        config.orphan_after_hours = 6
        policy = RetentionPolicy.from_config(config)
        assert policy.keep_for == timedelta(days=3)
        assert policy.orphan_after == timedelta(hours=6)


class TestSweep:
    """Tests for the sweep run before every command."""

    def test_deletes_expired_keeps_recent(self, registry, store, paths):
        age_log(paths, "old", 2 * DAY)
        age_log(paths, "fresh", HOUR)

        result = sweep(RetentionPolicy(keep_days=1), registry, store)

        assert result.deleted == ["old"]
        assert not paths.session_log("old").exists()
        assert paths.session_log("fresh").exists()

    def test_active_sessions_never_deleted(self, registry, store, paths):
        age_log(paths, "running", 2 * DAY)
        registry.mark_active("running", "/proj")

        result = sweep(RetentionPolicy(keep_days=1), registry, store)

        assert result.deleted == []
        assert paths.session_log("running").exists()

    def test_stale_active_session_orphaned(self, registry, store, paths):
        age_log(paths, "stale", 3 * DAY)
        started = (datetime.now(timezone.utc) - 2 * DAY).isoformat()
        write_active(paths, {"stale": {"projectDir": "/proj", "startTime": started}})

        result = sweep(RetentionPolicy(keep_days=1), registry, store)

        assert result.orphaned == ["stale"]
        assert registry.active_sessions() == {}
        # Footer appended just now, so the log itself waits for a later sweep
        assert "Session orphaned" in paths.session_log("stale").read_text()

    def test_orphan_with_zero_keep_deletes_log(self, registry, store, paths):
        age_log(paths, "stale", 3 * DAY)
        started = (datetime.now(timezone.utc) - 2 * DAY).isoformat()
        write_active(paths, {"stale": {"projectDir": "/proj", "startTime": started}})

        result = sweep(RetentionPolicy(keep_days=0), registry, store)

        assert result.orphaned == ["stale"]
        assert not paths.session_log("stale").exists()

    def test_unparsable_start_time_orphaned(self, registry, store, paths):
        write_active(paths, {"weird": {"projectDir": "/proj", "startTime": "yesterday-ish"}})

        result = sweep(RetentionPolicy(keep_days=1), registry, store)

        assert result.orphaned == ["weird"]

    def test_zero_keep_removes_all_finished_logs(self, registry, store, paths):
        age_log(paths, "done", timedelta(seconds=5))
        age_log(paths, "running", timedelta(seconds=5))
        registry.mark_active("running", "/proj")

        sweep(RetentionPolicy(keep_days=0), registry, store)

        assert not paths.session_log("done").exists()
        assert paths.session_log("running").exists()

    def test_session_started_during_sweep_survives(self, registry, store, paths, monkeypatch):
        age_log(paths, "latecomer", timedelta(seconds=1))
        reads = iter([{}])
        real_active = registry.active_sessions

        def active_sessions(project_dir=None):
            # The first read predates the latecomer's registration
            snapshot = next(reads, None)
            if snapshot is not None:
                return snapshot
            registry.mark_active("latecomer", "/proj")
            return real_active(project_dir)

        monkeypatch.setattr(registry, "active_sessions", active_sessions)

        result = sweep(RetentionPolicy(keep_days=0), registry, store)

        assert result.deleted == []
        assert paths.session_log("latecomer").exists()

    def test_ledger_untouched(self, registry, store, paths):
        registry.register("old", "make", [], "/proj")
        age_log(paths, "old", 5 * DAY)

        sweep(RetentionPolicy(keep_days=1), registry, store)

        assert registry.all_session_ids() == ["old"]

    def test_other_files_untouched(self, registry, store, paths):
        paths.legacy_log.write_text("legacy\n")
        old = time.time() - 10 * DAY.total_seconds()
        os.utime(paths.legacy_log, (old, old))

        sweep(RetentionPolicy(keep_days=0), registry, store)

        assert paths.legacy_log.exists()

    def test_empty_root(self, registry, store):
        result = sweep(RetentionPolicy(keep_days=1), registry, store)
        assert result.orphaned == [] and result.deleted == []
