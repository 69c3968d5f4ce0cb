"""
Retention Policy - Decides which session logs survive and sweeps the rest

There is no background daemon: every wrapped command runs one sweep before
it starts, so cleanup lags until the next command is run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from .session import SessionRegistry, SessionState
from .storage import LogStore, append_orphan_footer


logger = logging.getLogger(__name__)


class RetentionDecision(Enum):
    KEEP = "keep"
    DELETE = "delete"
    ORPHAN = "orphan"


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Pure retention rules derived from the configured keep duration.

    keep_days == 0 means a log is deleted as soon as its command completes.
    A session still marked running after ``orphan_threshold`` is assumed
    dead and force-completed. The threshold never drops below the keep
    window, so a long keep setting cannot orphan healthy long commands
    earlier than a short one would.
    """
    keep_days: float = 1.0
    orphan_after: timedelta = timedelta(hours=24)

    @classmethod
    def from_config(cls, config) -> "RetentionPolicy":
        return cls(
            keep_days=config.keep_days,
            orphan_after=timedelta(hours=config.orphan_after_hours),
        )

    @property
    def keep_for(self) -> timedelta:
        return timedelta(days=self.keep_days)

    @property
    def archive_on_completion(self) -> bool:
        """Whether a finished session's log is left in place for later sweeps."""
        return self.keep_days > 0

    @property
    def orphan_threshold(self) -> timedelta:
        return max(self.orphan_after, self.keep_for)

    def decide(self, age: Optional[timedelta], state: SessionState) -> RetentionDecision:
        """
        Decide the fate of one session's log.

        ``age`` is None when it cannot be determined; unknown-age running
        sessions are treated as orphaned, unknown-age finished logs are kept.
        Orphaned sessions are finished and follow the keep window.
        """
        if state == SessionState.RUNNING:
            if age is None or age > self.orphan_threshold:
                return RetentionDecision.ORPHAN
            return RetentionDecision.KEEP

        if self.keep_days == 0:
            return RetentionDecision.DELETE
        if age is not None and age > self.keep_for:
            return RetentionDecision.DELETE
        return RetentionDecision.KEEP


@dataclass
class SweepResult:
    orphaned: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


def sweep(
    policy: RetentionPolicy,
    registry: SessionRegistry,
    store: LogStore,
    now: Optional[datetime] = None,
) -> SweepResult:
    """
    Run one retention pass over the storage root.

    1. Running sessions older than the orphan threshold get an orphan
       footer and are force-completed.
    2. Logs of sessions that are no longer running and are older than the
       keep window are deleted. The ledger is never touched.

    Failures are logged and skipped; a sweep never raises for I/O problems.
    """
    now = now or datetime.now(timezone.utc)
    result = SweepResult()

    active = registry.active_sessions()
    for session_id, entry in active.items():
        started = entry.started_at
        age = now - started if started else None
        if policy.decide(age, SessionState.RUNNING) == RetentionDecision.ORPHAN:
            logger.info("Session %s orphaned (started %s)", session_id, entry.start_time or "unknown")
            append_orphan_footer(store.paths.session_log(session_id))
            registry.mark_completed(session_id, archive=policy.archive_on_completion)
            result.orphaned.append(session_id)

    still_running = set(active) - set(result.orphaned)

    for path in store.list_session_files():
        session_id = store.paths.session_id_from_path(path)
        if session_id is None or session_id in still_running:
            continue
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            continue
        state = SessionState.ORPHANED if session_id in result.orphaned else SessionState.COMPLETED
        if policy.decide(now - mtime, state) == RetentionDecision.DELETE:
            # A command that started after the active set was read owns a
            # fresh log that only an immediate-delete policy would reap.
            if policy.keep_days == 0 and session_id in registry.active_sessions():
                continue
            if store.delete_session_log(session_id):
                logger.debug("Deleted expired log %s", path.name)
                result.deleted.append(session_id)

    return result
