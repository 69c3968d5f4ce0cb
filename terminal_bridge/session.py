"""
Session Registry - Session identity, the master ledger and the active set
"""

import json
import logging
import os
import re
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from .redactor import Redactor
from .storage import StoragePaths, timestamp

try:
    import fcntl
except ImportError:  # Windows: active-set updates run unlocked
    fcntl = None


logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 5.0
LOCK_RETRY_DELAY = 0.05

_LEDGER_LINE_RE = re.compile(
    r'^\[(?P<timestamp>[^\]]*)\] \[(?P<session_id>[^\]\s]+)\] \[(?P<cwd>.*?)\] ?(?P<command>.*)$'
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse the ISO-8601 timestamps written by this package (trailing Z allowed)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id() -> str:
    """
    Generate a short, readable session ID.

    Format: <UTC YYYYMMDDHHMMSS>-<8 hex chars>, e.g. 20250122143005-a3f2c91b.
    The timestamp prefix makes IDs sort in creation order; the suffix
    carries 32 random bits to separate sessions started in the same second.
    """
    stamp = _utcnow().strftime("%Y%m%d%H%M%S")
    return f"{stamp}-{secrets.token_hex(4)}"


class SessionState(Enum):
    """Lifecycle of a wrapped command."""
    RUNNING = "running"
    COMPLETED = "completed"     # exit code 0
    FAILED = "failed"           # nonzero exit or could not start
    ORPHANED = "orphaned"       # owner died before recording completion


@dataclass
class Session:
    """One wrapped command execution."""
    id: str
    command: str
    args: List[str] = field(default_factory=list)
    cwd: str = "."
    started_at: datetime = field(default_factory=_utcnow)
    state: SessionState = SessionState.RUNNING
    exit_code: Optional[int] = None

    @property
    def full_command(self) -> str:
        return " ".join([self.command] + list(self.args))

    def finish(self, exit_code: Optional[int]):
        """
        Record completion. A missing exit code means the process never ran.

        Raises:
            ValueError: if the session already left the running state
        """
        if self.state != SessionState.RUNNING:
            raise ValueError(f"Session {self.id} already {self.state.value}")
        self.exit_code = exit_code
        self.state = SessionState.COMPLETED if exit_code == 0 else SessionState.FAILED


@dataclass
class LedgerEntry:
    """One immutable line of the master index."""
    timestamp: str
    session_id: str
    cwd: str
    command: str

    @classmethod
    def parse(cls, line: str) -> Optional["LedgerEntry"]:
        match = _LEDGER_LINE_RE.match(line.rstrip('\r\n'))
        if not match:
            return None
        return cls(**match.groupdict())

    def to_line(self) -> str:
        return f"[{self.timestamp}] [{self.session_id}] [{self.cwd}] {self.command}\n"


@dataclass
class ActiveSession:
    """A session that has started and not yet been marked completed."""
    session_id: str
    project_dir: str
    start_time: str

    @property
    def started_at(self) -> Optional[datetime]:
        return parse_timestamp(self.start_time)

    def to_dict(self) -> dict:
        return {"projectDir": self.project_dir, "startTime": self.start_time}


class SessionRegistry:
    """
    Bookkeeping shared by every wrapper process on the machine.

    The ledger (master-index.log) only ever grows, via plain appends. The
    active set (active-sessions.json) is rewritten in full under an
    exclusive file lock so concurrent wrappers do not lose each other's
    updates. Both files are best-effort: unreadable content is logged and
    treated as empty, and write failures never reach the caller.
    """

    def __init__(self, paths: StoragePaths, redactor: Optional[Redactor] = None):
        self.paths = paths
        self.redactor = redactor or Redactor()

    # -- identity ---------------------------------------------------------

    def new_session_id(self) -> str:
        """generate_id(), retried while the ID already has a log file."""
        for _ in range(16):
            session_id = generate_id()
            if not self.paths.session_log(session_id).exists():
                return session_id
        raise RuntimeError("Could not allocate a unique session id")

    # -- ledger -----------------------------------------------------------

    def register(self, session_id: str, command: str, args: List[str], cwd: str) -> LedgerEntry:
        """Append one line for this session to the master index, secrets masked."""
        full_command = self.redactor.sanitize(" ".join([command] + list(args)))
        entry = LedgerEntry(
            timestamp=timestamp(),
            session_id=session_id,
            cwd=cwd,
            command=full_command.replace('\r', ' ').replace('\n', ' '),
        )
        try:
            self.paths.ensure()
            with open(self.paths.master_index, 'a', encoding='utf-8') as fh:
                fh.write(entry.to_line())
        except OSError as e:
            logger.warning("Could not append to %s: %s", self.paths.master_index, e)
        return entry

    def ledger_entries(self) -> List[LedgerEntry]:
        """All parsable ledger entries in chronological order."""
        try:
            content = self.paths.master_index.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Could not read %s: %s", self.paths.master_index, e)
            return []

        entries = []
        for line in content.splitlines():
            if not line.strip():
                continue
            entry = LedgerEntry.parse(line)
            if entry is None:
                logger.debug("Skipping malformed ledger line: %r", line)
                continue
            entries.append(entry)
        return entries

    def all_session_ids(self) -> List[str]:
        return [entry.session_id for entry in self.ledger_entries()]

    def list_recent(self, n: int) -> List[str]:
        """The ``n`` most recently registered session IDs, newest first."""
        if n <= 0:
            return []
        return self.all_session_ids()[-n:][::-1]

    # -- active set -------------------------------------------------------

    @contextmanager
    def _locked(self):
        """Hold an exclusive lock on the active-set sidecar file, best-effort."""
        lock_fh = None
        locked = False
        try:
            self.paths.ensure()
            lock_fh = open(self.paths.active_lock, 'a')
        except OSError as e:
            logger.debug("Could not open lock file %s: %s", self.paths.active_lock, e)

        if lock_fh is not None and fcntl is not None:
            deadline = time.monotonic() + LOCK_TIMEOUT_SECONDS
            while True:
                try:
                    fcntl.flock(lock_fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    locked = True
                    break
                except OSError:
                    if time.monotonic() >= deadline:
                        logger.warning("Timed out waiting for %s; updating unlocked",
                                       self.paths.active_lock)
                        break
                    time.sleep(LOCK_RETRY_DELAY)

        try:
            yield
        finally:
            if lock_fh is not None:
                if locked:
                    fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)
                lock_fh.close()

    def _read_active(self) -> Dict[str, ActiveSession]:
        path = self.paths.active_sessions
        try:
            raw = json.loads(path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Treating unreadable %s as empty: %s", path, e)
            return {}

        if not isinstance(raw, dict):
            logger.warning("Treating malformed %s as empty", path)
            return {}

        active = {}
        for session_id, info in raw.items():
            if not isinstance(info, dict):
                continue
            active[session_id] = ActiveSession(
                session_id=session_id,
                project_dir=str(info.get("projectDir", "")),
                start_time=str(info.get("startTime", "")),
            )
        return active

    def _write_active(self, active: Dict[str, ActiveSession]):
        path = self.paths.active_sessions
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        data = {sid: entry.to_dict() for sid, entry in active.items()}
        tmp.write_text(json.dumps(data, indent=2), encoding='utf-8')
        os.replace(tmp, path)

    def mark_active(self, session_id: str, project_dir: str):
        try:
            with self._locked():
                active = self._read_active()
                active[session_id] = ActiveSession(session_id, project_dir, timestamp())
                self._write_active(active)
        except OSError as e:
            logger.warning("Could not mark session %s active: %s", session_id, e)

    def mark_completed(self, session_id: str, archive: bool = True):
        """
        Drop a session from the active set.

        With ``archive`` false the session's log is deleted right away;
        otherwise it stays for the retention sweep to reap.
        """
        try:
            with self._locked():
                active = self._read_active()
                if active.pop(session_id, None) is not None:
                    self._write_active(active)
        except OSError as e:
            logger.warning("Could not mark session %s completed: %s", session_id, e)

        if not archive:
            try:
                self.paths.session_log(session_id).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not delete log for session %s: %s", session_id, e)

    def active_sessions(self, project_dir: Optional[str] = None) -> Dict[str, ActiveSession]:
        """Running sessions, optionally limited to one project directory."""
        active = self._read_active()
        if project_dir is None:
            return active
        return {sid: entry for sid, entry in active.items() if entry.project_dir == project_dir}
