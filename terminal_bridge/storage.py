"""
Log Store - Per-session log files and multi-session retrieval

Directory layout under the storage root:

    session-<id>.log       one file per wrapped command
    master-index.log       append-only ledger of every session
    active-sessions.json   sessions that are still running
    session.log            legacy single-file log (read-only fallback)
"""

import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, TextIO


logger = logging.getLogger(__name__)

SESSION_PREFIX = "session-"
SESSION_SUFFIX = ".log"
SEPARATOR = "=" * 80

_SESSION_FILE_RE = re.compile(r'^session-(?P<id>.+)\.log$')


def timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, as used in log lines."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def file_separator(name: str) -> str:
    """Marker line inserted between sessions when logs are merged."""
    return f"━━━ {name} ━━━"


class StoragePaths:
    """Resolves every path the bridge reads or writes."""

    def __init__(self, root):
        self.root = Path(root).expanduser()

    @property
    def master_index(self) -> Path:
        return self.root / "master-index.log"

    @property
    def active_sessions(self) -> Path:
        return self.root / "active-sessions.json"

    @property
    def active_lock(self) -> Path:
        return self.root / "active-sessions.lock"

    @property
    def legacy_log(self) -> Path:
        return self.root / "session.log"

    def session_log(self, session_id: str) -> Path:
        return self.root / f"{SESSION_PREFIX}{session_id}{SESSION_SUFFIX}"

    @staticmethod
    def session_id_from_path(path) -> Optional[str]:
        match = _SESSION_FILE_RE.match(Path(path).name)
        return match.group('id') if match else None

    def ensure(self):
        """Create the storage root if needed."""
        self.root.mkdir(parents=True, exist_ok=True)


class LogStore:
    """
    Reads and deletes session log files.

    Writing is done by SessionLog, which is owned by exactly one running
    command; everything here treats logs as read-only.
    """

    def __init__(self, paths: StoragePaths):
        self.paths = paths

    def ensure(self):
        self.paths.ensure()

    def list_session_files(self, limit: Optional[int] = None) -> List[Path]:
        """
        Session log files, most recently modified first.

        Files sharing an mtime are ordered by name, newest id first; ids are
        timestamp-prefixed so this keeps creation order.
        """
        if not self.paths.root.is_dir():
            return []

        entries = []
        for path in self.paths.root.glob(f"{SESSION_PREFIX}*{SESSION_SUFFIX}"):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                # Deleted by a concurrent sweep between glob and stat
                continue
            entries.append((mtime, path.name, path))

        entries.sort(key=lambda e: (e[0], e[1]), reverse=True)
        files = [e[2] for e in entries]
        return files[:limit] if limit is not None else files

    def has_logs(self) -> bool:
        """True when any session log or the legacy log exists."""
        return bool(self.list_session_files(limit=1)) or self.paths.legacy_log.exists()

    def read_recent(self, total_lines: int, max_files: int = 10) -> str:
        """
        Read up to ``total_lines`` lines from the most recent session logs.

        Sessions are visited newest first and each contributes a separator
        line followed by its non-blank lines. When the budget runs out the
        oldest lines of the last visited file are dropped, so the result
        always ends each block with that session's latest output.

        Falls back to the tail of the legacy ``session.log`` when there are
        no per-session files.
        """
        if total_lines <= 0 or max_files <= 0:
            return ""

        session_files = self.list_session_files(max_files)

        if not session_files:
            return self._read_legacy(total_lines)

        blocks = []
        remaining = total_lines
        for path in session_files:
            if remaining <= 0:
                break
            content = self._read_text(path)
            if content is None:
                continue
            lines = [line for line in content.split('\n') if line.strip()]
            body_budget = remaining - 1
            if body_budget <= 0:
                break
            block = [file_separator(path.name)] + lines[-body_budget:]
            blocks.append(block)
            remaining -= len(block)

        return '\n'.join(line for block in blocks for line in block)

    def _read_legacy(self, total_lines: int) -> str:
        content = self._read_text(self.paths.legacy_log)
        if content is None:
            return ""
        lines = content.split('\n')
        return '\n'.join(lines[-total_lines:])

    @staticmethod
    def _read_text(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
            return None

    def delete_session_log(self, session_id: str) -> bool:
        """Remove a session's log. Returns True if a file was deleted."""
        path = self.paths.session_log(session_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
            return False


class SessionLog:
    """
    Append-only writer for one session's log file.

    Writes are best-effort: the first I/O failure prints a single warning
    and every later write for this session is dropped, so a broken disk
    never holds up the command being recorded.
    """

    def __init__(self, path: Path, warn_stream: Optional[TextIO] = None):
        self.path = Path(path)
        self.warn_stream = warn_stream
        self.degraded = False
        self._fh = None
        try:
            self._fh = open(self.path, 'w', encoding='utf-8')
        except OSError as e:
            self.fail(e)

    def fail(self, error: Exception):
        """Enter degraded mode: warn once, then drop every later write."""
        if not self.degraded:
            self.degraded = True
            logger.debug("Log write error on %s: %s", self.path, error)
            stream = self.warn_stream if self.warn_stream is not None else sys.stderr
            try:
                print(f"\n⚠️  Log write error: {error}", file=stream, flush=True)
            except (OSError, ValueError):
                pass
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None

    def write(self, text: str):
        if self.degraded or self._fh is None:
            return
        try:
            self._fh.write(text)
            self._fh.flush()
        except (OSError, ValueError) as e:
            self.fail(e)

    def write_header(self, session_id: str, project_dir: str, command: str):
        ts = timestamp()
        self.write(
            f"{SEPARATOR}\n"
            f"[{ts}] Session: {session_id}\n"
            f"[{ts}] Project: {project_dir}\n"
            f"[{ts}] Command: {command}\n"
            f"{SEPARATOR}\n"
        )

    def write_footer(self, exit_code: int):
        self.write(f"\n[{timestamp()}] Process exited with code: {exit_code}\n")

    def write_error_footer(self, message: str):
        self.write(f"\n[{timestamp()}] Process error: {message}\n")

    def close(self):
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                self.fail(e)
            self._fh = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def append_orphan_footer(path: Path):
    """Mark a log whose owning process disappeared without finishing it."""
    if not path.exists():
        return
    try:
        with open(path, 'a', encoding='utf-8') as fh:
            fh.write(f"\n[{timestamp()}] Session orphaned: no completion recorded\n")
    except OSError as e:
        logger.debug("Could not append orphan footer to %s: %s", path, e)
