"""
Reports - The read operations exposed to the CLI and to AI clients

    view_logs         last N lines across recent sessions
    crash_context     only the error-flagged lines
    auto_fix_errors   classified, deduplicated error report
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .storage import LogStore
from .triage import CLEAN_MESSAGE, NO_LOGS_MESSAGE, ErrorTriage, TriageStatus


EMPTY_LOG_MESSAGE = "Log file is empty."


class ReadStatus(Enum):
    NO_LOGS = "no_logs"
    OK = "ok"
    CLEAN = "clean"
    ERRORS = "errors"


@dataclass
class ReadResult:
    status: ReadStatus
    text: str

    @property
    def found_logs(self) -> bool:
        return self.status != ReadStatus.NO_LOGS


def _read(store: LogStore, lines: int, max_files: int) -> Optional[str]:
    """Recent content, or None when nothing has ever been recorded."""
    if not store.has_logs():
        return None
    return store.read_recent(lines, max_files)


def view_logs(store: LogStore, lines: int = 100, max_files: int = 10) -> ReadResult:
    content = _read(store, lines, max_files)
    if content is None:
        return ReadResult(ReadStatus.NO_LOGS, NO_LOGS_MESSAGE)
    if not content.strip():
        return ReadResult(ReadStatus.NO_LOGS, EMPTY_LOG_MESSAGE)
    return ReadResult(ReadStatus.OK, content)


def crash_context(
    store: LogStore,
    lines: int = 100,
    max_files: int = 10,
    triage: Optional[ErrorTriage] = None,
) -> ReadResult:
    """Error-flagged lines only, framed for an agent investigating a crash."""
    content = _read(store, lines, max_files)
    if content is None:
        return ReadResult(ReadStatus.NO_LOGS, NO_LOGS_MESSAGE)
    if not content.strip():
        return ReadResult(ReadStatus.NO_LOGS, EMPTY_LOG_MESSAGE)

    triage = triage or ErrorTriage()
    error_lines = triage.filter_errors(content)

    if not error_lines:
        return ReadResult(
            ReadStatus.CLEAN,
            "✅ No errors or crashes detected in the recent logs.\n\n"
            "The session log looks clean! To see all output, not just errors, "
            "use `ai logs` instead.",
        )

    body = "\n".join(error_lines)
    return ReadResult(
        ReadStatus.ERRORS,
        f"# Crash Context (Errors Only)\n\n"
        f"Found {len(error_lines)} error-related line(s):\n\n"
        f"```\n{body}\n```\n\n"
        f"For full logs including non-error output, use `ai logs`.",
    )


def auto_fix_errors(
    store: LogStore,
    lines: int = 200,
    max_files: int = 10,
    triage: Optional[ErrorTriage] = None,
) -> ReadResult:
    """Classify recent errors into a report with suggested next steps."""
    content = _read(store, lines, max_files)
    if content is None:
        return ReadResult(ReadStatus.NO_LOGS, NO_LOGS_MESSAGE)
    if not content.strip():
        return ReadResult(ReadStatus.NO_LOGS, EMPTY_LOG_MESSAGE)

    triage = triage or ErrorTriage()
    report = triage.analyze(content, lines_analyzed=lines)

    if report.status == TriageStatus.CLEAN:
        return ReadResult(ReadStatus.CLEAN, CLEAN_MESSAGE)
    return ReadResult(ReadStatus.ERRORS, report.render())
