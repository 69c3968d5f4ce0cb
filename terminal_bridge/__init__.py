"""
AI Live Terminal Bridge - Recorded command sessions for AI agents

Wraps any command, streams its output to the terminal untouched and keeps
a sanitized, ANSI-free copy per session so an agent can read recent
output and get a triaged error report on demand.
"""

__version__ = "1.0.0"

from .config import BridgeConfig
from .redactor import Redactor, RedactionRule, redact, sanitize, strip_ansi
from .session import Session, SessionState, SessionRegistry, LedgerEntry, generate_id
from .storage import LogStore, SessionLog, StoragePaths
from .retention import RetentionPolicy, RetentionDecision, sweep
from .wrapper import CommandRunner, CommandResult, CommandLaunchError
from .triage import ErrorTriage, IssueCategory, TriageReport, TriageStatus
from .reports import ReadResult, ReadStatus, view_logs, crash_context, auto_fix_errors

__all__ = [
    "BridgeConfig",
    "Redactor",
    "RedactionRule",
    "redact",
    "sanitize",
    "strip_ansi",
    "Session",
    "SessionState",
    "SessionRegistry",
    "LedgerEntry",
    "generate_id",
    "LogStore",
    "SessionLog",
    "StoragePaths",
    "RetentionPolicy",
    "RetentionDecision",
    "sweep",
    "CommandRunner",
    "CommandResult",
    "CommandLaunchError",
    "ErrorTriage",
    "IssueCategory",
    "TriageReport",
    "TriageStatus",
    "ReadResult",
    "ReadStatus",
    "view_logs",
    "crash_context",
    "auto_fix_errors",
]
