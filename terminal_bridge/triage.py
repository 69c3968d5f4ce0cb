"""
Error Triage - Finds, classifies and summarizes errors in recorded output
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Pattern, Tuple


class IssueCategory(Enum):
    """Label assigned to an error line."""
    ERROR = "Error"
    EXCEPTION = "Exception"
    TYPE_ERROR = "TypeError"
    SYNTAX_ERROR = "SyntaxError"
    FAILED = "Failed"
    EXIT_CODE = "Exit Code Error"
    STACK_TRACE = "Stack Trace"
    UNKNOWN = "Unknown Error"


class TriageStatus(Enum):
    NO_LOGS = "no_logs"     # nothing was recorded, or it was blank
    CLEAN = "clean"         # content read, no error signals
    ERRORS = "errors"


STACK_FRAME_PATTERNS = [
    r'^\s+at\s+',                       # JS / JVM frames
    r'^\s+File ".+", line \d+',         # Python frames
]

# A line is an error signal if any of these match
SIGNAL_PATTERNS = [
    r'(?i)\berror:',
    r'\bError\b',
    r'(?i)\bexception:',
    r'\bException\b',
    r'(?i)\bfailed\b',
    r'\bTypeError\b',
    r'\bSyntaxError\b',
    r'\bReferenceError\b',
    r'\b(?:Name|Value|Key|Index|Attribute|Import|ModuleNotFound|Runtime|Assertion|'
    r'FileNotFound|Permission|Range|ZeroDivision|Recursion)Error\b',
    r'^Traceback \(most recent call last\)',
    r'\bpanic:',
    r'Process exited with code: (?!0\b)-?\d+',
] + STACK_FRAME_PATTERNS

# Priority order: the first rule that matches decides the category
CATEGORY_RULES: List[Tuple[str, IssueCategory]] = [
    (r'(?i)\berror:', IssueCategory.ERROR),
    (r'\bException\b', IssueCategory.EXCEPTION),
    (r'\bTypeError\b', IssueCategory.TYPE_ERROR),
    (r'\bSyntaxError\b', IssueCategory.SYNTAX_ERROR),
    (r'(?i)\bfailed\b', IssueCategory.FAILED),
    (r'Process exited with code', IssueCategory.EXIT_CODE),
] + [(p, IssueCategory.STACK_TRACE) for p in STACK_FRAME_PATTERNS]

SUGGESTED_STEPS = [
    "Analyze the error messages above",
    "Check the full context for root cause",
    "Provide specific fixes for each issue",
    "Ask for more context with `ai crash` if needed",
]

NO_LOGS_MESSAGE = "No log file found. Run a command with `ai` first."
CLEAN_MESSAGE = "✅ No errors detected in the recent logs.\n\nThe session log looks clean!"


@dataclass
class Issue:
    """One error line and where it was found."""
    line: str
    index: int
    category: IssueCategory


@dataclass
class TriageReport:
    """Outcome of analyzing a block of log text."""
    status: TriageStatus
    issues: List[Issue] = field(default_factory=list)
    total: int = 0
    context: List[str] = field(default_factory=list)
    lines_analyzed: Optional[int] = None
    max_issues: int = 10

    @property
    def shown(self) -> List[Issue]:
        return self.issues[:self.max_issues]

    @property
    def remaining(self) -> int:
        return max(0, len(self.issues) - self.max_issues)

    def render(self) -> str:
        """Markdown report suitable for handing to an agent."""
        if self.status == TriageStatus.NO_LOGS:
            return NO_LOGS_MESSAGE
        if self.status == TriageStatus.CLEAN:
            return CLEAN_MESSAGE

        scope = f"the last {self.lines_analyzed} lines" if self.lines_analyzed else "the recent logs"
        parts = [
            "# 🔴 Auto-Fix Analysis\n",
            f"Found {self.total} error indicator(s) in {scope}.\n",
            "## Detected Issues:\n",
        ]
        for number, issue in enumerate(self.shown, 1):
            parts.append(
                f"{number}. **{issue.category.value}**\n"
                f"   ```\n   {issue.line.strip()}\n   ```\n"
            )
        if self.remaining:
            parts.append(f"... and {self.remaining} more error(s)\n")

        parts.append("## Full Error Context:\n")
        parts.append("```\n" + "\n".join(self.context) + "\n```\n")

        parts.append("## Suggested Next Steps:\n")
        parts.append("\n".join(f"{n}. {step}" for n, step in enumerate(SUGGESTED_STEPS, 1)))
        return "\n".join(parts) + "\n"


class ErrorTriage:
    """
    Turns raw log text into an errors-only view and a prioritized report.

    Both the signal patterns and the category rules are plain data; the
    first matching category rule wins, so order the table from most to
    least preferred label.
    """

    def __init__(
        self,
        max_issues: int = 10,
        signal_patterns: Optional[List[str]] = None,
        category_rules: Optional[List[Tuple[str, IssueCategory]]] = None,
    ):
        self.max_issues = max_issues
        self._signals: List[Pattern] = [
            re.compile(p) for p in (signal_patterns if signal_patterns is not None else SIGNAL_PATTERNS)
        ]
        self._categories: List[Tuple[Pattern, IssueCategory]] = [
            (re.compile(p), category)
            for p, category in (category_rules if category_rules is not None else CATEGORY_RULES)
        ]

    def is_error_line(self, line: str) -> bool:
        return any(pattern.search(line) for pattern in self._signals)

    def filter_errors(self, text: str) -> List[str]:
        """Lines carrying an error signal, in their original order."""
        return [line for line in text.split('\n') if self.is_error_line(line)]

    def classify(self, line: str) -> IssueCategory:
        for pattern, category in self._categories:
            if pattern.search(line):
                return category
        return IssueCategory.UNKNOWN

    def detect(self, text: str) -> List[Issue]:
        """Every error line with its position and category."""
        return [
            Issue(line=line, index=index, category=self.classify(line))
            for index, line in enumerate(text.split('\n'))
            if self.is_error_line(line)
        ]

    @staticmethod
    def deduplicate(issues: List[Issue]) -> List[Issue]:
        """Collapse each run of consecutive stack frames into its first frame."""
        unique = []
        for issue in issues:
            if (issue.category == IssueCategory.STACK_TRACE and unique
                    and unique[-1].category == IssueCategory.STACK_TRACE):
                continue
            unique.append(issue)
        return unique

    def analyze(self, text: Optional[str], lines_analyzed: Optional[int] = None) -> TriageReport:
        """
        Build a report for ``text``.

        None or blank text gives a NO_LOGS report, which is kept distinct
        from CLEAN (text was read and nothing matched).
        """
        if text is None or not text.strip():
            return TriageReport(TriageStatus.NO_LOGS, max_issues=self.max_issues)

        issues = self.detect(text)
        if not issues:
            return TriageReport(
                TriageStatus.CLEAN,
                lines_analyzed=lines_analyzed,
                max_issues=self.max_issues,
            )

        return TriageReport(
            TriageStatus.ERRORS,
            issues=self.deduplicate(issues),
            total=len(issues),
            context=[issue.line for issue in issues],
            lines_analyzed=lines_analyzed,
            max_issues=self.max_issues,
        )
