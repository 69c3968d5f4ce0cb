"""
Redactor - Strips terminal control sequences and masks secrets before persisting

Only the copy written to disk goes through here. What the user sees in the
terminal is never touched.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Union


PLACEHOLDER = "[REDACTED]"

# CSI (including private ?-prefixed modes), OSC terminated by BEL or ST,
# charset selection, and two-character ESC sequences.
ANSI_RE = re.compile(
    r'\x1b\[[\x20-\x3f]*[\x40-\x7e]'
    r'|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)'
    r'|\x1b[()][AB012]'
    r'|\x1b[@-Z\\-_a-z=>78]'
)

PEM_BEGIN_RE = re.compile(r'-----BEGIN (?:[A-Z0-9]+ )*PRIVATE KEY-----')
PEM_END_RE = re.compile(r'-----END (?:[A-Z0-9]+ )*PRIVATE KEY-----')

# Values already masked are left alone so redaction stays idempotent.
_NOT_MASKED = r'(?!["\']?\[REDACTED\])'


def strip_ansi(text: str) -> str:
    """Remove ANSI color/cursor/control sequences."""
    return ANSI_RE.sub('', text)


@dataclass(frozen=True)
class RedactionRule:
    """One secret shape and what to replace it with."""
    name: str
    pattern: "re.Pattern"
    replacement: Union[str, Callable[["re.Match"], str]]

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _mask_assignment(match: "re.Match") -> str:
    """Keep the key, separator and quotes of ``NAME=value``; mask the value."""
    value = match.group('value')
    quote = value[0] if value[:1] in ('"', "'") else ''
    return f"{match.group('lead')}{quote}{PLACEHOLDER}{quote}"


DEFAULT_RULES: List[RedactionRule] = [
    RedactionRule(
        'private_key_block',
        re.compile(
            r'-----BEGIN (?:[A-Z0-9]+ )*PRIVATE KEY-----'
            r'[\s\S]*?'
            r'-----END (?:[A-Z0-9]+ )*PRIVATE KEY-----'
        ),
        PLACEHOLDER,
    ),
    RedactionRule(
        'aws_access_key_id',
        re.compile(r'\b(?:AKIA|ASIA|AGPA|AIDA|AROA|ANPA|ANVA|AIPA)[0-9A-Z]{16}\b'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'github_token',
        re.compile(r'\b(?:gh[pousr]_[A-Za-z0-9]{36,255}|github_pat_[A-Za-z0-9_]{22,255})\b'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'gitlab_token',
        re.compile(r'\bglpat-[A-Za-z0-9_\-]{20,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'slack_token',
        re.compile(r'\bxox[abposr]-[A-Za-z0-9\-]{10,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'stripe_key',
        re.compile(r'\b(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{10,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'anthropic_key',
        re.compile(r'\bsk-ant-[A-Za-z0-9_\-]{20,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'openai_key',
        re.compile(r'\bsk-(?!ant-)(?:proj-|svcacct-)?[A-Za-z0-9_\-]{20,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'google_api_key',
        re.compile(r'\bAIza[0-9A-Za-z_\-]{35}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'jwt',
        re.compile(r'\beyJ[A-Za-z0-9_\-]{5,}\.eyJ[A-Za-z0-9_\-]{5,}\.[A-Za-z0-9_\-]{5,}'),
        PLACEHOLDER,
    ),
    RedactionRule(
        'authorization_header',
        re.compile(
            r'(?P<lead>\bAuthorization\s*[:=]\s*(?:(?:Bearer|Basic|Token|Bot)\s+)?)'
            + _NOT_MASKED +
            r'(?!(?:Bearer|Basic|Token|Bot)\b)'
            r'(?P<value>[^\s\'"]+)',
            re.IGNORECASE,
        ),
        _mask_assignment,
    ),
    RedactionRule(
        'bearer_token',
        re.compile(r'(?P<lead>\bBearer\s+)' + _NOT_MASKED + r'(?P<value>[A-Za-z0-9._~+/=\-]{8,})'),
        _mask_assignment,
    ),
    RedactionRule(
        'database_url_password',
        re.compile(
            r'(?P<lead>\b(?:postgres(?:ql)?|mysql|mariadb|mongodb(?:\+srv)?|rediss?|amqps?|mssql|sqlserver)'
            r'://[^:/\s@]+:)'
            r'(?P<value>[^@\s]+)(?=@)',
            re.IGNORECASE,
        ),
        _mask_assignment,
    ),
    RedactionRule(
        'secret_assignment',
        re.compile(
            r'(?P<lead>\b[A-Za-z0-9_.\-]*'
            r'(?:api[_\-]?key|secret|token|passw(?:or)?d|pwd|access[_\-]?key|private[_\-]?key|credentials?)'
            r'[A-Za-z0-9_\-]*["\']?\s*[:=]\s*)'
            + _NOT_MASKED +
            r'(?P<value>"[^"\n]*"|\'[^\'\n]*\'|[^\s\'"]+)',
            re.IGNORECASE,
        ),
        _mask_assignment,
    ),
]


class Redactor:
    """
    Applies an ordered table of redaction rules to text.

    Rules are plain data: add a RedactionRule to extend coverage. Each rule
    recognizes a distinct secret shape and no replacement can be matched
    again, so the result does not depend on rule order and applying the
    redactor twice gives the same text as applying it once.
    """

    def __init__(self, rules: Optional[List[RedactionRule]] = None):
        self.rules = list(DEFAULT_RULES if rules is None else rules)

    def redact(self, text: str) -> str:
        for rule in self.rules:
            text = rule.apply(text)
        return text

    def sanitize(self, text: str) -> str:
        """ANSI-strip first so secret patterns see clean text, then redact."""
        return self.redact(strip_ansi(text))


_default = Redactor()


def redact(text: str) -> str:
    """Mask secrets in ``text`` with the default rule table."""
    return _default.redact(text)


def sanitize(text: str) -> str:
    """Strip ANSI sequences and mask secrets with the default rule table."""
    return _default.sanitize(text)
