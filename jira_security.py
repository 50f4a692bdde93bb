"""
Security utilities for Jira requests, exported files and logs.

Values that end up in a JQL query or a Jira REST path go through
sanitize_jql_value(); export downloads get their names from
sanitize_filename(); Jira-facing modules log through get_safe_logger() so
credentials, e-mail addresses and embedded image payloads never reach the
log output.
"""

import re
import logging
from typing import Any, Callable, Dict, Iterable, List, Union

ISSUE_KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9]*-\d+$')
PROJECT_KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

# Words and characters that would change the meaning of a JQL clause
_JQL_OPERATORS = re.compile(
    r'\b(AND|OR|NOT|IN|IS|WAS|CHANGED|ORDER\s+BY)\b|[<>=!~()\[\]]',
    re.IGNORECASE,
)


def looks_like_issue_key(value) -> bool:
    """Return True when ``value`` is a string shaped like a Jira issue key.

    Examples:
        >>> looks_like_issue_key("PROJ-123")
        True
        >>> looks_like_issue_key("Checkout revamp")
        False
    """
    return isinstance(value, str) and bool(ISSUE_KEY_PATTERN.match(value.strip()))


def _issue_key(value: str) -> str:
    if not ISSUE_KEY_PATTERN.match(value):
        raise ValueError(f"Invalid issue key format: '{value}' (expected e.g. PROJ-123)")
    return value


def _project_key(value: str) -> str:
    if not PROJECT_KEY_PATTERN.match(value):
        raise ValueError(f"Invalid project key format: '{value}' (expected e.g. PROJ)")
    return value


def _numeric_id(value: str) -> str:
    if not value.isdigit() or int(value) == 0:
        raise ValueError(f"Invalid id: '{value}' (expected a positive number)")
    return str(int(value))


def _free_text(value: str) -> str:
    if _JQL_OPERATORS.search(value):
        raise ValueError(f"Invalid text value '{value}': contains JQL operator or special character")
    return value.replace('"', '\\"').replace("'", "\\'")


_VALIDATORS: Dict[str, Callable[[str], str]] = {
    'key': _issue_key,
    'project': _project_key,
    'id': _numeric_id,
    'text': _free_text,
}


def sanitize_jql_value(value: Union[str, int], value_type: str = 'key') -> str:
    """Validate a value that is interpolated into JQL or a REST path.

    Args:
        value: Raw input (issue key, project key, board or sprint id, text)
        value_type: One of 'key', 'project', 'id' (positive integer, ints
            accepted) or 'text' (free-form, quotes escaped)

    Returns:
        The stripped (and for ids, normalised) value

    Raises:
        ValueError: If the value is empty, carries injection markers or does
            not match its type

    Examples:
        >>> sanitize_jql_value("PROJ-123", "key")
        'PROJ-123'
        >>> sanitize_jql_value(42, "id")
        '42'
        >>> sanitize_jql_value("PROJ-123'; DROP TABLE", "key")
        Traceback (most recent call last):
        ValueError: Invalid issue key format...
    """
    validator = _VALIDATORS.get(value_type)
    if validator is None:
        raise ValueError(f"Unknown value_type: '{value_type}'. Use one of: {', '.join(_VALIDATORS)}")

    if value_type == 'id' and isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not value or not isinstance(value, str):
        raise ValueError(f"Value must be a non-empty string, got: {type(value)}")

    value = value.strip()
    if not value:
        raise ValueError("Value cannot be empty or whitespace only")
    if '--' in value or '/*' in value or '*/' in value:
        raise ValueError(f"Invalid value '{value}': contains SQL comment markers")
    if value.count('"') > 2 or value.count("'") > 2:
        raise ValueError(f"Invalid value '{value}': excessive quotes detected")

    return validator(value)


def sanitize_jql_list(values: Iterable[Union[str, int]], value_type: str = 'key') -> List[str]:
    """Sanitize every value (same rules as sanitize_jql_value).

    Raises:
        ValueError: Naming the position of the first invalid value

    Example:
        >>> sanitize_jql_list(["PROJ", "OPS"], "project")
        ['PROJ', 'OPS']
    """
    sanitized = []
    for position, value in enumerate(values or []):
        try:
            sanitized.append(sanitize_jql_value(value, value_type))
        except ValueError as e:
            raise ValueError(f"Invalid value at position {position}: {e}") from e
    return sanitized


def sanitize_filename(name: str, fallback: str = "Sprint") -> str:
    """Return ``name`` with every non-alphanumeric character replaced by '_'.

    Examples:
        >>> sanitize_filename("Sprint 42 / Q3")
        'Sprint_42___Q3'
        >>> sanitize_filename("")
        'Sprint'
    """
    cleaned = re.sub(r'[^a-zA-Z0-9]', '_', (name or '').strip())
    return cleaned or fallback


def _keep_issue_keys(match) -> str:
    value = match.group(0)
    return value if ISSUE_KEY_PATTERN.match(value) else '[REDACTED]'


class SensitiveDataFilter(logging.Filter):
    """Logging filter that rewrites sensitive data in log records.

    Redacts Atlassian API tokens, Basic auth headers, base64 image payloads
    of data URLs (slide images), e-mail addresses and long alphanumeric
    strings that may be credentials. Issue keys are left alone.

    Usage:
        >>> logger = logging.getLogger('myapp')
        >>> logger.addFilter(SensitiveDataFilter())
    """

    # Applied in order; data URLs before the generic long-string rule
    REDACTIONS = (
        (re.compile(r'ATATT[a-zA-Z0-9_\-=]+'), '[REDACTED-TOKEN]'),
        (re.compile(r'\bBasic\s+[A-Za-z0-9+/]{8,}={0,2}'), 'Basic [REDACTED]'),
        (re.compile(r'(data:[\w.+/-]+(?:;[\w=.-]+)*;base64,)[A-Za-z0-9+/]{16,}={0,2}'), r'\1[DATA]'),
        (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[REDACTED-EMAIL]'),
        (re.compile(r'\b[a-zA-Z0-9]{24,}\b'), _keep_issue_keys),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact the message and its arguments; never suppresses the record."""
        if isinstance(record.msg, str):
            record.msg = self._redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: self._redact_arg(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._redact_arg(arg) for arg in record.args)
        return True

    def _redact_arg(self, arg: Any) -> Any:
        # numbers keep their type so %d / %.1f placeholders still format
        if isinstance(arg, (int, float)):
            return arg
        return self._redact(str(arg))

    def _redact(self, text: str) -> str:
        if not isinstance(text, str):
            return text
        for pattern, replacement in self.REDACTIONS:
            text = pattern.sub(replacement, text)
        return text


def get_safe_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)`` with one SensitiveDataFilter attached.

    Example:
        >>> logger = get_safe_logger(__name__)
        >>> logger.info("API token: ATATT123abc")  # Logs: "API token: [REDACTED-TOKEN]"
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, SensitiveDataFilter) for f in logger.filters):
        logger.addFilter(SensitiveDataFilter())
    return logger
