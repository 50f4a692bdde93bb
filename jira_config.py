"""
Configuration for the sprint review tools.

Settings live in a shell-style ``.jira_environment`` file next to the code
(``export KEY="value"`` lines). Numeric tunables and JSR_SSL_VERIFY may also
come from the process environment, which then wins over the file.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_ENV_PATH = BASE_DIR / ".jira_environment"

logger = logging.getLogger(__name__)

# Jira custom field ids used by the sprint review, overridable per instance
DEFAULT_FIELD_IDS: Dict[str, str] = {
    "story_points": "customfield_10127",
    "epic_name": "customfield_10015",
    "release_notes": "customfield_10113",
}

DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_REQUEST_TIMEOUT = 15

# Transport-level retries for Jira calls; HTTP errors left after these are mapped by the caller
RETRY_STATUSES = (429, 500, 502, 503, 504)
RETRY_TOTAL = 4
RETRY_BACKOFF = 1.0
POOL_CONNECTIONS = 10
POOL_MAXSIZE = 20

_SSL_OFF = {"false", "0", "no", "off", "disabled"}
_SSL_ON = {"true", "1", "yes", "on", "enabled"}


def _split_assignment(line: str) -> Optional[Tuple[str, str]]:
    """Return (key, value) for ``[export ]KEY=value`` lines, None for anything else."""
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    if text.startswith("export "):
        text = text[len("export "):].lstrip()
    key, sep, value = text.partition("=")
    if not sep:
        return None
    return key.strip(), value.strip().strip('"').strip("'")


@lru_cache(maxsize=4)
def load_jira_env(env_path: Optional[Path] = None) -> Dict[str, str]:
    """Parse the settings file once per path; a missing file yields ``{}``."""
    path = Path(env_path) if env_path else DEFAULT_ENV_PATH
    if not path.exists():
        return {}
    with path.open() as fh:
        pairs = (_split_assignment(line) for line in fh)
        return dict(pair for pair in pairs if pair)


def get_jira_setting(key: str, default: Optional[str] = None, env_path: Optional[Path] = None) -> Optional[str]:
    return load_jira_env(env_path=env_path).get(key, default)


def get_int_setting(key: str, default: int) -> int:
    """Positive integer from the environment or the settings file.

    Non-numeric and non-positive values are logged and replaced by ``default``.

    Examples:
        >>> get_int_setting("JSR_MAX_CONCURRENT", 5)
        5
    """
    raw = os.environ.get(key) or get_jira_setting(key)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", key, raw)
        return default
    if value >= 1:
        return value
    logger.warning("Ignoring non-positive value for %s: %r", key, raw)
    return default


def get_field_ids() -> Dict[str, str]:
    """Custom field ids keyed like DEFAULT_FIELD_IDS.

    Each one can be overridden with JSR_FIELD_<NAME>, e.g.
    ``JSR_FIELD_STORY_POINTS=customfield_10024``.
    """
    env = load_jira_env()
    field_ids = dict(DEFAULT_FIELD_IDS)
    for name in field_ids:
        override = env.get(f"JSR_FIELD_{name.upper()}")
        if override:
            field_ids[name] = override
    return field_ids


def get_cache_ttl() -> int:
    return get_int_setting("JSR_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS)


def get_max_concurrent() -> int:
    return get_int_setting("JSR_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT)


def get_request_timeout() -> int:
    return get_int_setting("JSR_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)


def get_jira_url() -> str:
    """Base URL of the Jira instance, without trailing slash.

    Raises:
        ValueError: If JSR_JIRA_URL is missing from the settings file
    """
    url = get_jira_setting("JSR_JIRA_URL")
    if url:
        return url.rstrip("/")
    raise ValueError(
        "JSR_JIRA_URL is not set. Add it to .jira_environment, e.g.\n"
        '  export JSR_JIRA_URL="https://your-org.atlassian.net"'
    )


def get_jira_auth() -> Optional[Tuple[str, str]]:
    """(JSR_JIRA_USERNAME, JSR_JIRA_PASSWORD) when both are set, else None."""
    env = load_jira_env()
    credentials = (env.get("JSR_JIRA_USERNAME"), env.get("JSR_JIRA_PASSWORD"))
    return credentials if all(credentials) else None


def _resolve_ca_bundle(raw: str) -> Union[bool, str]:
    cert_path = Path(raw).expanduser()
    if not cert_path.is_absolute():
        cert_path = BASE_DIR / cert_path
    if cert_path.exists():
        return str(cert_path.resolve())
    logger.warning("SSL certificate path does not exist: %s; using standard verification", cert_path)
    return True


def get_ssl_verify() -> Union[bool, str]:
    """Value for ``requests``' ``verify``: True or the path of a CA bundle.

    Sources, first non-empty wins: JSR_SSL_VERIFY in the environment,
    JSR_SSL_VERIFY in .jira_environment, then REQUESTS_CA_BUNDLE (shell
    settings can be stale, so it only counts when nothing else is set).
    A bundle path that does not exist logs a warning and falls back to True.

    Raises:
        ValueError: If the setting tries to turn verification off
    """
    raw = (
        os.environ.get("JSR_SSL_VERIFY")
        or get_jira_setting("JSR_SSL_VERIFY")
        or os.environ.get("REQUESTS_CA_BUNDLE")
    )
    if not raw:
        return True

    mode = raw.strip().lower()
    if mode in _SSL_OFF:
        raise ValueError(
            "SSL verification cannot be disabled.\n"
            "Set JSR_SSL_VERIFY=true, point it at a CA bundle "
            "(JSR_SSL_VERIFY=/path/to/cert.pem) or remove it."
        )
    if mode in _SSL_ON:
        return True
    return _resolve_ca_bundle(raw)


def _retrying_adapter() -> HTTPAdapter:
    retry = Retry(
        total=RETRY_TOTAL,
        backoff_factor=RETRY_BACKOFF,
        status_forcelist=list(RETRY_STATUSES),
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )
    return HTTPAdapter(max_retries=retry, pool_connections=POOL_CONNECTIONS, pool_maxsize=POOL_MAXSIZE)


@lru_cache(maxsize=1)
def get_jira_session() -> requests.Session:
    """Process-wide requests.Session for Jira REST calls.

    The session retries 429 and 5xx responses and connection errors with
    exponential backoff (1s, 2s, 4s, 8s), pools connections, sends the
    configured Basic credentials and verifies TLS per get_ssl_verify().

    Example:
        >>> resp = get_jira_session().get(url, timeout=15)
    """
    session = requests.Session()
    adapter = _retrying_adapter()
    for prefix in ("http://", "https://"):
        session.mount(prefix, adapter)

    auth = get_jira_auth()
    if auth:
        session.auth = auth
    session.headers["Accept"] = "application/json"
    session.verify = get_ssl_verify()

    logger.debug("Jira session ready (retries=%d, pool=%d)", RETRY_TOTAL, POOL_MAXSIZE)
    return session
