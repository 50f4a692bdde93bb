"""
Async HTTP utilities for concurrent Jira API requests.

Provides a bounded-concurrency task runner and the concurrent board lookup
used when a review session starts: one board listing per project, then a
sprint-capability check per board. Both stages run flat under the same
limit, so no more than ``max_concurrent`` Jira requests are ever in flight.
"""

import asyncio
import ssl
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

import aiohttp
from aiohttp import BasicAuth, ClientTimeout

from jira_cache import RequestCache, derive_cache_key
from jira_config import DEFAULT_MAX_CONCURRENT, DEFAULT_REQUEST_TIMEOUT
from jira_security import get_safe_logger, sanitize_jql_list
from jsr_errors import UpstreamFetchError, ValidationError

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[T]]

logger = get_safe_logger(__name__)

# Jira answers the features endpoint of company-managed boards with this 400 body
NOT_AGILITY_BOARD = "not an agility board"


def _check_limit(max_concurrent: int) -> None:
    if max_concurrent < 1:
        raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")


async def _gather_fail_fast(pending: List["asyncio.Future"]) -> None:
    try:
        await asyncio.gather(*pending)
    except BaseException:
        for future in pending:
            future.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        raise


async def run_all(tasks: Sequence[TaskFactory], max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> List[Any]:
    """Run task factories with at most ``max_concurrent`` in flight.

    Results come back in COMPLETION order, not input order; use
    run_all_ordered() when results must line up with ``tasks``.
    The first failure cancels everything still pending and propagates;
    results gathered so far are discarded.

    Args:
        tasks: Zero-argument callables returning awaitables
        max_concurrent: Upper bound on tasks running at once (default: 5)

    Returns:
        List of results in the order the tasks finished

    Raises:
        ValueError: If max_concurrent < 1
        Exception: The first exception raised by any task

    Examples:
        >>> results = await run_all([lambda: fetch(1), lambda: fetch(2)], max_concurrent=2)
    """
    _check_limit(max_concurrent)
    if not tasks:
        return []

    semaphore = asyncio.Semaphore(max_concurrent)
    results: List[Any] = []

    async def run_one(factory: TaskFactory) -> None:
        async with semaphore:
            result = await factory()
        results.append(result)

    pending = [asyncio.ensure_future(run_one(factory)) for factory in tasks]
    await _gather_fail_fast(pending)
    return results


async def run_all_ordered(tasks: Sequence[TaskFactory], max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> List[Any]:
    """Same contract as run_all(), but ``result[i]`` belongs to ``tasks[i]``."""
    _check_limit(max_concurrent)
    if not tasks:
        return []

    semaphore = asyncio.Semaphore(max_concurrent)
    results: List[Any] = [None] * len(tasks)

    async def run_one(index: int, factory: TaskFactory) -> None:
        async with semaphore:
            results[index] = await factory()

    pending = [asyncio.ensure_future(run_one(i, factory)) for i, factory in enumerate(tasks)]
    await _gather_fail_fast(pending)
    return results


def parse_boards(data: Any) -> List[Dict[str, Any]]:
    """Return [{id, name, type}] from an agile board listing.

    Raises:
        UpstreamFetchError: If the payload has no ``values`` list
    """
    if not isinstance(data, dict) or not isinstance(data.get("values"), list):
        raise UpstreamFetchError("Invalid response format from Jira boards API", operation="fetch_boards")
    return [
        {"id": board.get("id"), "name": str(board.get("name", "")), "type": str(board.get("type", ""))}
        for board in data["values"]
        if isinstance(board, dict)
    ]


def sprint_capability_from_type(board_type: Optional[str]) -> Optional[bool]:
    """Decide sprint capability from the board type alone, None if undecidable.

    Scrum and kanban boards count as sprint-capable; "simple" (team-managed)
    boards and untyped boards need the features endpoint.
    """
    if board_type and board_type != "simple":
        return board_type in ("scrum", "kanban")
    return None


def features_enable_sprints(data: Any) -> bool:
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        return False
    return any(
        isinstance(f, dict) and f.get("feature") == "sprints" and f.get("enabled")
        for f in data["features"]
    )


def is_not_agility_board_error(exc: UpstreamFetchError) -> bool:
    """True for the 400 Jira returns on company-managed boards.

    Such boards are treated as sprint-capable. This mapping comes from
    observed Jira Cloud behaviour and has not been confirmed against Jira
    documentation.
    """
    text = f"{exc} {exc.body or ''}".lower()
    return exc.status_code == 400 and NOT_AGILITY_BOARD in text


def build_ssl_context(ssl_verify: Union[bool, str, None]) -> Optional[ssl.SSLContext]:
    """Return an SSL context for a custom CA bundle, or None for the defaults."""
    if isinstance(ssl_verify, str):
        return ssl.create_default_context(cafile=ssl_verify)
    return None


async def _get_json(
    session: aiohttp.ClientSession,
    url: str,
    operation: str,
    cache: Optional[RequestCache],
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    key = derive_cache_key(operation, {"url": url, "params": params})
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", operation)
            return cached

    try:
        async with session.get(url, params=params) as resp:
            body = await resp.text()
            if resp.status >= 400:
                raise UpstreamFetchError(
                    f"Jira {operation} failed with HTTP {resp.status}",
                    status_code=resp.status,
                    operation=operation,
                    body=body[:500],
                )
            try:
                data = await resp.json(content_type=None)
            except ValueError as exc:
                raise UpstreamFetchError(
                    f"Jira {operation} returned malformed JSON", status_code=resp.status, operation=operation
                ) from exc
    except asyncio.TimeoutError as exc:
        raise UpstreamFetchError(f"Jira {operation} timed out", operation=operation) from exc
    except aiohttp.ClientError as exc:
        raise UpstreamFetchError(f"Jira {operation} failed: {exc}", operation=operation) from exc

    if cache is not None:
        cache.set(key, data)
    return data


async def board_has_sprints_async(
    session: aiohttp.ClientSession,
    jira_url: str,
    board: Dict[str, Any],
    cache: Optional[RequestCache] = None,
) -> bool:
    """Return True when the board supports sprints."""
    decided = sprint_capability_from_type(board.get("type"))
    if decided is not None:
        return decided

    board_id = board.get("id")
    url = f"{jira_url}/rest/agile/1.0/board/{board_id}/features"
    try:
        data = await _get_json(session, url, "board_features", cache)
    except UpstreamFetchError as exc:
        if is_not_agility_board_error(exc):
            return True
        logger.warning("Failed to fetch features for board %s: %s", board_id, exc)
        return False
    return features_enable_sprints(data)


async def fetch_boards_for_projects_async(
    jira_url: str,
    project_keys: List[str],
    auth: Optional[Tuple[str, str]] = None,
    ssl_verify: Union[bool, str, None] = True,
    cache: Optional[RequestCache] = None,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> Dict[str, List[Dict[str, Any]]]:
    """Fetch the sprint-capable boards of several projects concurrently.

    Args:
        jira_url: Base Jira URL (e.g., "https://jira.example.com")
        project_keys: Project keys (e.g., ["PROJ", "OPS"])
        auth: Tuple of (email, api_token), or None for anonymous access
        ssl_verify: True or path to a CA bundle
        cache: Optional RequestCache shared with the synchronous client
        max_concurrent: Maximum Jira requests in flight at once (default: 5)
        timeout: Total seconds allowed per request (default: 15)

    Returns:
        Dict mapping project key -> list of {id, name, type} boards with sprints

    Raises:
        ValidationError: If a project key is malformed
        UpstreamFetchError: If any board listing fails (fail fast)

    Examples:
        >>> boards = await fetch_boards_for_projects_async(
        ...     "https://jira.example.com", ["PROJ"], ("user@example.com", "token"))
        >>> boards["PROJ"][0]["name"]
        'PROJ board'
    """
    try:
        keys = sanitize_jql_list(project_keys, "project")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    keys = list(dict.fromkeys(keys))
    if not keys:
        return {}

    jira_url = jira_url.rstrip("/")
    client_timeout = ClientTimeout(total=timeout, connect=10, sock_read=10)
    connector_kwargs: Dict[str, Any] = {"limit": max_concurrent, "limit_per_host": max_concurrent}
    ssl_context = build_ssl_context(ssl_verify)
    if ssl_context is not None:
        connector_kwargs["ssl"] = ssl_context

    logger.info("Fetching boards for %d projects (max %d concurrent)", len(keys), max_concurrent)

    async with aiohttp.ClientSession(
        auth=BasicAuth(auth[0], auth[1]) if auth else None,
        connector=aiohttp.TCPConnector(**connector_kwargs),
        timeout=client_timeout,
    ) as session:

        async def boards_for(project_key: str) -> Tuple[str, List[Dict[str, Any]]]:
            data = await _get_json(
                session, f"{jira_url}/rest/agile/1.0/board", "fetch_boards", cache,
                params={"projectKeyOrId": project_key},
            )
            return project_key, parse_boards(data)

        listings = dict(await run_all([(lambda key=key: boards_for(key)) for key in keys], max_concurrent))

        # One flat stage across all projects: at most max_concurrent checks in flight
        candidates = [(key, board) for key in keys for board in listings[key]]
        capable = await run_all_ordered(
            [(lambda board=board: board_has_sprints_async(session, jira_url, board, cache))
             for _, board in candidates],
            max_concurrent,
        )

    by_project: Dict[str, List[Dict[str, Any]]] = {key: [] for key in keys}
    for (key, board), ok in zip(candidates, capable):
        if ok:
            by_project[key].append(board)
    logger.info("Fetched boards for %d projects", len(by_project))
    return by_project


def fetch_boards_for_projects(
    jira_url: str,
    project_keys: List[str],
    auth: Optional[Tuple[str, str]] = None,
    ssl_verify: Union[bool, str, None] = True,
    cache: Optional[RequestCache] = None,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> Dict[str, List[Dict[str, Any]]]:
    """Synchronous wrapper for fetch_boards_for_projects_async().

    Must not be called from inside a running event loop.
    """
    return asyncio.run(
        fetch_boards_for_projects_async(
            jira_url, project_keys, auth, ssl_verify, cache, max_concurrent, timeout
        )
    )
