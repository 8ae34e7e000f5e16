"""Query a Prometheus-style HTTP API: instant queries, range queries and metric listing."""

import asyncio
import logging

import httpx

from promquery.errors import ResponseDecodeError, TransportError
from promquery.response import (
    MATRIX_TYPE,
    Matrix,
    QueryResult,
    decode_metric_names,
    decode_query_response,
)

log = logging.getLogger("promquery.client")

QUERY_PATH = "/api/query"
QUERY_RANGE_PATH = "/api/query_range"
METRICS_PATH = "/api/metrics"

# Default range query resolution: about 250 points per series
DEFAULT_POINTS_PER_RANGE = 250
MIN_STEP_SECONDS = 1


def resolve_step(range_seconds: int, step: int | None = None) -> int:
    """Return the step to use for a range query, never less than one second."""
    if step is None:
        step = range_seconds // DEFAULT_POINTS_PER_RANGE
    return max(step, MIN_STEP_SECONDS)


def endpoint_url(server_url: str, path: str) -> httpx.URL:
    """Append an API sub-path to the base URL, keeping any base path and query."""
    base = httpx.URL(server_url)
    return base.copy_with(path=base.path.rstrip("/") + path)


def _format_end(end: float) -> str:
    end = float(end)
    if end.is_integer():
        return str(int(end))
    return repr(end)


async def _get(
    config,
    path: str,
    params: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """GET ``path`` with the configured timeout as an absolute deadline.

    The httpx timeout bounds each phase (connect, read, ...); ``asyncio.wait_for``
    bounds the whole exchange including the body read.
    """
    url = endpoint_url(config.server_url, path)
    timeout = config.timeout_seconds
    log.debug("GET %s params=%s timeout=%ss", url, params, timeout)
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            return await asyncio.wait_for(client.get(url, params=params), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise TransportError(f"request to {url} timed out after {timeout:g}s") from e
    except httpx.HTTPError as e:
        raise TransportError(f"request to {url} failed: {e}") from e


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_error:
        raise TransportError(
            f"server returned HTTP {resp.status_code} {resp.reason_phrase} for {resp.request.url}"
        )


def _decode_result(resp: httpx.Response, allowed: tuple[str, ...] | None = None) -> QueryResult:
    # Servers may send an error envelope with a non-2xx status; prefer its message.
    try:
        result = decode_query_response(resp.content, allowed)
    except ResponseDecodeError:
        _raise_for_status(resp)
        raise
    _raise_for_status(resp)
    return result


async def query_metrics(config, expr: str, transport: httpx.AsyncBaseTransport | None = None) -> QueryResult:
    """Execute an instant query.

    Returns a Scalar, Vector or Matrix depending on the response's type tag.
    """
    resp = await _get(config, QUERY_PATH, {"expr": expr}, transport)
    return _decode_result(resp)


async def query_metrics_range(
    config,
    expr: str,
    end: float,
    range_seconds: int,
    step: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Matrix:
    """Execute a range query.

    Args:
        end: Unix timestamp of the end of the range.
        range_seconds: Length of the range, ending at ``end``.
        step: Resolution in seconds; defaults to ``range_seconds // 250``.
    """
    if range_seconds < 0:
        raise ValueError(f"range must not be negative: {range_seconds}")
    step = resolve_step(range_seconds, step)
    params = {
        "expr": expr,
        "end": _format_end(end),
        "range": str(range_seconds),
        "step": str(step),
    }
    resp = await _get(config, QUERY_RANGE_PATH, params, transport)
    return _decode_result(resp, allowed=(MATRIX_TYPE,))


async def list_metrics(config, transport: httpx.AsyncBaseTransport | None = None) -> list[str]:
    """Retrieve the names of all metrics known to the server."""
    resp = await _get(config, METRICS_PATH, transport=transport)
    _raise_for_status(resp)
    names = decode_metric_names(resp.content)
    log.debug("Server reported %d metric names", len(names))
    return names
