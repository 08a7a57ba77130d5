"""
Table Query Gateway -- Client Revenue Dashboard
=================================================

Thin async client for the table-query webhook that backs the dashboard.  Every
logical table is fetched with one POST carrying the table name, the requested
columns and an equality-filter map:

    {"table_name": "manual_charges",
     "columns": ["user_id", "cost", "name"],
     "filters": {"user_id": 42}}

The responder does not commit to a single envelope.  Depending on how the
workflow behind the webhook was built it answers with a bare JSON array, with
an object wrapping the rows under ``rows``, ``data`` or ``result``, or with
something else entirely.  All of that variance is absorbed here so callers
always receive a plain list of row dicts.

Failure policy:
    - connection errors, timeouts and non-2xx statuses raise
      :class:`DataGatewayError` subclasses
    - undecodable or unrecognised bodies are logged and yield ``[]``
    - nothing is retried

Usage:
    from revenue_dashboard.data_gateway import DataGateway

    async with DataGateway() as gateway:
        users = await gateway.fetch_rows(
            "users", ["id", "first_name", "last_name", "email"], {"is_admin": "0"},
        )
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

import aiohttp

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("data_gateway")
logger.setLevel(logging.INFO)

if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter(
        "[%(asctime)s] %(name)s %(levelname)s: %(message)s", datefmt="%H:%M:%S",
    ))
    logger.addHandler(_h)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

REVENUE_API_ENDPOINT = os.getenv(
    "REVENUE_API_ENDPOINT", "http://localhost:5678/webhook/revenue-dashboard"
)
REVENUE_API_KEY = os.getenv("REVENUE_API_KEY", "")
REVENUE_API_TIMEOUT = int(os.getenv("REVENUE_API_TIMEOUT", "30"))  # seconds

# Keys probed on keyed envelopes, highest priority first
ENVELOPE_KEYS: Tuple[str, ...] = ("rows", "data", "result")

Row = Dict[str, Any]
Filters = Dict[str, Any]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DataGatewayError(Exception):
    """Base exception for table query failures."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class GatewayTransportError(DataGatewayError):
    """Raised when the request could not be completed (connection, timeout)."""
    pass


class GatewayHTTPError(DataGatewayError):
    """Raised on a non-2xx response."""
    pass


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class TableQuery:
    """Body of one outbound table query."""
    table_name: str
    columns: List[str] = field(default_factory=list)
    filters: Filters = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "columns": list(self.columns),
            "filters": dict(self.filters),
        }


class EnvelopeKind(Enum):
    """Shapes a decoded response body can take, in unwrap priority order."""
    SEQUENCE = "sequence"
    ROWS = "rows"
    DATA = "data"
    RESULT = "result"
    OPAQUE = "opaque"


@dataclass
class Envelope:
    """A classified response body."""
    kind: EnvelopeKind
    rows: List[Row] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

_NOT_PARSED = object()


def _lenient_json(text: str) -> Any:
    """Second-chance parse for bodies that are not strict JSON.

    Strips a byte-order mark and surrounding whitespace, then tries the body
    whole and finally as line-delimited JSON.  Returns ``_NOT_PARSED`` when
    nothing works.
    """
    cleaned = text.lstrip("\ufeff").strip()
    if not cleaned:
        return _NOT_PARSED
    try:
        return json.loads(cleaned)
    except ValueError:
        pass

    records = []
    for line in cleaned.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            records.append(json.loads(line))
        except ValueError:
            return _NOT_PARSED
    return records if records else _NOT_PARSED


def decode_body(text: str, table_name: str = "") -> Any:
    """Decode a response body, returning ``None`` when it is opaque."""
    if not text or not text.strip():
        logger.warning("Empty response body received from table: %s", table_name)
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass

    parsed = _lenient_json(text)
    if parsed is _NOT_PARSED:
        logger.warning(
            "Could not parse response from table %s as JSON; treating as opaque: %.200s",
            table_name, text,
        )
        return None
    logger.debug("Response from table %s needed the lenient parser", table_name)
    return parsed


def classify_envelope(payload: Any) -> Envelope:
    """Classify a decoded payload and pull its rows out.

    A list is taken as-is.  A dict is probed for ``rows``, ``data`` and
    ``result`` in that order; the first key holding a list wins.  Anything
    else is opaque.
    """
    if isinstance(payload, list):
        return Envelope(EnvelopeKind.SEQUENCE, payload)
    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return Envelope(EnvelopeKind(key), value)
    return Envelope(EnvelopeKind.OPAQUE)


def unwrap_rows(payload: Any, table_name: str = "") -> List[Row]:
    """Return the row list carried by *payload*, or ``[]``."""
    envelope = classify_envelope(payload)
    if envelope.kind is EnvelopeKind.OPAQUE and payload is not None:
        logger.warning(
            "Response from table %s has no recognised envelope (%s)",
            table_name, type(payload).__name__,
        )
    return envelope.rows


# ---------------------------------------------------------------------------
# Sync wrapper helper
# ---------------------------------------------------------------------------

_thread_pool = concurrent.futures.ThreadPoolExecutor(max_workers=2)


def _run_sync(coro: Awaitable[Any]) -> Any:
    """
    Run an async coroutine synchronously.

    If there is already a running event loop, a new loop is spun up in a
    background thread.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        future = _thread_pool.submit(asyncio.run, coro)
        return future.result()
    return asyncio.run(coro)


# ===================================================================
# DataGateway
# ===================================================================


class DataGateway:
    """
    Async client for the table-query webhook.

    Parameters
    ----------
    endpoint : str
        Webhook URL.  Defaults to ``REVENUE_API_ENDPOINT``.
    api_key : str
        Optional key sent as ``X-API-Key``.
    timeout : int
        Total request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str = "",
        api_key: str = "",
        timeout: int = REVENUE_API_TIMEOUT,
    ) -> None:
        self.endpoint = endpoint or REVENUE_API_ENDPOINT
        self.api_key = api_key or REVENUE_API_KEY
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "DataGateway initialized (endpoint=%s, key=%s)",
            self.endpoint, "set" if self.api_key else "NOT SET",
        )

    # -- Session management -------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _new_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = self._new_session()
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> DataGateway:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # -- Queries ------------------------------------------------------------

    async def fetch_rows(
        self,
        table_name: str,
        columns: Sequence[str],
        filters: Optional[Filters] = None,
    ) -> List[Row]:
        """
        Fetch the rows of *table_name* matching *filters*.

        Raises
        ------
        GatewayTransportError
            When the request cannot be completed.
        GatewayHTTPError
            On a non-2xx response.
        """
        session = await self._get_session()
        return await self._fetch_with(session, table_name, columns, filters)

    async def _fetch_with(
        self,
        session: aiohttp.ClientSession,
        table_name: str,
        columns: Sequence[str],
        filters: Optional[Filters],
    ) -> List[Row]:
        query = TableQuery(table_name, list(columns), dict(filters or {}))
        logger.info("Fetching data from table: %s with filters: %s", table_name, query.filters)
        logger.debug("Payload: %s", json.dumps(query.to_payload(), default=str)[:500])

        try:
            async with session.post(self.endpoint, json=query.to_payload()) as resp:
                status = resp.status
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Request for table %s failed: %s", table_name, exc)
            raise GatewayTransportError(
                f"Failed to fetch {table_name} data: {type(exc).__name__}: {exc}"
            ) from exc

        # Undecodable bytes become U+FFFD so a bad body reads as opaque
        text = body.decode("utf-8", errors="replace")

        if not 200 <= status < 300:
            logger.error("HTTP Error for %s: %d", table_name, status)
            raise GatewayHTTPError(
                f"Failed to fetch {table_name} data: HTTP {status}",
                status_code=status,
                response_body=text,
            )

        rows = unwrap_rows(decode_body(text, table_name), table_name)
        logger.info("Fetched %d rows from table: %s", len(rows), table_name)
        return rows

    def fetch_rows_sync(
        self,
        table_name: str,
        columns: Sequence[str],
        filters: Optional[Filters] = None,
    ) -> List[Row]:
        """Synchronous wrapper for :meth:`fetch_rows`.

        Uses a short-lived session of its own, leaving the shared async
        session untouched.
        """

        async def _once() -> List[Row]:
            session = self._new_session()
            try:
                return await self._fetch_with(session, table_name, columns, filters)
            finally:
                await session.close()

        return _run_sync(_once())
