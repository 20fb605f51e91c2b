"""Query executors: run final query text against a data source, cancellably.

Each ``execute()`` call returns an :class:`Execution` right away. Its
``result`` settles with a :class:`QueryResult`, rejects with
:class:`AbortedError` once ``cancel()`` was called (whether or not the
backend actually stopped in time), or rejects with
:class:`QueryExecutionError` for a genuine failure.

``execute()`` must be called from inside a running event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import duckdb
import pandas as pd
import requests

from vantage.errors import AbortedError, QueryExecutionError
from vantage.services.datastore import DataStore

logger = logging.getLogger("vantage")


@dataclass(frozen=True)
class ColumnMeta:
    name: str
    type: Optional[str] = None


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    meta: List[ColumnMeta] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "meta": [{"name": m.name, "type": m.type} for m in self.meta],
        }


class Execution:
    def __init__(self, result: Awaitable[QueryResult], cancel: Callable[[], None]):
        self.result = result
        self._cancel = cancel

    def cancel(self) -> None:
        self._cancel()


class Executor:
    def execute(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Execution:
        raise NotImplementedError


def frame_to_result(df: pd.DataFrame) -> QueryResult:
    """JSON-friendly records plus dtype metadata from a DataFrame."""
    meta = [ColumnMeta(str(name), str(dtype)) for name, dtype in df.dtypes.items()]
    if df.empty:
        return QueryResult(rows=[], meta=meta)
    rows = json.loads(df.to_json(orient="records", date_format="iso"))
    return QueryResult(rows=rows, meta=meta)


class DuckDBExecutor(Executor):
    """Run queries on the datastore's DuckDB database in worker threads."""

    def __init__(self, datastore: DataStore):
        self.datastore = datastore

    def execute(self, sql, params=None, headers=None) -> Execution:
        cursor = self.datastore.cursor()
        cancelled = threading.Event()

        def run() -> pd.DataFrame:
            try:
                return cursor.execute(sql, dict(params) if params else None).df()
            finally:
                cursor.close()

        async def result() -> QueryResult:
            try:
                df = await asyncio.to_thread(run)
            except duckdb.Error as e:
                if cancelled.is_set():
                    raise AbortedError("query cancelled") from e
                logger.warning("DuckDB query failed: %s", e)
                raise QueryExecutionError(str(e)) from e
            if cancelled.is_set():
                raise AbortedError("query cancelled")
            return frame_to_result(df)

        def cancel() -> None:
            if cancelled.is_set():
                return
            cancelled.set()
            try:
                cursor.interrupt()
            except duckdb.Error as e:
                logger.debug("DuckDB interrupt failed: %s", e)

        return Execution(asyncio.ensure_future(result()), cancel)


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text.strip()


class ClickHouseHttpExecutor(Executor):
    """Run queries through ClickHouse's HTTP interface.

    Cancelling closes the pending response and, unless disabled, sends a
    ``KILL QUERY`` for the query id in a background thread.
    """

    def __init__(
        self,
        url: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        kill_on_cancel: bool = True,
    ):
        self.url = url
        self.auth = (user, password or "") if user else None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.kill_on_cancel = kill_on_cancel

    def execute(self, sql, params=None, headers=None) -> Execution:
        query_id = uuid.uuid4().hex
        query_params = {
            "default_format": "JSON",
            "output_format_json_quote_64bit_integers": 0,
            **(params or {}),
            "query_id": query_id,
        }
        request_headers = {"Content-Type": "text/plain", **(headers or {})}
        cancelled = threading.Event()
        pending: Dict[str, requests.Response] = {}

        def run() -> requests.Response:
            response = self.session.post(
                self.url,
                params=query_params,
                data=sql.encode("utf-8"),
                headers=request_headers,
                auth=self.auth,
                timeout=self.timeout,
                stream=True,
            )
            pending["response"] = response
            # reads the body; raises if cancel() closed the response
            response.content
            return response

        async def result() -> QueryResult:
            try:
                response = await asyncio.to_thread(run)
            except requests.RequestException as e:
                if cancelled.is_set():
                    raise AbortedError("query cancelled") from e
                raise QueryExecutionError(f"ClickHouse request failed: {e}") from e
            if cancelled.is_set():
                raise AbortedError("query cancelled")

            if response.status_code >= 400:
                message = _error_message(response)
                logger.warning("ClickHouse query %s failed: %s", query_id, message)
                raise QueryExecutionError(message)
            try:
                payload = response.json()
            except ValueError as e:
                raise QueryExecutionError(f"Malformed response from ClickHouse: {e}") from e

            meta = [ColumnMeta(str(m.get("name")), m.get("type")) for m in payload.get("meta") or []]
            return QueryResult(rows=list(payload.get("data") or []), meta=meta)

        def cancel() -> None:
            if cancelled.is_set():
                return
            cancelled.set()
            response = pending.get("response")
            if response is not None:
                response.close()
            if self.kill_on_cancel:
                threading.Thread(target=self.kill_query, args=(query_id,), daemon=True).start()

        return Execution(asyncio.ensure_future(result()), cancel)

    def kill_query(self, query_id: str) -> None:
        try:
            response = self.session.post(
                self.url,
                params={"query": f"KILL QUERY WHERE query_id = '{query_id}' ASYNC"},
                auth=self.auth,
                timeout=10,
            )
            response.raise_for_status()
        except (requests.HTTPError, requests.ConnectionError, requests.Timeout) as e:
            logger.warning("Failed to kill ClickHouse query %s: %s", query_id, e)


__all__ = [
    "ClickHouseHttpExecutor",
    "ColumnMeta",
    "DuckDBExecutor",
    "Execution",
    "Executor",
    "QueryResult",
    "frame_to_result",
]
