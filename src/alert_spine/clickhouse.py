"""ClickHouse HTTP query backend.

Thin transport satisfying :class:`~alert_spine.protocols.QueryBackend`:
reads are ``GET`` with ``default_format=JSON`` and return the ``data`` rows,
writes are ``POST``.  Named parameters travel as ``param_<name>`` URL
parameters so ClickHouse binds them server-side (``{name:Type}`` in SQL).

Tags:
    clickhouse, httpx, query-backend, alert-spine
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from alert_spine.errors import QueryError

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# numbers must come back as JSON numbers, not quoted strings
DEFAULT_SETTINGS: dict[str, str] = {
    "output_format_json_quote_decimals": "0",
    "output_format_json_quote_64bit_integers": "0",
    "output_format_json_quote_64bit_floats": "0",
}


class ClickHouseBackend:
    """Query backend talking to one ClickHouse server over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        user: str = "",
        password: str = "",
        database: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        settings: Mapping[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.database = database
        self.settings = dict(DEFAULT_SETTINGS)
        if settings:
            self.settings.update(settings)
        auth = httpx.BasicAuth(user, password) if user else None
        self._client = client or httpx.Client(timeout=timeout, auth=auth)
        self._auth = auth

    def query(self, sql: str, params: Mapping[str, str] | None = None) -> list[dict[str, Any]]:
        response = self._send("GET", sql, params, output_format="JSON")
        try:
            payload = response.json()
        except ValueError as e:
            raise QueryError(f"decoding clickhouse response: {e}", cause=e) from e
        return list(payload.get("data", []))

    def execute(self, sql: str, params: Mapping[str, str] | None = None) -> None:
        self._send("POST", sql, params)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ClickHouseBackend:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------

    def _build_params(
        self,
        sql: str,
        params: Mapping[str, str] | None,
        output_format: str,
    ) -> dict[str, str]:
        query_params: dict[str, str] = {}
        if self.database:
            query_params["database"] = self.database
        query_params["default_format"] = output_format
        query_params.update(self.settings)
        for name, value in (params or {}).items():
            query_params[f"param_{name}"] = value
        query_params["query"] = sql
        return query_params

    def _send(
        self,
        method: str,
        sql: str,
        params: Mapping[str, str] | None,
        output_format: str = "JSONEachRow",
    ) -> httpx.Response:
        logger.debug("clickhouse.query", method=method, query=sql, params=dict(params or {}))
        try:
            response = self._client.request(
                method,
                self.url,
                params=self._build_params(sql, params, output_format),
                headers={"Content-Type": "text/plain"},
                auth=self._auth or httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as e:
            raise QueryError(f"executing request: {e}", cause=e).with_context(url=self.url) from e

        if response.status_code != 200:
            raise QueryError(
                f"unsuccessful clickhouse response (status {response.status_code}): {response.text}"
            ).with_context(url=self.url, http_status=response.status_code)
        return response

    def __repr__(self) -> str:
        return f"ClickHouseBackend({self.url!r}, database={self.database!r})"


__all__ = ["ClickHouseBackend", "DEFAULT_SETTINGS"]
