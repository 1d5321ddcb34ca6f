from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx
from opentelemetry.trace import Status, StatusCode

from teamspace.context import get_correlation_id
from teamspace.core.config import Settings
from teamspace.core.errors import RemoteError, TransportError, WorkspaceError
from teamspace.metrics import observe_store_probe, observe_store_request
from teamspace.otel import get_tracer
from teamspace.persistence.local_store import LocalStore


logger = logging.getLogger("teamspace.persistence.gateway")
tracer = get_tracer("teamspace.persistence.gateway")

WRITE_VERBS = {"POST", "PATCH", "PUT", "DELETE"}


def split_endpoint(endpoint: str) -> tuple[str, str | None]:
    parts = [part for part in endpoint.strip("/").split("/") if part]
    if not parts:
        raise ValueError("endpoint must name a collection")
    if len(parts) > 2:
        raise ValueError(f"unsupported endpoint '{endpoint}'")
    return parts[0], parts[1] if len(parts) == 2 else None


class PersistenceGateway:
    """Routes raw store requests to the remote API or the local fallback store.

    The choice is made by a single probe per gateway instance (one session) and
    is never revisited, whatever happens to the remote afterwards.
    """

    probe_collection = "tasks"

    def __init__(
        self,
        settings: Settings,
        *,
        local_store: LocalStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._local_store = local_store
        self._http_client = http_client
        self._owns_client = http_client is None
        self._remote_available: bool | None = None
        self._probe_lock = asyncio.Lock()

    @property
    def remote_available(self) -> bool | None:
        return self._remote_available

    @property
    def backend(self) -> str:
        if self._remote_available is None:
            return "undecided"
        return "remote" if self._remote_available else "local"

    @property
    def local_store(self) -> LocalStore:
        return self._local_store

    async def probe(self) -> bool:
        if self._remote_available is not None:
            return self._remote_available

        async with self._probe_lock:
            if self._remote_available is None:
                available = await self._run_probe()
                self._remote_available = available
                observe_store_probe(self.backend)
                logger.info("store.selected", extra={"backend": self.backend, "remote_available": available})
        return self._remote_available

    async def request(
        self,
        endpoint: str,
        verb: str,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        remote = await self.probe()
        collection, record_id = split_endpoint(endpoint)
        method = verb.upper()
        backend = "remote" if remote else "local"

        started = time.perf_counter()
        with tracer.start_as_current_span("workspace.gateway.request") as span:
            span.set_attribute("workspace.backend", backend)
            span.set_attribute("workspace.collection", collection)
            span.set_attribute("http.method", method)
            correlation_id = get_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)
            try:
                if remote:
                    rows = await self._remote_call(endpoint, method, body, params)
                else:
                    rows = await asyncio.to_thread(
                        self._local_store.execute, collection, record_id, method, body, params
                    )
            except WorkspaceError as exc:
                duration = time.perf_counter() - started
                observe_store_request(backend, method, collection, type(exc).__name__, duration)
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.warning(
                    "store.request_failed",
                    extra={"backend": backend, "verb": method, "collection": collection, "error": str(exc)},
                )
                raise

            span.set_attribute("workspace.row_count", len(rows))

        observe_store_request(backend, method, collection, "ok", time.perf_counter() - started)
        return rows

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _run_probe(self) -> bool:
        if not self._settings.remote_configured:
            return False
        try:
            await self._remote_call(
                self.probe_collection,
                "GET",
                None,
                {"select": "id", "limit": "1"},
                timeout=self._settings.probe_timeout_seconds,
            )
        except (TransportError, RemoteError) as exc:
            logger.warning("store.probe_failed", extra={"error": str(exc)})
            return False
        return True

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
            self._owns_client = True
        return self._http_client

    def _headers(self, method: str) -> dict[str, str]:
        api_key = self._settings.remote_api_key or ""
        bearer = self._settings.remote_bearer_token or api_key
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {bearer}",
            "Accept": "application/json",
        }
        if method in WRITE_VERBS:
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=representation"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-Id"] = correlation_id
        return headers

    async def _remote_call(
        self,
        endpoint: str,
        method: str,
        body: Any,
        params: Mapping[str, Any] | None,
        *,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        base_url = (self._settings.remote_api_url or "").rstrip("/")
        url = f"{base_url}/{endpoint.strip('/')}"
        try:
            response = await self._client().request(
                method,
                url,
                json=body,
                params=dict(params) if params else None,
                headers=self._headers(method),
                timeout=timeout if timeout is not None else self._settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {endpoint} timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {endpoint} failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise RemoteError(response.status_code, response.text)
        if not response.content:
            return []

        data = response.json()
        if isinstance(data, dict):
            return [data]
        return list(data)
