"""
DAPI JSON-RPC client.

Issues JSON-RPC 2.0 calls to seed nodes over HTTP. Every failure (transport,
HTTP status, JSON-RPC error object, malformed payload) surfaces as a
FetchError; transport failures and timeouts are retried with exponential
backoff before giving up.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Optional, Sequence

import httpx

from headersync.common.config import (
    DEFAULT_PORT,
    MAX_RETRIES,
    RETRY_BACKOFF,
    SYNC_TIMEOUT,
)
from headersync.common.errors import FetchError
from headersync.common.types import Header

logger = logging.getLogger(__name__)


class DAPIClient:
    """Async client for the header methods of a set of DAPI seed nodes."""

    def __init__(
        self,
        seeds: Sequence[str],
        port: int = DEFAULT_PORT,
        timeout: float = SYNC_TIMEOUT,
        retries: int = MAX_RETRIES,
        backoff: float = RETRY_BACKOFF,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not seeds:
            raise ValueError("DAPIClient needs at least one seed")
        self.seeds = list(seeds)
        self.port = port
        self.retries = retries
        self.backoff = backoff
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._rotation = itertools.cycle(self.seeds)
        self._request_id = 0

    async def __aenter__(self) -> DAPIClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    def url_for(self, seed: str) -> str:
        if seed.startswith(("http://", "https://")):
            return seed.rstrip("/") + "/"
        if ":" in seed:
            return f"http://{seed}/"
        return f"http://{seed}:{self.port}/"

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def call(
        self, method: str, params: Optional[dict] = None, source: Optional[str] = None,
    ) -> Any:
        """Call a JSON-RPC method on `source`, or on the next seed in rotation."""
        seed = source if source is not None else next(self._rotation)
        url = self.url_for(seed)
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": self._next_request_id(),
        }

        attempt = 0
        while True:
            try:
                response = await self._http.post(url, json=payload)
                response.raise_for_status()
                body = response.json()
                break
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= self.retries:
                    raise FetchError(
                        f"{method} to {seed} failed after {attempt + 1} attempts: {e!r}",
                        source=seed, method=method,
                    ) from e
                delay = self.backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "%s to %s failed (%s), retry %d/%d in %.1fs",
                    method, seed, type(e).__name__, attempt, self.retries, delay,
                )
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as e:
                raise FetchError(
                    f"{method} to {seed}: HTTP {e.response.status_code}",
                    source=seed, method=method,
                ) from e
            except ValueError as e:
                raise FetchError(
                    f"{method} to {seed}: invalid JSON response", source=seed, method=method,
                ) from e

        if not isinstance(body, dict):
            raise FetchError(f"{method} to {seed}: malformed response", source=seed, method=method)
        error = body.get("error")
        if error is not None:
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            code = error.get("code") if isinstance(error, dict) else None
            raise FetchError(
                f"{method} to {seed}: RPC error {code}: {message}",
                source=seed, method=method, code=code,
            )
        if "result" not in body:
            raise FetchError(f"{method} to {seed}: missing result", source=seed, method=method)
        return body["result"]

    # ------------------------------------------------------------------
    # Header methods
    # ------------------------------------------------------------------

    async def get_block_hash(self, height: int, source: Optional[str] = None) -> str:
        result = await self.call("getBlockHash", {"height": height}, source)
        if not isinstance(result, str):
            raise FetchError(f"getBlockHash({height}) returned {result!r}", source, "getBlockHash")
        return result

    async def get_block_header(self, block_hash: str, source: Optional[str] = None) -> Header:
        result = await self.call("getBlockHeader", {"blockHash": block_hash}, source)
        try:
            return Header.from_rpc(result)
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"getBlockHeader({block_hash[:16]}) returned malformed header: {e}",
                source, "getBlockHeader",
            ) from e

    async def get_block_headers(
        self,
        from_height: int,
        count: int,
        excluded: Optional[Sequence[str]] = None,
        source: Optional[str] = None,
    ) -> list[Header]:
        """`count` headers starting at `from_height`.

        `excluded` is forwarded to the node as a hint to avoid those peers
        when it resolves headers itself; it is not enforced here.
        """
        params: dict[str, Any] = {"offset": from_height, "limit": count}
        if excluded:
            params["excludedIps"] = list(excluded)
        result = await self.call("getBlockHeaders", params, source)
        if not isinstance(result, list):
            raise FetchError(
                f"getBlockHeaders({from_height}, {count}) returned {type(result).__name__}",
                source, "getBlockHeaders",
            )
        try:
            return [Header.from_rpc(item) for item in result]
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"getBlockHeaders({from_height}, {count}) returned malformed header: {e}",
                source, "getBlockHeaders",
            ) from e

    async def get_best_block_height(self, source: Optional[str] = None) -> int:
        result = await self.call("getBestBlockHeight", {}, source)
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"getBestBlockHeight returned {result!r}", source, "getBestBlockHeight",
            ) from e
