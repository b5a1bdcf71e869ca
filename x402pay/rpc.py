"""
JSON-RPC transport

Thin async JSON-RPC 2.0 client over httpx, shared by the EVM, SVM, Stellar
(Soroban), NEAR and Sui builders.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Union

import httpx
from loguru import logger

from x402pay.utils.exceptions import X402Error, X402ErrorCode

Params = Union[List[Any], Dict[str, Any], None]


class JsonRpcClient:
    """Minimal JSON-RPC client bound to one endpoint"""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def call(self, method: str, params: Params = None) -> Any:
        """
        Make a JSON-RPC request and return its result.

        Raises:
            X402Error: NETWORK_ERROR on transport failure or a JSON-RPC error object
        """
        client = await self._get_client()
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
        }
        if params is not None:
            payload["params"] = params

        try:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"RPC {method} to {self.url} failed: {e}")
            raise X402Error(
                f"RPC request {method} failed: {e}",
                X402ErrorCode.NETWORK_ERROR,
                details={"method": method, "url": self.url},
                cause=e,
            ) from e

        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            logger.warning(f"RPC {method} returned error: {message}")
            raise X402Error(
                f"RPC error from {method}: {message}",
                X402ErrorCode.NETWORK_ERROR,
                details={"method": method, "url": self.url, "rpc_error": error},
            )

        return body.get("result")
