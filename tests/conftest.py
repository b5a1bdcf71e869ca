"""Pytest hooks and fixtures."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from x402pay.builders.evm import LocalEvmAccount

# Well-known test key (never holds funds)
TEST_EVM_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

RpcResults = Dict[str, Any]


def rpc_response(request: httpx.Request, results: RpcResults, calls: Optional[List[Dict[str, Any]]] = None) -> httpx.Response:
    """Answer a JSON-RPC request from a method -> result (or callable) table."""
    body = json.loads(request.content)
    if calls is not None:
        calls.append(body)
    result = results[body["method"]]
    if callable(result):
        result = result(body.get("params"))
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.fixture
def rpc_http() -> Callable[..., httpx.AsyncClient]:
    """Factory for an httpx client whose transport answers JSON-RPC calls."""

    def factory(results: RpcResults, calls: Optional[List[Dict[str, Any]]] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: rpc_response(request, results, calls))
        )

    return factory


@pytest.fixture
def evm_account() -> LocalEvmAccount:
    return LocalEvmAccount(TEST_EVM_KEY)
