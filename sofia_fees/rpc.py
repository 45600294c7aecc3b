"""
rpc.py — JSON-RPC client for the chain node.

All POSTs are submitted through a RequestQueue, which owns retries for 429s
and transport errors. Everything else (HTTP errors, JSON-RPC errors, payloads
of the wrong shape) is raised straight to the caller.
"""
from __future__ import annotations

import itertools
import logging
from typing import Any

import requests

from . import config
from .http_helper import RequestQueue, RATE_LIMITED

logger = logging.getLogger(__name__)


# ----------------------
# Errors
# ----------------------
class RpcError(RuntimeError):
    def __init__(self, code: int, message: str, data: dict | None = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data or {}

class HttpError(RuntimeError):
    """Raised when the node answers with a non-2xx status (e.g. 401, 502)"""
    def __init__(self, status_code: int, message: str, url: str):
        super().__init__(f"HTTP {status_code} error for {url}: {message}")
        self.status_code = status_code
        self.message = message
        self.url = url

class RateLimitedError(HttpError):
    """HTTP 429 that outlived every retry of the request queue"""

class MalformedResponseError(RuntimeError):
    """The node answered, but not with the payload shape we expect"""


def _hex(i: int) -> str:
    return hex(i)

def _int(h: Any) -> int:
    if isinstance(h, int):
        return h
    return int(h, 16)


class RpcClient:
    def __init__(
        self,
        rpc_url: str | None = None,
        queue: RequestQueue | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ):
        self.rpc_url = rpc_url or config.RPC_URL
        self.queue = queue or RequestQueue()
        self.session = session or requests.Session()
        self.timeout = config.RPC_TIMEOUT if timeout is None else timeout
        self._ids = itertools.count(1)

    def call(self, method: str, params: list) -> Any:
        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        logger.debug(f"-> {method} {params}")

        resp = self.queue.submit(
            lambda: self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        )
        if resp.status_code == RATE_LIMITED:
            raise RateLimitedError(resp.status_code, f"rate limited on {method}", self.rpc_url)
        try:
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise HttpError(resp.status_code, str(e), self.rpc_url) from e

        try:
            j = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"{method}: response is not JSON") from e
        if not isinstance(j, dict):
            raise MalformedResponseError(f"{method}: expected a JSON object, got {type(j).__name__}")

        if "error" in j and j["error"]:
            err = j["error"]
            if not isinstance(err, dict):
                raise RpcError(-1, str(err))
            raise RpcError(int(err.get("code", -1)), str(err.get("message", "")), err.get("data"))
        if "result" not in j:
            raise MalformedResponseError(f"{method}: response has neither result nor error")
        return j["result"]

    # ----------------------
    # Typed helpers
    # ----------------------

    def block_number(self) -> int:
        result = self.call("eth_blockNumber", [])
        try:
            return _int(result)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"eth_blockNumber: bad result {result!r}") from e

    def get_block(self, number: int) -> dict:
        """Header of block `number` with `number` and `timestamp` as ints."""
        block = self.call("eth_getBlockByNumber", [_hex(number), False])
        if not isinstance(block, dict):
            raise MalformedResponseError(f"eth_getBlockByNumber({number}): got {block!r}")
        try:
            return {"number": number, "timestamp": _int(block["timestamp"])}
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"eth_getBlockByNumber({number}): no usable timestamp") from e

    def get_logs(self, address: str, topics: list[str] | None, from_block: int, to_block: int) -> list[dict]:
        params = {
            "fromBlock": _hex(from_block),
            "toBlock": _hex(to_block),
            "address": address,
        }
        if topics:
            params["topics"] = topics
        logs = self.call("eth_getLogs", [params])
        if not isinstance(logs, list):
            raise MalformedResponseError(f"eth_getLogs [{from_block}, {to_block}]: expected a list, got {type(logs).__name__}")
        return logs

    def get_balance(self, address: str, block: str = "latest") -> int:
        result = self.call("eth_getBalance", [address, block])
        try:
            return _int(result)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"eth_getBalance: bad result {result!r}") from e

    def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        result = self.call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str):
            raise MalformedResponseError(f"eth_call: expected hex string, got {result!r}")
        return result
