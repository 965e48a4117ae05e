"""
Solana JSON-RPC client with prioritized endpoint failover.

Every call runs on its own worker thread and is raced against a timer, so a
hung endpoint never delays the next one in line. An endpoint that errors or
times out falls through to the next one. Only exhaustion of the whole list is
reported as a failure.
"""

from __future__ import annotations

import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import requests

from crushai.errors import UpstreamError
from crushai.metrics import rpc_failovers

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0

_ids = itertools.count(1)


@dataclass(frozen=True)
class RpcOk:
    value: Any
    endpoint: str = ""

    ok = True


@dataclass(frozen=True)
class RpcError:
    message: str
    endpoint: str = ""

    ok = False


RpcResult = Union[RpcOk, RpcError]


def _redact(url: str) -> str:
    return url.split("?", 1)[0]


class SolanaRpcClient:
    """Minimal JSON-RPC 2.0 client over HTTPS POST."""

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        if not endpoints:
            raise ValueError("at least one RPC endpoint is required")
        self.endpoints: List[str] = list(endpoints)
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def _post(self, endpoint: str, body: dict) -> Any:
        # Same bound as the race, so an abandoned worker exits soon after.
        response = self.session.post(
            endpoint,
            json=body,
            headers={"content-type": "application/json"},
            timeout=self.timeout,
        )
        return response.json()

    def _call_endpoint(self, endpoint: str, method: str, params: list) -> RpcResult:
        body = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params}
        # A private single-worker pool per call: the timer starts with the
        # request, never behind calls abandoned by other requests.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rpc")
        try:
            future = executor.submit(self._post, endpoint, body)
            payload = future.result(timeout=self.timeout)
        except FutureTimeout:
            return RpcError(f"timeout after {self.timeout}s", endpoint)
        except (requests.RequestException, ValueError) as e:
            return RpcError(f"transport error: {e}", endpoint)
        finally:
            executor.shutdown(wait=False)

        if not isinstance(payload, dict):
            return RpcError("malformed response", endpoint)
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return RpcError(message or "rpc error", endpoint)
        if "result" not in payload:
            return RpcError("missing result", endpoint)
        return RpcOk(payload["result"], endpoint)

    def call(self, method: str, params: list) -> RpcResult:
        """Try each endpoint in priority order; return the first good result."""
        last: RpcResult = RpcError("no endpoints configured")
        for index, endpoint in enumerate(self.endpoints):
            result = self._call_endpoint(endpoint, method, params)
            if result.ok:
                return result
            last = result
            logger.warning(f"RPC {method} failed on {_redact(endpoint)}: {result.message}")
            if index + 1 < len(self.endpoints):
                rpc_failovers.labels(method=method).inc()
        return last

    def call_or_raise(self, method: str, params: list) -> Any:
        result = self.call(method, params)
        if not result.ok:
            raise UpstreamError("rpc_unavailable", f"{method} failed on all endpoints: {result.message}")
        return result.value

    # Typed wrappers for the methods the application consumes.

    def get_token_accounts_by_owner(self, owner: str, filter_: dict) -> RpcResult:
        return self.call(
            "getTokenAccountsByOwner",
            [owner, filter_, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )

    def get_token_supply(self, mint: str) -> RpcResult:
        return self.call("getTokenSupply", [mint])

    def get_signatures_for_address(self, address: str, limit: int = 40) -> RpcResult:
        return self.call("getSignaturesForAddress", [address, {"limit": limit}])

    def get_transaction(self, signature: str) -> RpcResult:
        return self.call(
            "getTransaction",
            [
                signature,
                {"encoding": "jsonParsed", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
            ],
        )

    def close(self) -> None:
        self.session.close()
