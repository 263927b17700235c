"""
chains/providers.py - JSON-RPC provider with failover.

Provides reliable RPC access with:
- Multiple endpoint failover
- Request timeout handling
- Connection pooling
- Latency tracking
"""

import os
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.exceptions import RPCError
from core.logging import get_logger

logger = get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


class RPCProvider:
    """
    RPC provider with failover support.

    Tries endpoints in order until one succeeds and tracks statistics per
    endpoint. A JSON-RPC error whose message contains "revert" is raised
    immediately: every endpoint would return the same answer.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_urls: list[str],
        timeout_seconds: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

        self.rpc_urls = self._resolve_urls(rpc_urls)

        self.stats: dict[str, RPCStats] = {
            url: RPCStats(url=url) for url in self.rpc_urls
        }

    def _resolve_urls(self, urls: list[str]) -> list[str]:
        """Expand ${VAR} placeholders; drop URLs whose variables are unset."""
        resolved = []
        for url in urls:
            missing = [name for name in _ENV_PATTERN.findall(url) if not os.getenv(name)]
            if missing:
                logger.warning(
                    "Skipping RPC endpoint with unset variables",
                    extra={"context": {"missing": missing}},
                )
                continue
            resolved.append(_ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), ""), url))
        return resolved

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        method: str,
        params: list | None = None,
    ) -> RPCResponse:
        """
        Make an RPC call with failover.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPCResponse with result and metadata

        Raises:
            RPCError: If all endpoints fail, or the call reverted
        """
        if not self.rpc_urls:
            raise RPCError(
                "No RPC endpoints configured",
                details={"chain_id": self.chain_id},
            )

        client = await self._get_client()
        last_error: Exception | str | None = None

        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1

            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params or [],
                "id": self._next_request_id(),
            }

            start_ms = int(time.time() * 1000)

            try:
                resp = await client.post(url, json=payload)
                latency_ms = int(time.time() * 1000) - start_ms
                result = resp.json()
            except httpx.TimeoutException as e:
                latency_ms = int(time.time() * 1000) - start_ms
                stats.failed_requests += 1
                stats.last_error = f"Timeout after {latency_ms}ms"
                last_error = e
                logger.debug(f"RPC timeout for {url}: {latency_ms}ms")
                continue
            except (httpx.HTTPError, ValueError) as e:
                stats.failed_requests += 1
                stats.last_error = str(e)
                last_error = e
                logger.debug(f"RPC failed for {url}: {e}")
                continue

            if "error" in result:
                error = result["error"]
                error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                stats.failed_requests += 1
                stats.last_error = error_msg
                if "revert" in error_msg.lower():
                    raise RPCError(
                        f"Call reverted: {error_msg}",
                        details={"url": url, "method": method, "revert": True},
                    )
                last_error = error_msg
                logger.debug(f"RPC error from {url}: {error_msg}")
                continue

            stats.successful_requests += 1
            stats.total_latency_ms += latency_ms
            stats.last_success_ts = int(time.time() * 1000)

            return RPCResponse(
                result=result.get("result"),
                latency_ms=latency_ms,
                endpoint_used=url,
            )

        raise RPCError(
            f"All RPC endpoints failed for chain {self.chain_id}",
            details={
                "chain_id": self.chain_id,
                "method": method,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last_error),
            },
        )

    async def get_chain_id(self) -> int:
        response = await self.call("eth_chainId")
        return int(response.result, 16)

    async def get_block_number(self) -> int:
        response = await self.call("eth_blockNumber")
        return int(response.result, 16)

    async def get_block(self, block: str | int = "latest") -> dict | None:
        """Block header (no transaction bodies) or None if not mined."""
        tag = hex(block) if isinstance(block, int) else block
        response = await self.call("eth_getBlockByNumber", [tag, False])
        return response.result

    async def eth_call(
        self,
        to: str,
        data: str,
        block: str = "latest",
        sender: Optional[str] = None,
    ) -> str:
        """
        Make eth_call and return the raw hex result.

        Args:
            to: Contract address
            data: Encoded call data
            block: Block number or "latest"
            sender: Optional from address (owner-gated view calls)
        """
        tx = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        response = await self.call("eth_call", [tx, block])
        return response.result or "0x"

    async def get_gas_price(self) -> int:
        """Current legacy gas price in wei."""
        response = await self.call("eth_gasPrice")
        return int(response.result, 16)

    async def get_max_priority_fee(self) -> int:
        response = await self.call("eth_maxPriorityFeePerGas")
        return int(response.result, 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        response = await self.call("eth_getTransactionCount", [address, block])
        return int(response.result, 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Broadcast a signed transaction; returns its hash."""
        response = await self.call("eth_sendRawTransaction", [raw_tx])
        return response.result

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        response = await self.call("eth_getTransactionReceipt", [tx_hash])
        return response.result

    def get_stats_summary(self) -> dict:
        """Get statistics summary for all endpoints."""
        return {
            url: {
                "total_requests": s.total_requests,
                "success_rate": round(s.success_rate, 3),
                "avg_latency_ms": s.avg_latency_ms,
                "last_error": s.last_error,
            }
            for url, s in self.stats.items()
        }
