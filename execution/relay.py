# PATH: execution/relay.py
"""
Private relay client (Flashbots-style bundles).

BUNDLE CONTRACT:
================

  submit(signed, target_blocks=N) sends one single-transaction bundle per
  target block current+1 .. current+N. Each submission owns a future that
  resolves to exactly one BundleResolution:

    INCLUDED                        tx receipt is in the target block
    BLOCK_PASSED_WITHOUT_INCLUSION  chain reached the target block, tx not in it
    BLOCK_NOT_MINED                 target block did not appear before its deadline

  Futures are resolved by a watcher task polling block number and receipt.
  Callers await them with a timeout; once one is INCLUDED the rest are
  cancelled, never retried.

Auth: X-Flashbots-Signature = "<address>:<sig>", sig is an EIP-191
signature over the hex keccak of the request body.
================
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from core.constants import BundleResolution
from core.exceptions import InfraError, RelayError
from core.logging import get_logger
from execution.chain_client import ChainClient, SignedExecution

logger = get_logger(__name__)


@dataclass
class BundleSubmission:
    """One bundle for one target block."""
    target_block: int
    tx_hash: str
    deadline: float
    bundle_hash: Optional[str] = None
    future: "asyncio.Future[BundleResolution]" = field(default=None, repr=False)
    receipt: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def resolved(self) -> bool:
        return self.future is not None and self.future.done() and not self.future.cancelled()

    @property
    def resolution(self) -> Optional[BundleResolution]:
        return self.future.result() if self.resolved else None


def _as_int(value: Any) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


class RelayClient:
    """
    Submits signed executions as bundles and tracks their inclusion.

    Usage:
        relay = RelayClient(url, auth_key, chain_client)
        submissions = await relay.submit(signed, target_blocks=5)
        included = await relay.await_inclusion(submissions, timeout=60)
    """

    def __init__(
        self,
        relay_url: str,
        auth_key: str,
        chain: ChainClient,
        block_time_seconds: float = 12.0,
        poll_interval: float = 1.0,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not relay_url:
            raise RelayError("Relay URL not configured")
        self.relay_url = relay_url
        # Relay reputation key; a throwaway key works but earns no reputation
        self.signer = Account.from_key(auth_key) if auth_key else Account.create()
        self.chain = chain
        self.block_time_seconds = block_time_seconds
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._watchers: Set[asyncio.Task] = set()
        self._request_id = 0

    @property
    def watching(self) -> int:
        """Inclusion watchers still running."""
        return len(self._watchers)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        for task in list(self._watchers):
            task.cancel()
        self._watchers.clear()
        if self._client:
            await self._client.aclose()
            self._client = None

    def sign_body(self, body: str) -> str:
        message = encode_defunct(text="0x" + keccak(text=body).hex())
        signature = self.signer.sign_message(message).signature
        return f"{self.signer.address}:0x{bytes(signature).hex()}"

    async def send_bundle(self, raw_txs: List[str], target_block: int) -> Optional[str]:
        """
        POST eth_sendBundle for one target block.

        Returns:
            Bundle hash if the relay returned one

        Raises:
            RelayError: Transport failure or relay-side error
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_sendBundle",
            "params": [{"txs": raw_txs, "blockNumber": hex(target_block)}],
        }
        body = json.dumps(payload, separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.sign_body(body),
        }

        client = await self._get_client()
        try:
            resp = await client.post(self.relay_url, content=body, headers=headers)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RelayError(
                f"Bundle submission failed: {e}",
                details={"relay": self.relay_url, "target_block": target_block},
            )

        if "error" in data:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RelayError(
                f"Relay rejected bundle: {message}",
                details={"relay": self.relay_url, "target_block": target_block},
            )

        result = data.get("result")
        if isinstance(result, dict):
            return result.get("bundleHash") or result.get("hash")
        return result if isinstance(result, str) else None

    async def submit(self, signed: SignedExecution, target_blocks: int) -> List[BundleSubmission]:
        """
        Send one bundle per target block and start watching each.

        Target blocks whose submission fails are dropped with a warning;
        RelayError is raised only when none could be submitted.
        """
        loop = asyncio.get_running_loop()
        current = await self.chain.get_block_number()
        submissions: List[BundleSubmission] = []
        errors: List[str] = []

        for offset in range(1, target_blocks + 1):
            target = current + offset
            try:
                bundle_hash = await self.send_bundle([signed.raw_tx], target)
            except RelayError as e:
                logger.warning(str(e), extra={"context": {"target_block": target}})
                errors.append(str(e))
                continue

            submission = BundleSubmission(
                target_block=target,
                tx_hash=signed.tx_hash,
                bundle_hash=bundle_hash,
                deadline=loop.time() + (offset + 1) * self.block_time_seconds,
                future=loop.create_future(),
            )
            submissions.append(submission)
            task = asyncio.create_task(self._watch(submission))
            self._watchers.add(task)
            task.add_done_callback(self._watchers.discard)

        if not submissions:
            raise RelayError(
                "No bundle could be submitted",
                details={"target_blocks": target_blocks, "errors": errors},
            )

        logger.info(
            "Bundle submitted",
            extra={"context": {
                "tx_hash": signed.tx_hash,
                "target_blocks": [s.target_block for s in submissions],
            }},
        )
        return submissions

    async def _watch(self, submission: BundleSubmission) -> None:
        loop = asyncio.get_running_loop()
        while not submission.future.done():
            try:
                block = await self.chain.get_block_number()
                receipt = await self.chain.get_receipt(submission.tx_hash)
            except InfraError as e:
                logger.debug(f"Inclusion poll failed: {e}")
                block, receipt = None, None

            resolution = None
            if receipt is not None:
                submission.receipt = receipt
                if _as_int(receipt["blockNumber"]) == submission.target_block:
                    resolution = BundleResolution.INCLUDED
                else:
                    resolution = BundleResolution.BLOCK_PASSED_WITHOUT_INCLUSION
            elif block is not None and block >= submission.target_block:
                resolution = BundleResolution.BLOCK_PASSED_WITHOUT_INCLUSION
            elif loop.time() >= submission.deadline:
                resolution = BundleResolution.BLOCK_NOT_MINED

            if resolution is not None:
                if not submission.future.done():
                    submission.future.set_result(resolution)
                logger.debug(
                    "Bundle resolved",
                    extra={"context": {
                        "target_block": submission.target_block,
                        "resolution": resolution.value,
                    }},
                )
                return
            await asyncio.sleep(self.poll_interval)

    async def await_inclusion(
        self,
        submissions: List[BundleSubmission],
        timeout: float,
    ) -> Optional[BundleSubmission]:
        """
        Wait until one submission is INCLUDED or all resolve otherwise.

        Pending futures are cancelled on return.
        """
        pending = {s.future: s for s in submissions}
        included: Optional[BundleSubmission] = None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while pending and included is None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            done, _ = await asyncio.wait(
                list(pending), timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                break
            for future in done:
                submission = pending.pop(future)
                if not future.cancelled() and future.result() == BundleResolution.INCLUDED:
                    included = submission

        for future in pending:
            future.cancel()
        return included
