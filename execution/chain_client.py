# PATH: execution/chain_client.py
"""
Chain clients: how the orchestrator reaches the execution unit.

  LocalChainClient - the in-process ArbitrageUnit on a Ledger; every
                     broadcast executes immediately as one transaction.
  RpcChainClient   - the deployed contract over JSON-RPC; calldata is
                     ABI-encoded with eth_abi, transactions are signed
                     with eth_account, outcomes are decoded from receipts.

OUTCOME CONTRACT:
  receipt status 0               -> REVERTED (hard revert, reason if known)
  ArbitrageExecuted in the logs  -> SUCCESS (realized profit from the event)
  ArbitrageFailed in the logs    -> FAILED (reason string from the event)
  no receipt before the timeout  -> NOT_INCLUDED
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from eth_abi import decode, encode
from eth_account import Account
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

from core.constants import DEFAULT_GAS_LIMIT, ExecutionStatus
from core.exceptions import RPCError, UnitRevert
from core.logging import get_logger
from core.models import Route
from core.time import now_seconds
from core.validators import normalize_address
from execution.arbitrage_unit import ArbitrageUnit
from execution.events import ArbitrageExecuted, ArbitrageFailed
from execution.ledger import Ledger

logger = get_logger(__name__)


# =============================================================================
# ABI
# =============================================================================

ROUTE_TUPLE = "(address[],uint8[],uint256,uint256)"

EXECUTE_SIGNATURE = f"executeArbitrage(address,address,uint256,{ROUTE_TUPLE})"
EXECUTE_NATIVE_SIGNATURE = f"executeArbitrageWithNativeAsset(address,{ROUTE_TUPLE})"
UPDATE_PARAMETERS_SIGNATURE = "updateParameters(uint256,uint256,uint256,uint256)"

SELECTOR_EXECUTE = function_signature_to_4byte_selector(EXECUTE_SIGNATURE)
SELECTOR_EXECUTE_NATIVE = function_signature_to_4byte_selector(EXECUTE_NATIVE_SIGNATURE)
SELECTOR_UPDATE_PARAMETERS = function_signature_to_4byte_selector(UPDATE_PARAMETERS_SIGNATURE)

TOPIC_EXECUTED = "0x" + event_signature_to_log_topic(
    "ArbitrageExecuted(address,address,uint256,uint256,uint256,uint256)"
).hex()
TOPIC_FAILED = "0x" + event_signature_to_log_topic(
    "ArbitrageFailed(address,address,string,uint256)"
).hex()


def _route_tuple(route: Route) -> tuple:
    return (
        list(route.path),
        list(route.venue_indices),
        route.expected_profit,
        route.timestamp,
    )


def encode_execute_call(token_a: str, token_b: str, amount_in: int, route: Route) -> str:
    args = encode(
        ["address", "address", "uint256", ROUTE_TUPLE],
        [normalize_address(token_a), normalize_address(token_b), amount_in, _route_tuple(route)],
    )
    return "0x" + (SELECTOR_EXECUTE + args).hex()


def encode_execute_native_call(token_b: str, route: Route) -> str:
    args = encode(["address", ROUTE_TUPLE], [normalize_address(token_b), _route_tuple(route)])
    return "0x" + (SELECTOR_EXECUTE_NATIVE + args).hex()


def encode_update_parameters_call(
    min_profit_bps: int,
    max_gas_price: int,
    min_reserve_ratio_bps: int,
    slippage_bps: int,
) -> str:
    args = encode(
        ["uint256", "uint256", "uint256", "uint256"],
        [min_profit_bps, max_gas_price, min_reserve_ratio_bps, slippage_bps],
    )
    return "0x" + (SELECTOR_UPDATE_PARAMETERS + args).hex()


def _hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


# =============================================================================
# MODELS
# =============================================================================

@dataclass
class ExecutionRequest:
    """One call to the execution unit. route.timestamp is set at submission."""
    token_a: str
    token_b: str
    amount_in: int
    route: Route
    use_native: bool = False
    gas_limit: int = DEFAULT_GAS_LIMIT


@dataclass
class SignedExecution:
    raw_tx: str
    tx_hash: str
    request: ExecutionRequest
    fees: Dict[str, int] = field(default_factory=dict)


@dataclass
class ExecutionOutcome:
    status: ExecutionStatus
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    amount_out: Optional[int] = None
    profit: Optional[int] = None
    reason: Optional[str] = None
    effective_gas_price: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS


def effective_gas_price(fees: Dict[str, int]) -> int:
    return fees.get("gasPrice") or fees.get("maxFeePerGas", 0)


def receipt_status(receipt: Dict[str, Any]) -> int:
    status = receipt.get("status")
    return int(status, 16) if isinstance(status, str) else int(status or 0)


# =============================================================================
# INTERFACE
# =============================================================================

class ChainClient(ABC):
    """What the orchestrator and relay client need from the chain."""

    chain_id: int

    @abstractmethod
    async def get_block_number(self) -> int:
        ...

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def sign_execution(self, request: ExecutionRequest, fees: Dict[str, int]) -> SignedExecution:
        ...

    @abstractmethod
    async def broadcast(self, signed: SignedExecution) -> str:
        ...

    @abstractmethod
    def decode_outcome(self, tx_hash: str, receipt: Dict[str, Any]) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def update_parameters(self, **changes: int) -> None:
        ...

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float,
        poll_interval: float = 1.0,
    ) -> Optional[Dict[str, Any]]:
        """Poll for the receipt; None when it does not appear before timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(poll_interval)

    async def wait_for_outcome(
        self,
        tx_hash: str,
        timeout: float,
        poll_interval: float = 1.0,
    ) -> ExecutionOutcome:
        receipt = await self.wait_for_receipt(tx_hash, timeout, poll_interval)
        if receipt is None:
            return ExecutionOutcome(
                status=ExecutionStatus.NOT_INCLUDED,
                tx_hash=tx_hash,
                reason="Receipt not found before timeout",
            )
        return self.decode_outcome(tx_hash, receipt)

    async def submit_public(
        self,
        request: ExecutionRequest,
        fees: Dict[str, int],
        timeout: float = 120.0,
    ) -> ExecutionOutcome:
        signed = await self.sign_execution(request, fees)
        tx_hash = await self.broadcast(signed)
        return await self.wait_for_outcome(tx_hash, timeout)


# =============================================================================
# LOCAL
# =============================================================================

class LocalChainClient(ChainClient):
    """
    Chain client over an in-process ArbitrageUnit.

    Receipts carry the unit's events instead of raw logs.
    """

    chain_id = 31337

    def __init__(
        self,
        unit: ArbitrageUnit,
        sender: Optional[str] = None,
        clock: Callable[[], int] = now_seconds,
    ):
        self.unit = unit
        self.ledger: Ledger = unit.ledger
        self.sender = normalize_address(sender) if sender else unit.owner
        self.clock = clock
        self._receipts: Dict[str, Dict[str, Any]] = {}
        self._nonce = 0

    async def get_block_number(self) -> int:
        return self.ledger.block_number

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self._receipts.get(tx_hash)

    async def sign_execution(self, request: ExecutionRequest, fees: Dict[str, int]) -> SignedExecution:
        self._nonce += 1
        if request.use_native:
            data = encode_execute_native_call(request.token_b, request.route)
        else:
            data = encode_execute_call(request.token_a, request.token_b, request.amount_in, request.route)
        tx_hash = "0x" + keccak(text=f"{self.sender}:{self._nonce}:{data}").hex()
        return SignedExecution(raw_tx=data, tx_hash=tx_hash, request=request, fees=dict(fees))

    async def broadcast(self, signed: SignedExecution) -> str:
        request = signed.request
        gas_price = effective_gas_price(signed.fees)
        mark = len(self.unit.events)
        status, reason = 1, None
        try:
            with self.ledger.transaction(self.sender, gas_price=gas_price, timestamp=self.clock()):
                if request.use_native:
                    self.unit.execute_arbitrage_with_native_asset(
                        self.sender, request.token_b, request.route, request.amount_in
                    )
                else:
                    self.unit.execute_arbitrage(
                        self.sender, request.token_a, request.token_b, request.amount_in, request.route
                    )
        except UnitRevert as e:
            status, reason = 0, e.reason.value

        self._receipts[signed.tx_hash] = {
            "transactionHash": signed.tx_hash,
            "blockNumber": self.ledger.block_number,
            "status": status,
            "revertReason": reason,
            "effectiveGasPrice": gas_price,
            "events": self.unit.events.since(mark),
        }
        return signed.tx_hash

    def decode_outcome(self, tx_hash: str, receipt: Dict[str, Any]) -> ExecutionOutcome:
        outcome = ExecutionOutcome(
            status=ExecutionStatus.REVERTED,
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            reason=receipt.get("revertReason"),
            effective_gas_price=receipt.get("effectiveGasPrice"),
        )
        if receipt["status"] == 0:
            return outcome
        for event in receipt.get("events", []):
            if isinstance(event, ArbitrageExecuted):
                outcome.status = ExecutionStatus.SUCCESS
                outcome.amount_out = event.amount_out
                outcome.profit = event.profit
                return outcome
            if isinstance(event, ArbitrageFailed):
                outcome.status = ExecutionStatus.FAILED
                outcome.reason = event.reason
                return outcome
        return outcome

    async def update_parameters(self, **changes: int) -> None:
        self.unit.update_parameters(self.sender, **changes)


# =============================================================================
# RPC
# =============================================================================

class RpcChainClient(ChainClient):
    """
    Chain client for the deployed contract.

    Usage:
        client = RpcChainClient(provider, contract, private_key, chain_id=1)
        signed = await client.sign_execution(request, fees)
    """

    def __init__(
        self,
        provider: Any,
        contract_address: str,
        private_key: str,
        chain_id: int,
        parameters: Optional[Dict[str, int]] = None,
        receipt_timeout: float = 120.0,
        poll_interval: float = 1.0,
    ):
        self.provider = provider
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.contract_address = normalize_address(contract_address)
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        # Last known on-chain values; updateParameters takes all four
        self.parameters: Dict[str, int] = dict(parameters or {})

    @property
    def sender(self) -> str:
        return self.account.address

    async def get_block_number(self) -> int:
        return await self.provider.get_block_number()

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.provider.get_transaction_receipt(tx_hash)

    async def _sign(self, data: str, fees: Dict[str, int], gas_limit: int, value: int = 0) -> tuple:
        nonce = await self.provider.get_transaction_count(self.account.address)
        tx: Dict[str, Any] = {
            "to": to_checksum_address(self.contract_address),
            "data": data,
            "value": value,
            "gas": gas_limit,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        tx.update(fees)
        if "maxFeePerGas" in fees:
            tx["type"] = 2
        signed = self.account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex(), "0x" + bytes(signed.hash).hex()

    async def sign_execution(self, request: ExecutionRequest, fees: Dict[str, int]) -> SignedExecution:
        if request.use_native:
            data = encode_execute_native_call(request.token_b, request.route)
            value = request.amount_in
        else:
            data = encode_execute_call(request.token_a, request.token_b, request.amount_in, request.route)
            value = 0
        raw_tx, tx_hash = await self._sign(data, fees, request.gas_limit, value)
        return SignedExecution(raw_tx=raw_tx, tx_hash=tx_hash, request=request, fees=dict(fees))

    async def broadcast(self, signed: SignedExecution) -> str:
        tx_hash = await self.provider.send_raw_transaction(signed.raw_tx)
        logger.info("Transaction sent", extra={"context": {"tx_hash": tx_hash}})
        return tx_hash

    def decode_outcome(self, tx_hash: str, receipt: Dict[str, Any]) -> ExecutionOutcome:
        status = receipt_status(receipt)
        block = receipt.get("blockNumber")
        price = receipt.get("effectiveGasPrice")
        outcome = ExecutionOutcome(
            status=ExecutionStatus.REVERTED,
            tx_hash=tx_hash,
            block_number=int(block, 16) if isinstance(block, str) else block,
            effective_gas_price=int(price, 16) if isinstance(price, str) else price,
        )
        if status == 0:
            return outcome

        for log in receipt.get("logs", []):
            if normalize_address(log.get("address", "")) != self.contract_address:
                continue
            topics: List[str] = [t.lower() for t in log.get("topics", [])]
            if not topics:
                continue
            data = _hex_to_bytes(log.get("data", "0x"))
            if topics[0] == TOPIC_EXECUTED:
                amount_in, amount_out, profit, _ = decode(["uint256"] * 4, data)
                outcome.status = ExecutionStatus.SUCCESS
                outcome.amount_out = amount_out
                outcome.profit = profit
                return outcome
            if topics[0] == TOPIC_FAILED:
                reason, _ = decode(["string", "uint256"], data)
                outcome.status = ExecutionStatus.FAILED
                outcome.reason = reason
                return outcome
        return outcome

    async def update_parameters(self, **changes: int) -> None:
        merged = {**self.parameters, **changes}
        missing = {"min_profit_bps", "max_gas_price", "min_reserve_ratio_bps", "slippage_bps"} - set(merged)
        if missing:
            raise RPCError(
                "Cannot update parameters without current values",
                details={"missing": sorted(missing)},
            )
        data = encode_update_parameters_call(
            merged["min_profit_bps"],
            merged["max_gas_price"],
            merged["min_reserve_ratio_bps"],
            merged["slippage_bps"],
        )
        gas_price = await self.provider.get_gas_price()
        raw_tx, _ = await self._sign(data, {"gasPrice": gas_price}, gas_limit=100_000)
        tx_hash = await self.provider.send_raw_transaction(raw_tx)
        receipt = await self.wait_for_receipt(tx_hash, self.receipt_timeout, self.poll_interval)
        if receipt is None:
            raise RPCError("Parameter update not mined", details={"tx_hash": tx_hash})
        if receipt_status(receipt) == 0:
            raise RPCError("Parameter update reverted", details={"tx_hash": tx_hash})
        self.parameters = merged
        logger.info("Parameters updated", extra={"context": {"tx_hash": tx_hash, **changes}})
