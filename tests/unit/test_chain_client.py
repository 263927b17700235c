"""
tests/unit/test_chain_client.py - Chain client encoding, signing and outcome tests.
"""

import pytest
from eth_abi import decode, encode
from eth_utils import keccak

from core.constants import GWEI, ExecutionStatus, RevertReason
from core.exceptions import RPCError
from core.models import Route
from execution.chain_client import (
    EXECUTE_SIGNATURE,
    ROUTE_TUPLE,
    SELECTOR_EXECUTE,
    TOPIC_EXECUTED,
    TOPIC_FAILED,
    ExecutionRequest,
    LocalChainClient,
    RpcChainClient,
    effective_gas_price,
    encode_execute_call,
)
from strategy.jobs.local_market import E18, OWNER, USDC, WETH

CONTRACT = "0x" + "cc" * 20
PRIVATE_KEY = "0x" + "42" * 32
NOW = 1_700_000_000
CURRENT_PARAMETERS = {
    "min_profit_bps": 10,
    "max_gas_price": 100 * GWEI,
    "min_reserve_ratio_bps": 0,
    "slippage_bps": 50,
}


class FakeProvider:
    def __init__(self, receipt_status="0x1"):
        self.sent = []
        self.receipt_status = receipt_status
        self.receipts = {}

    async def get_transaction_count(self, address, block="pending"):
        return 7

    async def get_gas_price(self):
        return 3 * GWEI

    async def send_raw_transaction(self, raw_tx):
        self.sent.append(raw_tx)
        tx_hash = "0x" + keccak(hexstr=raw_tx).hex()
        if self.receipt_status is not None:
            self.receipts[tx_hash] = {"status": self.receipt_status, "blockNumber": "0x10", "logs": []}
        return tx_hash

    async def get_transaction_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)


def rpc_client(parameters=None, receipt_status="0x1") -> RpcChainClient:
    return RpcChainClient(
        FakeProvider(receipt_status),
        CONTRACT,
        PRIVATE_KEY,
        chain_id=1,
        parameters=parameters,
        receipt_timeout=0.05,
        poll_interval=0.01,
    )


def profitable_request(timestamp=NOW) -> ExecutionRequest:
    return ExecutionRequest(WETH, USDC, E18, Route((WETH, USDC, WETH), (1, 0), timestamp=timestamp))


class TestEncoding:
    def test_execute_call_layout(self):
        route = Route((WETH, USDC, WETH), (1, 0), expected_profit=5, timestamp=NOW)
        data = bytes.fromhex(encode_execute_call(WETH, USDC, E18, route)[2:])

        assert EXECUTE_SIGNATURE.startswith("executeArbitrage(")
        assert data[:4] == SELECTOR_EXECUTE
        token_a, token_b, amount, encoded_route = decode(
            ["address", "address", "uint256", ROUTE_TUPLE], data[4:]
        )
        assert (token_a.lower(), token_b.lower(), amount) == (WETH, USDC, E18)
        assert [a.lower() for a in encoded_route[0]] == [WETH, USDC, WETH]
        assert list(encoded_route[1]) == [1, 0]
        assert encoded_route[2:] == (5, NOW)

    def test_effective_gas_price(self):
        assert effective_gas_price({"gasPrice": 5}) == 5
        assert effective_gas_price({"maxFeePerGas": 9, "maxPriorityFeePerGas": 1}) == 9
        assert effective_gas_price({}) == 0


class TestRpcChainClient:
    @pytest.mark.asyncio
    async def test_sign_execution(self):
        client = rpc_client()
        signed = await client.sign_execution(profitable_request(), {"gasPrice": 10 * GWEI})

        assert signed.tx_hash == "0x" + keccak(hexstr=signed.raw_tx).hex()
        assert signed.fees == {"gasPrice": 10 * GWEI}

    @pytest.mark.asyncio
    async def test_eip1559_fees(self):
        client = rpc_client()
        signed = await client.sign_execution(
            profitable_request(), {"maxFeePerGas": 30 * GWEI, "maxPriorityFeePerGas": 2 * GWEI}
        )
        # typed transaction envelope
        assert signed.raw_tx.startswith("0x02")

    def test_decode_success(self):
        client = rpc_client()
        receipt = {
            "status": "0x1",
            "blockNumber": "0x10",
            "effectiveGasPrice": hex(12 * GWEI),
            "logs": [{
                "address": CONTRACT,
                "topics": [TOPIC_EXECUTED, "0x" + "00" * 32, "0x" + "00" * 32],
                "data": "0x" + encode(["uint256"] * 4, [E18, E18 + 3, 3, NOW]).hex(),
            }],
        }
        outcome = client.decode_outcome("0xabc", receipt)
        assert outcome.status == ExecutionStatus.SUCCESS
        assert outcome.profit == 3
        assert outcome.amount_out == E18 + 3
        assert outcome.block_number == 16
        assert outcome.effective_gas_price == 12 * GWEI

    def test_decode_failure_event(self):
        client = rpc_client()
        receipt = {
            "status": 1,
            "blockNumber": 16,
            "logs": [
                {"address": "0x" + "dd" * 20, "topics": [TOPIC_EXECUTED], "data": "0x"},
                {
                    "address": CONTRACT,
                    "topics": [TOPIC_FAILED],
                    "data": "0x" + encode(["string", "uint256"], ["Route expired", NOW]).hex(),
                },
            ],
        }
        outcome = client.decode_outcome("0xabc", receipt)
        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.reason == "Route expired"

    def test_decode_reverted(self):
        outcome = rpc_client().decode_outcome("0xabc", {"status": "0x0", "blockNumber": "0x10", "logs": []})
        assert outcome.status == ExecutionStatus.REVERTED

    @pytest.mark.asyncio
    async def test_update_parameters_needs_current_values(self):
        client = rpc_client()
        with pytest.raises(RPCError):
            await client.update_parameters(slippage_bps=20)
        assert client.provider.sent == []

    @pytest.mark.asyncio
    async def test_update_parameters_merges(self):
        client = rpc_client({
            "min_profit_bps": 10,
            "max_gas_price": 100 * GWEI,
            "min_reserve_ratio_bps": 0,
            "slippage_bps": 50,
        })
        await client.update_parameters(slippage_bps=20)
        assert len(client.provider.sent) == 1
        assert client.parameters["slippage_bps"] == 20
        assert client.parameters["min_profit_bps"] == 10

    @pytest.mark.asyncio
    async def test_reverted_update_keeps_known_parameters(self):
        client = rpc_client(CURRENT_PARAMETERS, receipt_status="0x0")
        with pytest.raises(RPCError, match="reverted"):
            await client.update_parameters(slippage_bps=20)
        assert len(client.provider.sent) == 1
        assert client.parameters["slippage_bps"] == 50

    @pytest.mark.asyncio
    async def test_unmined_update_keeps_known_parameters(self):
        client = rpc_client(CURRENT_PARAMETERS, receipt_status=None)
        with pytest.raises(RPCError, match="not mined"):
            await client.update_parameters(slippage_bps=20)
        assert client.parameters["slippage_bps"] == 50


class TestLocalChainClient:
    @pytest.mark.asyncio
    async def test_public_submission_success(self, market):
        client = LocalChainClient(market.unit, clock=lambda: NOW)
        block = await client.get_block_number()

        outcome = await client.submit_public(profitable_request(), {"gasPrice": 10 * GWEI}, timeout=1)

        assert outcome.status == ExecutionStatus.SUCCESS
        assert outcome.profit > 0
        assert outcome.effective_gas_price == 10 * GWEI
        assert outcome.block_number == block + 1

    @pytest.mark.asyncio
    async def test_expired_route_fails(self, market):
        client = LocalChainClient(market.unit, clock=lambda: NOW)
        outcome = await client.submit_public(
            profitable_request(timestamp=NOW - 301), {"gasPrice": 10 * GWEI}, timeout=1
        )
        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.reason == RevertReason.ROUTE_EXPIRED.value

    @pytest.mark.asyncio
    async def test_hard_revert_for_non_owner(self, market):
        client = LocalChainClient(market.unit, sender="0x" + "ee" * 20, clock=lambda: NOW)
        outcome = await client.submit_public(profitable_request(), {"gasPrice": 10 * GWEI}, timeout=1)
        assert outcome.status == ExecutionStatus.REVERTED
        assert outcome.reason == RevertReason.NOT_OWNER.value

    @pytest.mark.asyncio
    async def test_update_parameters(self, market):
        client = LocalChainClient(market.unit)
        assert client.sender == OWNER
        await client.update_parameters(slippage_bps=20)
        assert market.unit.params.slippage_bps == 20
