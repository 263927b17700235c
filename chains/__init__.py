"""
chains - RPC access and gas pricing.
"""

from chains.gas import GasOracle, StaticGasOracle, gas_cost_wei, submission_fees
from chains.providers import RPCProvider, RPCResponse, RPCStats

__all__ = [
    "GasOracle",
    "RPCProvider",
    "RPCResponse",
    "RPCStats",
    "StaticGasOracle",
    "gas_cost_wei",
    "submission_fees",
]
