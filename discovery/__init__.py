# PATH: discovery/__init__.py
"""
Discovery package for flashloop.

- registry: token list, watched pairs, liquidity flags, new-token discovery
"""

from discovery.registry import TokenRegistry, WatchedPair

__all__ = ["TokenRegistry", "WatchedPair"]
