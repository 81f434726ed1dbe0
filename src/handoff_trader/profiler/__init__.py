"""Token profiling - mint facts and prices."""

from handoff_trader.profiler.token_info import MintInfo, TokenInfoClient, TokenInfoError

__all__ = ["MintInfo", "TokenInfoClient", "TokenInfoError"]
