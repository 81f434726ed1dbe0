"""Trade execution layer - Jupiter swaps and PnL accounting."""

from handoff_trader.execution.engine import TradeExecutionEngine, TradeResult
from handoff_trader.execution.jupiter import JupiterClient, JupiterError, NoRouteError
from handoff_trader.execution.ledger import FillType, PnLLedger, PnLReport, TransactionRecord
from handoff_trader.execution.wallet import SolanaWallet, WalletError, load_keypair

__all__ = [
    "FillType",
    "JupiterClient",
    "JupiterError",
    "NoRouteError",
    "PnLLedger",
    "PnLReport",
    "SolanaWallet",
    "TradeExecutionEngine",
    "TradeResult",
    "TransactionRecord",
    "WalletError",
    "load_keypair",
]
