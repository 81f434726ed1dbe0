"""Handoff Trader - Solana custody-pattern watcher and Jupiter trade executor."""

__version__ = "0.1.0"
