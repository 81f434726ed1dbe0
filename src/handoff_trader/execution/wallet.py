"""The bot's own Solana wallet: balances, signing, submission, confirmation."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time

from solana.rpc.async_api import AsyncClient
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_TIMEOUT_SECONDS = 120.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
_CONFIRMED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


class WalletError(Exception):
    """Base exception for wallet errors."""


class TransactionFailedError(WalletError):
    """Raised when a submitted transaction lands with an error."""


class ConfirmationTimeoutError(WalletError):
    """Raised when a transaction is not confirmed within the timeout."""


def load_keypair(raw: str) -> Keypair:
    """Parse a private key given as a base58 string or a JSON byte array.

    Raises:
        ValueError: If the value is in neither format.
    """
    value = raw.strip()

    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("PRIVATE_KEY JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise ValueError("Unsupported PRIVATE_KEY format.")


class SolanaWallet:
    """Signs and submits transactions for one keypair.

    Every RPC call takes a slot from the dispatcher's ``RPC`` bucket.
    """

    def __init__(
        self,
        rpc: AsyncClient,
        keypair: Keypair | None,
        *,
        dispatcher: Dispatcher | None = None,
        confirm_timeout_seconds: float = DEFAULT_CONFIRM_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._rpc = rpc
        self._keypair = keypair
        self._dispatcher = dispatcher or Dispatcher()
        self._confirm_timeout = confirm_timeout_seconds
        self._poll_interval = poll_interval_seconds
        # signature -> blockhash it was signed against
        self._blockhashes: dict[str, Hash] = {}

    @property
    def has_signer(self) -> bool:
        return self._keypair is not None

    def _require_keypair(self) -> Keypair:
        if self._keypair is None:
            raise WalletError("No signing key configured")
        return self._keypair

    @property
    def public_key(self) -> str:
        return str(self._require_keypair().pubkey())

    async def get_sol_balance(self) -> int:
        """Native balance in lamports."""
        owner = self._require_keypair().pubkey()
        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            resp = await self._rpc.get_balance(owner)
        except Exception as e:
            raise WalletError(f"getBalance failed: {e}") from e
        return int(resp.value)

    async def get_token_balance(self, mint: str) -> int:
        """Raw token balance summed over every token account for ``mint``."""
        owner = self._require_keypair().pubkey()
        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            resp = await self._rpc.get_token_accounts_by_owner_json_parsed(
                owner,
                TokenAccountOpts(mint=Pubkey.from_string(mint)),
            )
        except Exception as e:
            raise WalletError(f"getTokenAccountsByOwner failed for {mint}: {e}") from e

        total = 0
        for keyed in resp.value or []:
            parsed = getattr(keyed.account.data, "parsed", None)
            if not isinstance(parsed, dict):
                continue
            amount = ((parsed.get("info") or {}).get("tokenAmount") or {}).get("amount")
            if amount is not None:
                total += int(amount)
        return total

    async def sign_and_send(self, tx_bytes: bytes) -> str:
        """Sign a serialized versioned transaction and submit it.

        Returns:
            The transaction signature.
        """
        keypair = self._require_keypair()
        try:
            unsigned = VersionedTransaction.from_bytes(tx_bytes)
            signed = VersionedTransaction(unsigned.message, [keypair])
        except Exception as e:
            raise WalletError(f"Failed to sign transaction: {e}") from e

        signature = await self._send(bytes(signed), skip_preflight=True)
        self._blockhashes[signature] = signed.message.recent_blockhash
        return signature

    async def _send(self, raw: bytes, *, skip_preflight: bool) -> str:
        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            resp = await self._rpc.send_raw_transaction(
                raw,
                opts=TxOpts(skip_preflight=skip_preflight, max_retries=2),
            )
        except Exception as e:
            raise WalletError(f"sendTransaction failed: {e}") from e
        return str(resp.value)

    async def confirm(self, signature: str, *, timeout_seconds: float | None = None) -> None:
        """Wait until ``signature`` is confirmed or finalized.

        Args:
            signature: Transaction to watch.
            timeout_seconds: Overrides the configured timeout. ``0`` reads
                the status once.

        Raises:
            TransactionFailedError: If the transaction landed with an error.
            ConfirmationTimeoutError: If the timeout elapses first.
        """
        sig = Signature.from_string(signature)
        timeout = self._confirm_timeout if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            await self._dispatcher.acquire(LimiterId.RPC)
            try:
                resp = await self._rpc.get_signature_statuses([sig])
            except Exception as e:
                logger.warning("Status poll for %s failed: %s", signature, e)
            else:
                status = resp.value[0] if resp.value else None
                if status is not None:
                    if status.err is not None:
                        raise TransactionFailedError(f"Transaction {signature} failed: {status.err}")
                    if status.confirmation_status in _CONFIRMED:
                        return

            if time.monotonic() >= deadline:
                raise ConfirmationTimeoutError(f"Transaction {signature} not confirmed after {timeout:.0f}s")
            await asyncio.sleep(self._poll_interval)

    async def is_expired(self, signature: str) -> bool:
        """Whether an unconfirmed transaction can no longer land.

        A transaction expires once the blockhash it was signed against is no
        longer valid. Signatures this wallet did not submit count as expired.
        """
        blockhash = self._blockhashes.get(signature)
        if blockhash is None:
            return True
        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            resp = await self._rpc.is_blockhash_valid(blockhash)
        except Exception as e:
            raise WalletError(f"isBlockhashValid failed: {e}") from e
        if resp.value:
            return False
        self._blockhashes.pop(signature, None)
        return True

    def forget(self, signature: str) -> None:
        """Drop the blockhash kept for ``signature`` once it is settled."""
        self._blockhashes.pop(signature, None)

    async def transfer_sol(self, to_address: str, lamports: int) -> str:
        """Send a plain SOL transfer and return its signature."""
        keypair = self._require_keypair()
        if lamports <= 0:
            raise WalletError("Transfer amount must be positive")

        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            blockhash = (await self._rpc.get_latest_blockhash()).value.blockhash
        except Exception as e:
            raise WalletError(f"getLatestBlockhash failed: {e}") from e

        ix = transfer(
            TransferParams(
                from_pubkey=keypair.pubkey(),
                to_pubkey=Pubkey.from_string(to_address),
                lamports=lamports,
            )
        )
        message = Message.new_with_blockhash([ix], keypair.pubkey(), blockhash)
        tx = Transaction([keypair], message, blockhash)
        return await self._send(bytes(tx), skip_preflight=False)
