"""Thin async wrapper over the Solana JSON-RPC client."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.models import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from campaign_sync.onchain.addresses import PubkeyLike, to_pubkey

logger = logging.getLogger(__name__)


@dataclass
class SignatureInfo:
    signature: str
    slot: int
    block_time: Optional[int] = None
    err: Any = None


@dataclass
class LedgerTransaction:
    signature: str
    slot: int
    block_time: Optional[int]
    log_messages: list[str] = field(default_factory=list)


@dataclass
class AccountSnapshot:
    address: str
    lamports: int
    data: bytes


class LedgerError(RuntimeError):
    pass


class SolanaLedgerClient:
    def __init__(
        self,
        rpc_url: str,
        commitment: str = "finalized",
        client: Optional[AsyncClient] = None,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
    ) -> None:
        self.commitment = Commitment(commitment)
        self.client = client or AsyncClient(rpc_url, commitment=self.commitment)
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    async def close(self) -> None:
        await self.client.close()

    async def _retry_call(self, fn: Callable[[], Awaitable[Any]], label: str) -> Any:
        last_exc: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return await fn()
            except Exception as exc:
                last_exc = exc
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(self.backoff_seconds * (2**attempt))
        raise LedgerError(f"{label} failed: {last_exc}") from last_exc

    async def list_signatures(
        self,
        address: PubkeyLike,
        *,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: int = 1000,
    ) -> list[SignatureInfo]:
        resp = await self._retry_call(
            lambda: self.client.get_signatures_for_address(
                to_pubkey(address),
                before=Signature.from_string(before) if before else None,
                until=Signature.from_string(until) if until else None,
                limit=limit,
                commitment=self.commitment,
            ),
            "getSignaturesForAddress",
        )
        return [
            SignatureInfo(
                signature=str(item.signature),
                slot=int(item.slot),
                block_time=item.block_time,
                err=item.err,
            )
            for item in resp.value
        ]

    async def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        resp = await self._retry_call(
            lambda: self.client.get_transaction(
                Signature.from_string(signature),
                encoding="json",
                commitment=self.commitment,
                max_supported_transaction_version=0,
            ),
            "getTransaction",
        )
        tx = resp.value
        if tx is None:
            return None
        meta = tx.transaction.meta
        logs = list(meta.log_messages or []) if meta is not None else []
        return LedgerTransaction(
            signature=signature,
            slot=int(tx.slot),
            block_time=tx.block_time,
            log_messages=logs,
        )

    async def get_account(self, address: PubkeyLike) -> Optional[AccountSnapshot]:
        pubkey = to_pubkey(address)
        resp = await self._retry_call(
            lambda: self.client.get_account_info(pubkey, commitment=self.commitment),
            "getAccountInfo",
        )
        account = resp.value
        if account is None:
            return None
        return AccountSnapshot(address=str(pubkey), lamports=int(account.lamports), data=bytes(account.data))

    async def get_minimum_balance(self, data_length: int) -> int:
        resp = await self._retry_call(
            lambda: self.client.get_minimum_balance_for_rent_exemption(data_length),
            "getMinimumBalanceForRentExemption",
        )
        return int(resp.value)

    async def get_net_balance(self, address: PubkeyLike) -> Optional[int]:
        """Lamports above the rent-exempt minimum, or None if the account is absent."""
        account = await self.get_account(address)
        if account is None:
            return None
        minimum = await self.get_minimum_balance(len(account.data))
        return account.lamports - minimum

    async def get_latest_blockhash(self):
        resp = await self._retry_call(
            lambda: self.client.get_latest_blockhash(commitment=Confirmed),
            "getLatestBlockhash",
        )
        return resp.value

    async def send_transaction(
        self,
        instructions: Sequence[Instruction],
        signers: Sequence[Keypair],
        payer: Optional[Pubkey] = None,
    ) -> str:
        """Build, sign, submit and confirm a multi-instruction transaction."""
        if not signers:
            raise LedgerError("At least one signer is required")
        fee_payer = payer or signers[0].pubkey()
        latest = await self.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), fee_payer, latest.blockhash)
        tx = Transaction(list(signers), message, latest.blockhash)
        resp = await self.client.send_raw_transaction(
            bytes(tx),
            opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
        )
        signature = resp.value
        logger.info("Transaction sent: %s", signature)
        await self.client.confirm_transaction(
            signature,
            commitment=Confirmed,
            last_valid_block_height=latest.last_valid_block_height,
        )
        return str(signature)
