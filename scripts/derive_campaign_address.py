#!/usr/bin/env python3
"""Print candidate campaign PDAs for an event ordinal and whether each exists.

Usage:
    python scripts/derive_campaign_address.py <creator> <ordinal>
"""
from __future__ import annotations

import argparse
import asyncio

from solders.pubkey import Pubkey

from campaign_sync.config import rpc_url_safe, settings
from campaign_sync.onchain.addresses import CAMPAIGN_SEED, campaign_index_seed, to_pubkey
from campaign_sync.onchain.ledger import SolanaLedgerClient


def candidate_seeds(ordinal: int) -> list[tuple[str, bytes]]:
    candidates = [
        ("u64 little-endian", campaign_index_seed(ordinal)),
        ("u32 little-endian, 8 bytes", ordinal.to_bytes(4, "little") + bytes(4)),
        ("u32 big-endian, 8 bytes", bytes(4) + ordinal.to_bytes(4, "big")),
        ("single byte", bytes([ordinal % 256])),
    ]
    if ordinal > 0:
        candidates.append(("u64 little-endian, ordinal - 1", campaign_index_seed(ordinal - 1)))
    return candidates


async def _run(args: argparse.Namespace) -> None:
    program_id = to_pubkey(args.program_id or settings.program_id)
    creator = to_pubkey(args.creator)
    ledger = SolanaLedgerClient(args.rpc or settings.solana_rpc_url, commitment=settings.commitment)
    print(f"Program: {program_id}")
    print(f"Creator: {creator}")
    print(f"Ordinal: {args.ordinal}")
    print(f"RPC:     {rpc_url_safe(args.rpc or settings.solana_rpc_url)}")
    try:
        for label, seed in candidate_seeds(args.ordinal):
            address, _bump = Pubkey.find_program_address([CAMPAIGN_SEED, bytes(creator), seed], program_id)
            account = await ledger.get_account(address)
            print(f"{label:<32} {address}  exists={account is not None}")
    finally:
        await ledger.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Debug campaign PDA derivation")
    parser.add_argument("creator", help="Creator public key")
    parser.add_argument("ordinal", type=int, help="campaign_index as carried by the event")
    parser.add_argument("--program-id", help="Override the launchpad program id")
    parser.add_argument("--rpc", help="Override the Solana RPC URL")
    args = parser.parse_args()
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
