"""Instruction builders for the launchpad program and its pump.fun CPI."""
from __future__ import annotations

import struct
from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.sysvar import RENT
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    transfer,
)
from spl.token.models import TransferParams

from campaign_sync.onchain.idl import ProgramIdl, sighash

PUMP_FUN_BUY_DISCRIMINATOR = sighash("global", "buy")


def _meta(pubkey: Pubkey, *, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


@dataclass
class PumpFunAccounts:
    program_id: Pubkey
    global_state: Pubkey
    fee_recipient: Pubkey
    mint_authority: Pubkey
    event_authority: Pubkey


@dataclass
class TokenLaunchAccounts:
    operator: Pubkey
    config: Pubkey
    treasury: Pubkey
    creator: Pubkey
    campaign: Pubkey
    mint: Pubkey
    bonding_curve: Pubkey
    associated_bonding_curve: Pubkey
    associated_operator: Pubkey
    associated_campaign: Pubkey
    metadata: Pubkey
    metadata_program: Pubkey


class LaunchpadInstructions:
    def __init__(self, program_id: Pubkey, idl: ProgramIdl) -> None:
        self.program_id = program_id
        self.idl = idl

    def update_claimable_amount(
        self,
        *,
        operator: Pubkey,
        config: Pubkey,
        campaign: Pubkey,
        creator: Pubkey,
        mint: Pubkey,
        amount: int,
    ) -> Instruction:
        accounts = [
            _meta(operator, signer=True, writable=True),
            _meta(config),
            _meta(campaign, writable=True),
            _meta(creator),
            _meta(mint),
            _meta(SYS_PROGRAM_ID),
            _meta(TOKEN_PROGRAM_ID),
            _meta(RENT),
        ]
        data = self.idl.instruction_data("update_claimable_amount", amount)
        return Instruction(self.program_id, data, accounts)

    def create_token(self, launch: TokenLaunchAccounts, pump: PumpFunAccounts, slippage_bps: int) -> Instruction:
        accounts = [
            _meta(launch.operator, signer=True, writable=True),
            _meta(launch.config),
            _meta(launch.treasury, writable=True),
            _meta(launch.creator, writable=True),
            _meta(launch.campaign, writable=True),
            _meta(launch.mint, signer=True, writable=True),
            _meta(pump.mint_authority),
            _meta(launch.bonding_curve, writable=True),
            _meta(launch.associated_bonding_curve, writable=True),
            _meta(pump.global_state),
            _meta(pump.event_authority),
            _meta(pump.program_id),
            _meta(launch.metadata, writable=True),
            _meta(launch.metadata_program),
            _meta(SYS_PROGRAM_ID),
            _meta(TOKEN_PROGRAM_ID),
            _meta(ASSOCIATED_TOKEN_PROGRAM_ID),
            _meta(RENT),
        ]
        data = self.idl.instruction_data("create_token", slippage_bps)
        return Instruction(self.program_id, data, accounts)


def pump_fun_buy(
    launch: TokenLaunchAccounts,
    pump: PumpFunAccounts,
    token_amount: int,
    max_sol_cost: int,
) -> Instruction:
    accounts = [
        _meta(pump.global_state),
        _meta(pump.fee_recipient, writable=True),
        _meta(launch.mint),
        _meta(launch.bonding_curve, writable=True),
        _meta(launch.associated_bonding_curve, writable=True),
        _meta(launch.associated_operator, writable=True),
        _meta(launch.operator, signer=True, writable=True),
        _meta(SYS_PROGRAM_ID),
        _meta(TOKEN_PROGRAM_ID),
        _meta(RENT),
        _meta(pump.event_authority),
        _meta(pump.program_id),
    ]
    data = PUMP_FUN_BUY_DISCRIMINATOR + struct.pack("<QQ", int(token_amount), int(max_sol_cost))
    return Instruction(pump.program_id, data, accounts)


def create_token_account(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    return create_associated_token_account(payer=payer, owner=owner, mint=mint)


def transfer_tokens(source: Pubkey, dest: Pubkey, owner: Pubkey, amount: int) -> Instruction:
    return transfer(
        TransferParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source,
            dest=dest,
            owner=owner,
            amount=int(amount),
        )
    )
