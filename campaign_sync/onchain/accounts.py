"""Typed views of the launchpad program's on-chain accounts."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from campaign_sync.onchain.idl import ProgramIdl


@dataclass
class CampaignAccountState:
    creator: str
    campaign_index: int
    mint: Optional[str]
    total_token_bought: int
    total_claimed: int
    claimable_amount: int


@dataclass
class ProgramConfigState:
    operator: str
    treasury: str
    protocol_fee_bps: int


class AccountDecoder:
    def __init__(self, idl: Optional[ProgramIdl] = None) -> None:
        self.idl = idl or ProgramIdl.load()

    def campaign(self, data: bytes) -> CampaignAccountState:
        raw = self.idl.decode_account("CampaignAccount", data)
        return CampaignAccountState(
            creator=raw["creator"],
            campaign_index=int(raw["campaign_index"]),
            mint=raw.get("mint"),
            total_token_bought=int(raw.get("total_token_bought") or 0),
            total_claimed=int(raw.get("total_claimed") or 0),
            claimable_amount=int(raw.get("claimable_amount") or 0),
        )

    def config(self, data: bytes) -> ProgramConfigState:
        raw = self.idl.decode_account("Config", data)
        return ProgramConfigState(
            operator=raw["operator"],
            treasury=raw["treasury"],
            protocol_fee_bps=int(raw["protocol_fee_percentage"]),
        )
