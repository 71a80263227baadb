"""On-chain integration helpers."""

from campaign_sync.onchain.accounts import AccountDecoder, CampaignAccountState, ProgramConfigState
from campaign_sync.onchain.event_decoder import DecodedEvent, EventDecoder
from campaign_sync.onchain.ledger import LedgerError, LedgerTransaction, SignatureInfo, SolanaLedgerClient
from campaign_sync.onchain.wallet import OperatorWallet

__all__ = [
    "AccountDecoder",
    "CampaignAccountState",
    "ProgramConfigState",
    "DecodedEvent",
    "EventDecoder",
    "LedgerError",
    "LedgerTransaction",
    "SignatureInfo",
    "SolanaLedgerClient",
    "OperatorWallet",
]
