class DataIntegrityError(RuntimeError):
    """Persisted state disagrees with what a ledger event or account implies."""


class CampaignAccountMissing(DataIntegrityError):
    def __init__(self, address: str, creator: str, campaign_index: int) -> None:
        super().__init__(
            f"Campaign account not found for PDA {address} "
            f"(creator={creator}, index={campaign_index})"
        )
        self.address = address
        self.creator = creator
        self.campaign_index = campaign_index


class SellProgressMissing(DataIntegrityError):
    def __init__(self, creator: str, campaign_index: int) -> None:
        super().__init__(f"No sell progress for campaign {creator}/{campaign_index}")
        self.creator = creator
        self.campaign_index = campaign_index
