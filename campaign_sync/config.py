from __future__ import annotations

import os
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PUMP_FUN_FEE_RECIPIENTS = {
    "devnet": "68yFSZxzLWJXkxxRGydZ63C6mHx1NLEDWmwN9Lb5yySg",
    "mainnet": "CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        enable_decoding=False,
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./campaign_sync.db",
        validation_alias=AliasChoices("DATABASE_PRIVATE_URL", "DATABASE_URL", "database_url"),
    )
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        validation_alias=AliasChoices("SOLANA_RPC_URL", "RPC", "solana_rpc_url"),
    )
    solana_network: str = "devnet"
    commitment: str = "finalized"
    program_id: str = "GwAWdhc8NuRVCRn4guyXz7UGaQHCwnnVppBKMtZmxVM2"
    operator_private_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPERATOR_PRIVATE_KEY", "OPERATOR_PRIV_KEY", "operator_private_key"),
    )

    # Ledger ordinals are 1-based in events, 0-based in account seeds.
    campaign_index_offset: int = 1

    sync_interval_seconds: int = 15
    fund_reconcile_start_delay_seconds: int = 5
    token_issuance_start_delay_seconds: int = 10
    signature_page_size: int = 1_000
    signature_trailing_window: int = 1
    transaction_fetch_chunk_size: int = 20
    transaction_fetch_concurrency: int = 1
    transaction_fetch_delay_seconds: float = 10.0
    write_conflict_max_retries: int = 3
    write_conflict_backoff_seconds: float = 1.0

    token_issuance_batch_size: int = 5
    token_issuance_slippage_bps: int = 200

    geckoterminal_url: str = "https://api.geckoterminal.com/api/v2/networks/solana/tokens"
    price_oracle_timeout_seconds: float = 10.0

    pump_fun_program_id: str = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
    pump_fun_global: str = "4wTV1YmiEkRvAtNtsSGPtUrqRYQMe5SKy2uB4Jjaxnjf"
    pump_fun_mint_authority: str = "TSLvdd1pWpHVjahSpsvCXUbgwsL3JAcvokwaKt1eokM"
    pump_fun_event_authority: str = "Ce6TQqeHC9p8KetsN6JsjHK7UTZk7nasjjnr7XxXp9F1"
    pump_fun_fee_recipient: str = ""
    metaplex_metadata_program_id: str = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"

    @field_validator("database_url", mode="before")
    @classmethod
    def normalize_database_url(cls, value: str) -> str:
        if not isinstance(value, str):
            return value
        if not value.strip():
            return "sqlite+aiosqlite:///./campaign_sync.db"
        url = value
        if url.startswith("postgres://"):
            url = "postgresql+asyncpg://" + url[len("postgres://") :]
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        parts = urlsplit(url)
        if "asyncpg" in parts.scheme:
            query = parse_qs(parts.query, keep_blank_values=True)
            if "sslmode" in query and "ssl" not in query:
                mode = (query.pop("sslmode")[0] or "").lower()
                if mode in ("disable", "false", "0", "no"):
                    query["ssl"] = ["false"]
                else:
                    query["ssl"] = ["true"]
                url = urlunsplit(
                    (parts.scheme, parts.netloc, parts.path, urlencode(query, doseq=True), parts.fragment)
                )
        return url

    @field_validator("solana_network", mode="before")
    @classmethod
    def normalize_network(cls, value):
        if isinstance(value, str):
            network = value.strip().lower()
            if network in ("mainnet-beta", "production", "prod"):
                return "mainnet"
            return network or "devnet"
        return value

    @field_validator("signature_trailing_window", "transaction_fetch_concurrency", mode="before")
    @classmethod
    def parse_blank_as_one(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return 1
        return value

    @property
    def fee_recipient(self) -> str:
        if self.pump_fun_fee_recipient:
            return self.pump_fun_fee_recipient
        return PUMP_FUN_FEE_RECIPIENTS.get(self.solana_network, PUMP_FUN_FEE_RECIPIENTS["devnet"])


settings = Settings()


def database_dsn_safe(raw_url: str | None = None) -> str:
    """Return a redacted DB URL for logs (no password)."""
    url = raw_url or settings.database_url
    if not isinstance(url, str):
        return "<invalid>"
    if url.startswith("sqlite"):
        return f"{urlsplit(url).scheme}://<local-file>"
    parts = urlsplit(url)
    host = parts.hostname or "<unknown>"
    port = parts.port or ""
    db = (parts.path or "").lstrip("/") or "<unknown>"
    port_str = f":{port}" if port else ""
    return f"{parts.scheme}://{host}{port_str}/{db}"


def rpc_url_safe(raw_url: str | None = None) -> str:
    """Drop query strings (API keys) from the RPC URL for logs."""
    url = raw_url or settings.solana_rpc_url
    parts = urlsplit(url)
    if not parts.scheme:
        return "<invalid>"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def running_in_hosted_env() -> bool:
    """Detect hosted/runtime environments (Railway/containers) by common vars."""
    markers = (
        "RAILWAY_ENVIRONMENT",
        "RAILWAY_PROJECT_ID",
        "RAILWAY_SERVICE_NAME",
        "KUBERNETES_SERVICE_HOST",
    )
    return any(os.getenv(name) for name in markers)
