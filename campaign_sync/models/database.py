from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ProcessState(str, Enum):
    RAISING = "RAISING"
    PENDING = "PENDING"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        UniqueConstraint("creator", "campaign_index", name="uq_campaigns_creator_index"),
        Index("idx_campaigns_mint", "mint"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    creator: Mapped[str] = mapped_column(String(44), index=True)
    campaign_index: Mapped[int] = mapped_column(BigInteger)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    symbol: Mapped[Optional[str]] = mapped_column(String(32))
    metadata_uri: Mapped[Optional[str]] = mapped_column(Text)
    donation_goal: Mapped[Decimal] = mapped_column(Numeric(30, 9), default=Decimal(0))
    deposit_deadline: Mapped[int] = mapped_column(BigInteger, default=0)
    trade_deadline: Mapped[int] = mapped_column(BigInteger, default=0)
    created_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger)
    total_fund_raised: Mapped[int] = mapped_column(BigInteger, default=0)
    mint: Mapped[Optional[str]] = mapped_column(String(44), nullable=True)
    last_donation_timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    @property
    def key(self) -> tuple[str, int]:
        return self.creator, self.campaign_index


class ProcessStatus(Base):
    __tablename__ = "process_statuses"
    __table_args__ = (
        UniqueConstraint("creator", "campaign_index", name="uq_process_statuses_creator_index"),
        Index("idx_process_statuses_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    creator: Mapped[str] = mapped_column(String(44))
    campaign_index: Mapped[int] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(16), default=ProcessState.RAISING.value)
    mint: Mapped[Optional[str]] = mapped_column(String(44), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


class SellProgress(Base):
    __tablename__ = "sell_progress"
    __table_args__ = (
        UniqueConstraint("creator", "campaign_index", name="uq_sell_progress_creator_index"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    creator: Mapped[str] = mapped_column(String(44))
    campaign_index: Mapped[int] = mapped_column(BigInteger)
    mint: Mapped[str] = mapped_column(String(44))
    claimable_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    market_cap: Mapped[Decimal] = mapped_column(Numeric(24, 2), default=Decimal(0))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


class IngestedTransaction(Base):
    __tablename__ = "ingested_transactions"
    __table_args__ = (
        UniqueConstraint("signature", name="uq_ingested_transactions_signature"),
        Index("idx_ingested_transactions_slot", "block_slot"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    signature: Mapped[str] = mapped_column(String(88))
    block_slot: Mapped[int] = mapped_column(BigInteger)
    block_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )
