"""SQLAlchemy ORM models for the synchronized market catalog."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from marketsync.domain.sync import SyncKind, SyncRunStatus


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on the way in and hands back naive values; values are
    normalized to UTC before binding and tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """Mixin that adds created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


SYNC_KIND_ENUM = Enum(SyncKind, name="sync_kind_enum")
SYNC_RUN_STATUS_ENUM = Enum(SyncRunStatus, name="sync_run_status_enum")


class Market(Base, TimestampMixin):
    """One tradable question as last seen in the listings feed."""

    __tablename__ = "markets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    question_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(512), nullable=False)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    event_start_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    minimum_order_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    minimum_tick_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    min_incentive_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    max_incentive_spread: Mapped[str | None] = mapped_column(String(32), nullable=True)
    settlement_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icon: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    market_maker_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    liquidity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    tokens: Mapped[list["Token"]] = relationship(
        back_populates="market",
        lazy="selectin",
        cascade="all",
        passive_deletes=True,
        order_by="Token.outcome_label",
    )
    reward: Mapped["Reward | None"] = relationship(
        back_populates="market",
        lazy="selectin",
        uselist=False,
        cascade="all",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_markets_active_closed", "active", "closed"),
        Index("ix_markets_end_date", "end_date"),
        Index("ix_markets_last_synced", "last_synced_at"),
        Index("ix_markets_category", "category"),
    )


class Token(Base, TimestampMixin):
    """Tradable outcome token belonging to a market."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    external_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("markets.external_id", ondelete="CASCADE"), nullable=False
    )
    outcome_label: Mapped[str] = mapped_column(String(255), nullable=False)

    market: Mapped[Market] = relationship(back_populates="tokens", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("external_id", "outcome_label", name="uq_tokens_market_outcome"),
        Index("ix_tokens_external_id", "external_id"),
    )


class Reward(Base, TimestampMixin):
    """Market-making incentive configuration, zero or one per market."""

    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("markets.external_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    min_size: Mapped[float | None] = mapped_column(Numeric(20, 8), nullable=True)
    max_spread: Mapped[float | None] = mapped_column(Numeric(10, 4), nullable=True)
    event_start_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_end_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    in_game_multiplier: Mapped[float | None] = mapped_column(Numeric(10, 4), nullable=True)
    reward_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)

    market: Mapped[Market] = relationship(back_populates="reward", lazy="selectin")

    __table_args__ = (Index("ix_rewards_epoch", "reward_epoch"),)


class SyncRun(Base, TimestampMixin):
    """Operational record of one sync pass."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_kind: Mapped[SyncKind] = mapped_column(SYNC_KIND_ENUM, nullable=False, index=True)
    status: Mapped[SyncRunStatus] = mapped_column(
        SYNC_RUN_STATUS_ENUM, nullable=False, default=SyncRunStatus.PENDING, index=True
    )
    search_term: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (Index("ix_sync_runs_status_finished", "status", "finished_at"),)


__all__ = [
    "Base",
    "Market",
    "Reward",
    "SyncRun",
    "Token",
    "UTCDateTime",
    "utcnow",
]
