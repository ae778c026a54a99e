"""Canonical market models produced by the record transformer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class CanonicalToken(BaseModel):
    """One tradable outcome of a market."""

    token_id: str = Field(..., min_length=1, description="Upstream-assigned outcome token id")
    outcome_label: str = Field(..., min_length=1)


class CanonicalReward(BaseModel):
    """Market-making incentive configuration."""

    min_size: Optional[float] = None
    max_spread: Optional[float] = None
    event_start_date: Optional[str] = None
    event_end_date: Optional[str] = None
    in_game_multiplier: Optional[float] = None
    reward_epoch: Optional[int] = None


class CanonicalMarket(BaseModel):
    """Normalized representation of one tradable question, independent of upstream naming."""

    external_id: str = Field(..., min_length=1, description="Upstream condition id")
    question_id: Optional[str] = None
    question: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    category: Optional[str] = None
    end_date: Optional[datetime] = None
    event_start_date: Optional[datetime] = None
    active: bool = False
    closed: bool = False
    minimum_order_size: Optional[str] = None
    minimum_tick_size: Optional[str] = None
    min_incentive_size: Optional[str] = None
    max_incentive_spread: Optional[str] = None
    settlement_delay_seconds: int = 0
    icon: Optional[str] = None
    market_maker_address: Optional[str] = None
    liquidity: float = 0.0
    volume: float = 0.0
    tokens: list[CanonicalToken] = Field(default_factory=list)
    reward: Optional[CanonicalReward] = None

    @model_validator(mode="after")
    def _unique_outcomes(self) -> CanonicalMarket:
        labels = [token.outcome_label for token in self.tokens]
        if len(labels) != len(set(labels)):
            raise ValueError("outcome labels must be unique per market")
        token_ids = [token.token_id for token in self.tokens]
        if len(token_ids) != len(set(token_ids)):
            raise ValueError("token ids must be unique per market")
        return self


__all__ = ["CanonicalMarket", "CanonicalReward", "CanonicalToken"]
