"""Decode loosely-typed listing records into canonical markets.

Everything here is pure: no I/O, no clock reads except through the injected
``clock``. A record either becomes a :class:`CanonicalMarket` or an explicit
:class:`Rejection` carrying a machine-readable reason.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from marketsync.domain.markets import CanonicalMarket, CanonicalReward, CanonicalToken

DEFAULT_OUTCOME_COUNT = 2


@dataclass(slots=True, frozen=True)
class Rejection:
    """A record that did not pass decoding or the acceptance filter."""

    external_id: str | None
    reason: str
    detail: str | None = None


def _float(value: Any) -> float:
    result = _optional_float(value)
    return 0.0 if result is None else result


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    # Non-finite values count as missing.
    return result if math.isfinite(result) else None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp or date into an aware UTC datetime.

    Raises ValueError for non-empty values that cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _decode_list(value: Any) -> list[Any] | None:
    """Accept a real list or a JSON-encoded list; anything else is malformed."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return None
        if isinstance(decoded, list):
            return decoded
    return None


def default_labels(count: int) -> list[str]:
    return [f"Outcome {i + 1}" for i in range(max(count, DEFAULT_OUTCOME_COUNT))]


def decode_tokens(raw_token_ids: Any, raw_outcomes: Any) -> list[CanonicalToken]:
    """Pair token ids with outcome labels.

    Missing, malformed or duplicated labels fall back to ``Outcome N``
    defaults rather than rejecting the record.
    """
    token_ids = ["" if t is None else str(t).strip() for t in (_decode_list(raw_token_ids) or [])]
    if not any(token_ids):
        return []

    count = len(token_ids)
    labels = [str(label).strip() for label in (_decode_list(raw_outcomes) or [])][:count]
    if len(labels) < count or not all(labels) or len(set(labels)) != count:
        labels = default_labels(count)

    return [
        CanonicalToken(token_id=token_id, outcome_label=label)
        for token_id, label in zip(token_ids, labels)
        if token_id
    ]


def decode_reward(raw: dict[str, Any]) -> CanonicalReward | None:
    nested = raw.get("rewards")
    if isinstance(nested, dict) and nested:
        return CanonicalReward(
            min_size=_optional_float(nested.get("min_size")),
            max_spread=_optional_float(nested.get("max_spread")),
            event_start_date=_optional_str(nested.get("event_start_date")),
            event_end_date=_optional_str(nested.get("event_end_date")),
            in_game_multiplier=_optional_float(nested.get("in_game_multiplier")),
            reward_epoch=_optional_int(nested.get("reward_epoch")),
        )
    if raw.get("rewardsMinSize"):
        return CanonicalReward(
            min_size=_optional_float(raw.get("rewardsMinSize")),
            max_spread=_optional_float(raw.get("rewardsMaxSpread")),
        )
    return None


class RecordTransformer:
    """Maps raw listing records to canonical markets and applies the acceptance filter."""

    def __init__(
        self,
        *,
        acceptance_grace: timedelta = timedelta(hours=24),
        min_liquidity: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.acceptance_grace = acceptance_grace
        self.min_liquidity = min_liquidity
        self._clock = clock or (lambda: datetime.now(UTC))

    def transform(self, raw: dict[str, Any]) -> CanonicalMarket | Rejection:
        external_id = _optional_str(raw.get("conditionId") or raw.get("condition_id"))
        question = _optional_str(raw.get("question"))
        slug = _optional_str(raw.get("slug") or raw.get("market_slug"))

        if external_id is None:
            return Rejection(None, "missing_external_id")
        if question is None:
            return Rejection(external_id, "missing_question")
        if slug is None:
            return Rejection(external_id, "missing_slug")

        raw_end = raw.get("endDate") or raw.get("endDateIso") or raw.get("end_date_iso")
        try:
            end_date = parse_datetime(raw_end)
        except (TypeError, ValueError):
            return Rejection(external_id, "bad_end_date", str(raw_end))

        if end_date is not None and end_date < self._clock() - self.acceptance_grace:
            return Rejection(external_id, "ended", end_date.isoformat())

        liquidity = _float(raw.get("liquidityNum") or raw.get("liquidity"))
        volume = _float(raw.get("volumeNum") or raw.get("volume"))
        if liquidity < self.min_liquidity:
            return Rejection(external_id, "below_liquidity_floor", f"{liquidity:.2f}")

        tokens = decode_tokens(
            raw.get("clobTokenIds"),
            raw.get("outcomes"),
        )
        if not tokens and isinstance(raw.get("tokens"), list):
            tokens = decode_tokens(
                [t.get("token_id") or "" for t in raw["tokens"] if isinstance(t, dict)],
                [t.get("outcome") for t in raw["tokens"] if isinstance(t, dict)],
            )
        if not tokens:
            return Rejection(external_id, "no_tokens")

        raw_start = raw.get("startDate") or raw.get("startDateIso") or raw.get("gameStartTime")
        try:
            event_start_date = parse_datetime(raw_start)
        except (TypeError, ValueError):
            event_start_date = None

        try:
            return CanonicalMarket(
                external_id=external_id,
                question_id=_optional_str(raw.get("questionID") or raw.get("question_id") or raw.get("id")),
                question=question,
                slug=slug,
                category=_optional_str(raw.get("category")),
                end_date=end_date,
                event_start_date=event_start_date,
                active=_bool(raw.get("active", False)),
                closed=_bool(raw.get("closed", False)),
                minimum_order_size=_optional_str(raw.get("orderMinSize")),
                minimum_tick_size=_optional_str(raw.get("orderPriceMinTickSize")),
                min_incentive_size=_optional_str(raw.get("rewardsMinSize")),
                max_incentive_spread=_optional_str(raw.get("rewardsMaxSpread")),
                settlement_delay_seconds=_optional_int(raw.get("secondsDelay")) or 0,
                icon=_optional_str(raw.get("icon") or raw.get("image")),
                market_maker_address=_optional_str(raw.get("marketMakerAddress")),
                liquidity=liquidity,
                volume=volume,
                tokens=tokens,
                reward=decode_reward(raw),
            )
        except ValidationError as exc:
            return Rejection(external_id, "invalid_record", str(exc))


__all__ = ["Rejection", "RecordTransformer", "decode_tokens", "parse_datetime"]
