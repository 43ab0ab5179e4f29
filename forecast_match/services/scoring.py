"""Candidate scoring for transaction to planned-occurrence matching."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from pathlib import Path

import yaml

from forecast_match.config import settings
from forecast_match.logger import get_logger
from forecast_match.models import Transaction
from forecast_match.services.occurrences import PlannedOccurrenceView

logger = get_logger(__name__)

AMOUNT_EXACT = 40
AMOUNT_TOLERANCE = 30
AMOUNT_PERCENT = 15
DATE_EXACT = 30
DATE_ONE_DAY = 25
DATE_THREE_DAYS = 20
DATE_WINDOW = 10
CATEGORY_MATCH = 15
ACCOUNT_MATCH = 15


@dataclass(frozen=True)
class MatchingConfig:
    """Runtime thresholds for matching."""

    min_confidence: int
    review_threshold: int
    auto_match_threshold: int
    reviewed_confidence: int
    amount_percent: Decimal
    default_window_days: int
    pending_lookback_days: int
    pending_batch_size: int
    pending_window_padding_days: int
    auto_match_window_days: int


@dataclass
class MatchCandidate:
    """Scored pairing of a transaction with a planned occurrence."""

    transaction: Transaction
    occurrence: PlannedOccurrenceView
    confidence: int
    reasons: list[str] = field(default_factory=list)


DEFAULT_CONFIG = MatchingConfig(
    min_confidence=50,
    review_threshold=70,
    auto_match_threshold=95,
    reviewed_confidence=85,
    amount_percent=Decimal("0.10"),
    default_window_days=7,
    pending_lookback_days=30,
    pending_batch_size=200,
    pending_window_padding_days=7,
    auto_match_window_days=14,
)

_config_cache: MatchingConfig | None = None


def _config_path() -> Path:
    if settings.matching_config_path:
        return Path(settings.matching_config_path)
    return Path(__file__).resolve().parents[2] / "config" / "matching.yaml"


def load_matching_config(force_reload: bool = False) -> MatchingConfig:
    """Load matching configuration from YAML if available.

    Caches the result to avoid repeated disk I/O. Env vars
    MATCHING_AUTO_MATCH_THRESHOLD and MATCHING_REVIEW_THRESHOLD win over the file.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = _config_path()

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            thresholds = raw.get("thresholds", {})
            tolerances = raw.get("tolerances", {})
            windows = raw.get("windows", {})

            config = MatchingConfig(
                min_confidence=int(thresholds.get("min_confidence", config.min_confidence)),
                review_threshold=int(thresholds.get("review", config.review_threshold)),
                auto_match_threshold=int(thresholds.get("auto_match", config.auto_match_threshold)),
                reviewed_confidence=int(thresholds.get("reviewed_confidence", config.reviewed_confidence)),
                amount_percent=Decimal(str(tolerances.get("amount_percent", config.amount_percent))),
                default_window_days=int(tolerances.get("default_window_days", config.default_window_days)),
                pending_lookback_days=int(windows.get("pending_lookback_days", config.pending_lookback_days)),
                pending_batch_size=int(windows.get("pending_batch_size", config.pending_batch_size)),
                pending_window_padding_days=int(
                    windows.get("pending_window_padding_days", config.pending_window_padding_days)
                ),
                auto_match_window_days=int(windows.get("auto_match_window_days", config.auto_match_window_days)),
            )
        except Exception as e:
            logger.warning(
                "Failed to load matching config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            config = DEFAULT_CONFIG

    auto_match_env = os.getenv("MATCHING_AUTO_MATCH_THRESHOLD")
    review_env = os.getenv("MATCHING_REVIEW_THRESHOLD")
    if auto_match_env:
        config = replace(config, auto_match_threshold=int(auto_match_env))
    if review_env:
        config = replace(config, review_threshold=int(review_env))

    _config_cache = config
    return config


def score_amount(
    txn_amount: Decimal,
    planned_amount: Decimal,
    tolerance: Decimal | None,
    config: MatchingConfig,
) -> tuple[int, str | None]:
    """Score amount agreement (max 40)."""
    diff = abs(txn_amount - planned_amount)
    if diff == 0:
        return AMOUNT_EXACT, "Exact amount match"
    if diff <= (tolerance or Decimal("0")):
        return AMOUNT_TOLERANCE, f"Amount within tolerance (${diff:.2f})"
    if diff <= abs(planned_amount) * config.amount_percent:
        return AMOUNT_PERCENT, f"Amount within {config.amount_percent * 100:.0f}%"
    return 0, None


def score_date(
    txn_date: date,
    expected_date: date,
    window_days: int | None,
    config: MatchingConfig,
) -> tuple[int, str] | None:
    """Score date proximity (max 30).

    Returns None when the dates are further apart than the match window;
    the window is a hard gate, not a penalty.
    """
    days = abs((txn_date - expected_date).days)
    window = window_days or config.default_window_days
    if days == 0:
        return DATE_EXACT, "Exact date match"
    if days <= 1:
        return DATE_ONE_DAY, "Within 1 day"
    if days <= 3:
        return DATE_THREE_DAYS, "Within 3 days"
    if days <= window:
        return DATE_WINDOW, f"Within {window} day window"
    return None


def score_candidate(
    transaction: Transaction,
    occurrence: PlannedOccurrenceView,
    config: MatchingConfig | None = None,
) -> MatchCandidate | None:
    """Score one pairing; None when the occurrence can never match this transaction."""
    config = config or load_matching_config()
    if not occurrence.auto_match_enabled:
        return None

    date_score = score_date(
        transaction.txn_date, occurrence.expected_date, occurrence.match_window_days, config
    )
    if date_score is None:
        return None

    confidence = 0
    reasons: list[str] = []

    amount_points, amount_reason = score_amount(
        transaction.amount, occurrence.amount, occurrence.match_tolerance, config
    )
    confidence += amount_points
    if amount_reason:
        reasons.append(amount_reason)

    date_points, date_reason = date_score
    confidence += date_points
    reasons.append(date_reason)

    if (
        transaction.category_id is not None
        and occurrence.category_id is not None
        and transaction.category_id == occurrence.category_id
    ):
        confidence += CATEGORY_MATCH
        reasons.append("Category match")

    if transaction.account_id == occurrence.account_id:
        confidence += ACCOUNT_MATCH
        reasons.append("Account match")

    return MatchCandidate(
        transaction=transaction,
        occurrence=occurrence,
        confidence=confidence,
        reasons=reasons,
    )


def find_match_candidates(
    transaction: Transaction,
    occurrences: Iterable[PlannedOccurrenceView],
    config: MatchingConfig | None = None,
) -> list[MatchCandidate]:
    """Score a transaction against occurrences, best first.

    Candidates under ``min_confidence`` are dropped. Ties on confidence go to
    the earliest expected date, then to input order.
    """
    config = config or load_matching_config()
    candidates: list[MatchCandidate] = []
    for occurrence in occurrences:
        candidate = score_candidate(transaction, occurrence, config)
        if candidate is not None and candidate.confidence >= config.min_confidence:
            candidates.append(candidate)

    candidates.sort(key=lambda c: (-c.confidence, c.occurrence.expected_date))
    return candidates


def is_auto_match(confidence: int, config: MatchingConfig) -> bool:
    return confidence >= config.auto_match_threshold


def in_review_band(confidence: int, config: MatchingConfig) -> bool:
    """Medium confidence: shown for human review, never auto-matched."""
    return config.review_threshold <= confidence < config.auto_match_threshold
