"""Tests for candidate scoring and matching config loading."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from forecast_match.config import settings
from forecast_match.models import PlannedType
from forecast_match.services.occurrence_ref import StoredOccurrenceRef
from forecast_match.services.occurrences import PlannedOccurrenceView
from forecast_match.services.scoring import (
    DEFAULT_CONFIG,
    find_match_candidates,
    in_review_band,
    is_auto_match,
    load_matching_config,
    score_amount,
    score_candidate,
    score_date,
)
from tests.factories import TransactionFactory

ACCOUNT_A = uuid4()
ACCOUNT_B = uuid4()
CATEGORY_C = uuid4()
CATEGORY_D = uuid4()
MARCH_15 = date(2024, 3, 15)


def make_occurrence(**overrides) -> PlannedOccurrenceView:
    values = {
        "ref": StoredOccurrenceRef(uuid4()),
        "template_id": None,
        "name": "Gym membership",
        "amount": Decimal("50.00"),
        "type": PlannedType.EXPENSE,
        "expected_date": MARCH_15,
        "account_id": ACCOUNT_A,
    }
    values.update(overrides)
    return PlannedOccurrenceView(**values)


def make_transaction(**overrides):
    values = {
        "user_id": uuid4(),
        "account_id": ACCOUNT_A,
        "amount": Decimal("50.00"),
        "txn_date": MARCH_15,
    }
    values.update(overrides)
    return TransactionFactory.build(**values)


def test_exact_match_on_every_signal_scores_100():
    txn = make_transaction(category_id=CATEGORY_C)
    occurrence = make_occurrence(category_id=CATEGORY_C, match_tolerance=Decimal("0"))

    candidate = score_candidate(txn, occurrence, DEFAULT_CONFIG)

    assert candidate is not None
    assert candidate.confidence == 100
    assert candidate.reasons == [
        "Exact amount match",
        "Exact date match",
        "Category match",
        "Account match",
    ]
    assert is_auto_match(candidate.confidence, DEFAULT_CONFIG)


def test_tolerance_and_near_date_lands_in_silent_band():
    txn = make_transaction(amount=Decimal("52.00"), category_id=CATEGORY_D)
    occurrence = make_occurrence(
        expected_date=MARCH_15 + timedelta(days=2),
        match_tolerance=Decimal("5"),
        match_window_days=7,
        category_id=CATEGORY_C,
    )

    candidates = find_match_candidates(txn, [occurrence], DEFAULT_CONFIG)

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.confidence == 65
    assert candidate.reasons == ["Amount within tolerance ($2.00)", "Within 3 days", "Account match"]
    assert not in_review_band(candidate.confidence, DEFAULT_CONFIG)
    assert not is_auto_match(candidate.confidence, DEFAULT_CONFIG)


@pytest.mark.parametrize(
    "txn_amount,tolerance,expected",
    [
        (Decimal("-50.00"), None, (40, "Exact amount match")),
        (Decimal("-51.50"), Decimal("2"), (30, "Amount within tolerance ($1.50)")),
        (Decimal("-54.00"), None, (15, "Amount within 10%")),
        (Decimal("-56.00"), Decimal("1"), (0, None)),
    ],
)
def test_score_amount_levels(txn_amount, tolerance, expected):
    assert score_amount(txn_amount, Decimal("-50.00"), tolerance, DEFAULT_CONFIG) == expected


@pytest.mark.parametrize(
    "offset,expected",
    [
        (0, (30, "Exact date match")),
        (-1, (25, "Within 1 day")),
        (3, (20, "Within 3 days")),
        (-7, (10, "Within 7 day window")),
    ],
)
def test_score_date_levels(offset, expected):
    assert score_date(MARCH_15 + timedelta(days=offset), MARCH_15, 7, DEFAULT_CONFIG) == expected


def test_date_outside_window_excludes_candidate():
    txn = make_transaction(txn_date=MARCH_15 + timedelta(days=8))
    occurrence = make_occurrence(match_window_days=7)

    assert score_candidate(txn, occurrence, DEFAULT_CONFIG) is None
    assert find_match_candidates(txn, [occurrence], DEFAULT_CONFIG) == []


def test_custom_window_widens_date_gate():
    txn = make_transaction(txn_date=MARCH_15 + timedelta(days=10))
    occurrence = make_occurrence(match_window_days=14)

    candidate = score_candidate(txn, occurrence, DEFAULT_CONFIG)

    assert candidate is not None
    assert "Within 14 day window" in candidate.reasons


def test_zero_window_falls_back_to_default():
    assert score_date(MARCH_15 + timedelta(days=5), MARCH_15, 0, DEFAULT_CONFIG) == (10, "Within 7 day window")


def test_auto_match_disabled_occurrence_is_never_a_candidate():
    txn = make_transaction(category_id=CATEGORY_C)
    occurrence = make_occurrence(category_id=CATEGORY_C, auto_match_enabled=False)

    assert score_candidate(txn, occurrence, DEFAULT_CONFIG) is None


def test_low_confidence_candidates_are_dropped():
    txn = make_transaction(amount=Decimal("80.00"), account_id=ACCOUNT_B)
    occurrence = make_occurrence(expected_date=MARCH_15 + timedelta(days=5))

    # 0 amount + 10 date, no category, different account
    assert score_candidate(txn, occurrence, DEFAULT_CONFIG).confidence == 10
    assert find_match_candidates(txn, [occurrence], DEFAULT_CONFIG) == []


def test_missing_categories_never_count_as_match():
    txn = make_transaction(category_id=None)
    occurrence = make_occurrence(category_id=None)

    candidate = score_candidate(txn, occurrence, DEFAULT_CONFIG)

    assert "Category match" not in candidate.reasons
    assert candidate.confidence == 85


def test_ties_prefer_earliest_expected_date_then_input_order():
    txn = make_transaction(txn_date=MARCH_15)
    later = make_occurrence(name="later", expected_date=MARCH_15 + timedelta(days=1))
    earlier = make_occurrence(name="earlier", expected_date=MARCH_15 - timedelta(days=1))
    first_same_day = make_occurrence(name="first", expected_date=MARCH_15 + timedelta(days=1))

    candidates = find_match_candidates(txn, [later, earlier, first_same_day], DEFAULT_CONFIG)

    assert [c.confidence for c in candidates] == [80, 80, 80]
    assert [c.occurrence.name for c in candidates] == ["earlier", "later", "first"]


def test_higher_confidence_ranks_first():
    txn = make_transaction(category_id=CATEGORY_C)
    weak = make_occurrence(name="weak", expected_date=MARCH_15 - timedelta(days=2))
    strong = make_occurrence(name="strong", category_id=CATEGORY_C)

    candidates = find_match_candidates(txn, [weak, strong], DEFAULT_CONFIG)

    assert [c.occurrence.name for c in candidates] == ["strong", "weak"]


def test_review_band_bounds():
    assert not in_review_band(69, DEFAULT_CONFIG)
    assert in_review_band(70, DEFAULT_CONFIG)
    assert in_review_band(94, DEFAULT_CONFIG)
    assert not in_review_band(95, DEFAULT_CONFIG)


# --- Config loading ---


def test_load_matching_config_reads_yaml(tmp_path, monkeypatch):
    config_file = tmp_path / "matching.yaml"
    config_file.write_text(
        "thresholds:\n  review: 75\n  auto_match: 90\ntolerances:\n  amount_percent: 0.05\n"
        "windows:\n  auto_match_window_days: 10\n"
    )
    monkeypatch.setattr(settings, "matching_config_path", str(config_file))
    monkeypatch.delenv("MATCHING_AUTO_MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("MATCHING_REVIEW_THRESHOLD", raising=False)

    config = load_matching_config(force_reload=True)

    assert config.review_threshold == 75
    assert config.auto_match_threshold == 90
    assert config.amount_percent == Decimal("0.05")
    assert config.auto_match_window_days == 10
    assert config.min_confidence == DEFAULT_CONFIG.min_confidence


def test_env_thresholds_override_yaml(tmp_path, monkeypatch):
    config_file = tmp_path / "matching.yaml"
    config_file.write_text("thresholds:\n  review: 75\n  auto_match: 90\n")
    monkeypatch.setattr(settings, "matching_config_path", str(config_file))
    monkeypatch.setenv("MATCHING_AUTO_MATCH_THRESHOLD", "98")
    monkeypatch.setenv("MATCHING_REVIEW_THRESHOLD", "72")

    config = load_matching_config(force_reload=True)

    assert config.auto_match_threshold == 98
    assert config.review_threshold == 72


def test_malformed_yaml_falls_back_to_defaults(tmp_path, monkeypatch):
    config_file = tmp_path / "matching.yaml"
    config_file.write_text("thresholds:\n  review: not-a-number\n")
    monkeypatch.setattr(settings, "matching_config_path", str(config_file))
    monkeypatch.delenv("MATCHING_AUTO_MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("MATCHING_REVIEW_THRESHOLD", raising=False)

    assert load_matching_config(force_reload=True) == DEFAULT_CONFIG


def test_missing_config_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "matching_config_path", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("MATCHING_AUTO_MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("MATCHING_REVIEW_THRESHOLD", raising=False)

    assert load_matching_config(force_reload=True) == DEFAULT_CONFIG


def test_config_is_cached_until_forced(tmp_path, monkeypatch):
    config_file = tmp_path / "matching.yaml"
    config_file.write_text("thresholds:\n  review: 75\n")
    monkeypatch.setattr(settings, "matching_config_path", str(config_file))
    monkeypatch.delenv("MATCHING_REVIEW_THRESHOLD", raising=False)

    first = load_matching_config()
    config_file.write_text("thresholds:\n  review: 80\n")

    assert load_matching_config() is first
    assert load_matching_config(force_reload=True).review_threshold == 80


def test_bundled_config_matches_defaults(monkeypatch):
    monkeypatch.setattr(settings, "matching_config_path", None)
    monkeypatch.delenv("MATCHING_AUTO_MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("MATCHING_REVIEW_THRESHOLD", raising=False)

    assert load_matching_config(force_reload=True) == DEFAULT_CONFIG
