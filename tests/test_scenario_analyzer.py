"""Tests for the scenario search: band and leverage bounds, top-fraction selection, targeted mode."""

import numpy as np
import pytest

from settler.errors import InsufficientDataError, NoProfitableScenarioError
from settler.services.scenario_analyzer import (
    analyze,
    downsample,
    find_target_scenario,
    pair_movements,
    score_candidates,
)


# ---------------------------------------------------------------------------
# 1. Helpers
# ---------------------------------------------------------------------------

def test_pair_movements_both_directions():
    i, j, long_mov, short_mov = pair_movements(np.array([100.0, 110.0, 99.0]))
    assert list(zip(i, j)) == [(0, 1), (0, 2), (1, 2)]
    assert long_mov[0] == pytest.approx(10.0)
    assert short_mov[0] == pytest.approx(-10.0)
    assert short_mov[2] == pytest.approx(10.0)


def test_score_prefers_low_leverage_for_same_movement():
    scores = score_candidates(np.array([1.0, 1.0]), np.array([1, 3]))
    assert scores[0] > scores[1]


def test_score_bonus_tiers_do_not_stack():
    # movement 1.0 at L=2 qualifies for every tier but only gets the top one
    score = score_candidates(np.array([1.0]), np.array([2]))[0]
    assert score == pytest.approx(10.0 - np.log(2) * 5.0 + 20.0)


def test_score_penalizes_tiny_moves_at_high_leverage():
    score = score_candidates(np.array([0.05]), np.array([60]))[0]
    assert score == pytest.approx(0.5 - np.log(60) * 5.0 - 30.0)


def test_downsample_keeps_ends():
    idx = downsample(np.full(10_000, 100.0), 500)
    assert idx[0] == 0
    assert idx[-1] == 9_999
    assert len(idx) <= 500
    assert list(downsample([100, 101, 99, 103, 100], 500)) == [0, 1, 2, 3, 4]


def test_downsample_keeps_bucket_extremes():
    prices = np.full(1000, 100.0)
    prices[1] = 100.5
    prices[700] = 99.2

    idx = downsample(prices, 500)

    assert len(idx) <= 500
    assert 1 in idx
    assert 700 in idx
    assert list(idx) == sorted(set(idx))


def test_downsample_to_two_keeps_only_ends():
    assert list(downsample(np.arange(1, 11, dtype=float), 2)) == [0, 9]


# ---------------------------------------------------------------------------
# 2. analyze
# ---------------------------------------------------------------------------

def test_worked_example_picks_best_candidate():
    # 9 in-band candidates, so the top 10% is the single best: long 100 -> 103 at 1x
    scenario = analyze([100, 101, 99, 103], rng=np.random.default_rng(0))
    assert scenario.direction == "long"
    assert scenario.entry_price == 100
    assert scenario.exit_price == 103
    assert scenario.leverage == 1
    assert scenario.profit_percent == pytest.approx(3.0)
    assert scenario.candidate_count == 9
    assert scenario.buy_price == 100
    assert scenario.sell_price == 103


def test_short_scenario_prices():
    scenario = analyze([100, 98.5], rng=np.random.default_rng(0))
    assert scenario.direction == "short"
    assert scenario.entry_price == 100
    assert scenario.exit_price == 98.5
    # Short: bought back at the lower exit price
    assert scenario.buy_price == 98.5
    assert scenario.sell_price == 100
    assert 1.0 <= scenario.profit_percent <= 3.0


def test_single_sample_is_insufficient():
    with pytest.raises(InsufficientDataError):
        analyze([100])


def test_empty_window_is_insufficient():
    with pytest.raises(InsufficientDataError):
        analyze([])


def test_non_positive_prices_rejected():
    with pytest.raises(InsufficientDataError):
        analyze([100, 0, 101])


def test_flat_window_has_no_scenario():
    with pytest.raises(NoProfitableScenarioError):
        analyze([100, 100, 100, 100])


def test_only_large_moves_have_no_scenario():
    # 10% cannot be brought into [1, 3] with leverage >= 1
    with pytest.raises(NoProfitableScenarioError):
        analyze([100, 110])


def test_movement_below_threshold_is_ignored():
    # 0.05% needs 20x-60x to reach the band but is under the 0.1% floor
    with pytest.raises(NoProfitableScenarioError):
        analyze([100, 100.05])


def test_custom_band_and_leverage_range():
    scenario = analyze(
        [100, 100.5],
        profit_band=(4.0, 5.0),
        leverage_range=(8, 10),
        rng=np.random.default_rng(1),
    )
    assert 8 <= scenario.leverage <= 10
    assert 4.0 <= scenario.profit_percent <= 5.0


def test_timestamps_must_align():
    with pytest.raises(ValueError):
        analyze([100, 101], timestamps=[None])


def test_seeded_rng_is_reproducible():
    prices = 100 * np.cumprod(1 + np.random.default_rng(7).normal(0, 0.002, 200))
    a = analyze(prices, rng=np.random.default_rng(42))
    b = analyze(prices, rng=np.random.default_rng(42))
    assert a == b


@pytest.mark.parametrize("seed", range(20))
def test_random_walks_land_in_band(seed):
    gen = np.random.default_rng(seed)
    prices = 100 * np.cumprod(1 + gen.normal(0, 0.003, 120))
    scenario = analyze(prices, rng=np.random.default_rng(seed))
    assert 1.0 <= scenario.profit_percent <= 3.0
    assert isinstance(scenario.leverage, int)
    assert 1 <= scenario.leverage <= 100
    assert scenario.natural_movement >= 0.1


def test_picks_only_from_top_fraction():
    prices = 100 * np.cumprod(1 + np.random.default_rng(3).normal(0, 0.003, 60))
    # top_fraction=0 still yields one candidate: the best scoring one
    best = analyze(prices, top_fraction=0.0, rng=np.random.default_rng(0))
    picks = [analyze(prices, rng=np.random.default_rng(k)) for k in range(30)]

    assert all(s.score <= best.score for s in picks)
    assert len({(s.entry_price, s.exit_price, s.leverage) for s in picks}) > 1


# ---------------------------------------------------------------------------
# 3. find_target_scenario
# ---------------------------------------------------------------------------

def test_target_long_close_to_target():
    scenario = find_target_scenario([100, 100.5, 101, 100.2], "long", 2.0)
    assert scenario.direction == "long"
    assert abs(scenario.profit_percent - 2.0) <= 0.5
    assert 1 <= scenario.leverage <= 100


def test_target_prefers_lowest_leverage_in_bucket():
    # 1% move at 2x hits the target exactly
    scenario = find_target_scenario([100, 101], "long", 2.0)
    assert scenario.leverage == 2
    assert scenario.profit_percent == pytest.approx(2.0)


def test_target_short_direction():
    scenario = find_target_scenario([100, 101, 99], "short", 1.5)
    assert scenario.direction == "short"
    assert scenario.profit_percent > 0
    assert scenario.entry_price > scenario.exit_price


def test_target_loss_is_negative():
    scenario = find_target_scenario([100, 99], "long", 2.0, loss=True)
    assert scenario.direction == "long"
    assert scenario.profit_percent == pytest.approx(-2.0)
    assert scenario.leverage == 2


def test_target_fallback_uses_largest_move():
    # A 10% move cannot land within 2 +/- 0.5 at integer leverage >= 1
    scenario = find_target_scenario([100, 110], "long", 2.0)
    assert scenario.leverage == 1
    assert scenario.candidate_count == 0
    assert scenario.profit_percent == pytest.approx(10.0)


def test_target_without_movement_in_direction():
    with pytest.raises(NoProfitableScenarioError):
        find_target_scenario([100, 101, 102], "short", 2.0)


def test_target_rejects_unknown_direction():
    with pytest.raises(ValueError):
        find_target_scenario([100, 101], "sideways", 2.0)
