"""Stateless trade-scenario search over a historical price window.

Given the prices a bot's symbol traded at while the bot was running, find a
leveraged long or short entry/exit pair whose profit lands inside a target band.
All functions are pure computation with no I/O or database access. Randomness
comes only from the injected numpy Generator.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import numpy as np

from settler.errors import InsufficientDataError, NoProfitableScenarioError
from settler.utils.constants import LONG, SHORT

DEFAULT_PROFIT_BAND = (1.0, 3.0)
DEFAULT_LEVERAGE_RANGE = (1, 100)
DEFAULT_MIN_MOVEMENT_PCT = 0.1
DEFAULT_TOP_FRACTION = 0.10


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class Scenario:
    """A chosen (direction, entry, exit, leverage) combination."""
    direction: str  # "long" or "short"
    entry_price: float
    exit_price: float
    leverage: int
    profit_percent: float  # negative for a loss scenario
    natural_movement: float  # unleveraged % move, always positive
    entry_time: datetime | None = None
    exit_time: datetime | None = None
    score: float = 0.0
    candidate_count: int = 0

    @property
    def buy_price(self) -> float:
        return self.entry_price if self.direction == LONG else self.exit_price

    @property
    def sell_price(self) -> float:
        return self.exit_price if self.direction == LONG else self.entry_price


# ---------------------------------------------------------------------------
# Core computation helpers
# ---------------------------------------------------------------------------

def pair_movements(prices: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Natural % movement for every ordered pair i < j.

    Returns: (i, j, long_movement, short_movement). A pair has a positive long
    movement when the later price is higher and a positive short movement when
    it is lower; both are relative to the earlier (entry) price.
    """
    i, j = np.triu_indices(len(prices), k=1)
    entry = prices[i]
    long_mov = (prices[j] - entry) / entry * 100.0
    short_mov = (entry - prices[j]) / entry * 100.0
    return i, j, long_mov, short_mov


def score_candidates(movement: np.ndarray, leverage: np.ndarray) -> np.ndarray:
    """Prefer large natural moves at low leverage.

    score = movement * 10 - ln(L) * 5, plus the first matching bonus tier and a
    penalty for tiny moves at very high leverage.
    """
    score = movement * 10.0 - np.log(leverage) * 5.0
    bonus = np.select(
        [
            (movement >= 1.0) & (leverage <= 5),
            (movement >= 0.5) & (leverage <= 10),
            (movement >= 0.2) & (leverage <= 20),
        ],
        [20.0, 10.0, 5.0],
        default=0.0,
    )
    penalty = np.where((movement < 0.1) & (leverage > 50), -30.0, 0.0)
    return score + bonus + penalty


def downsample(prices: Sequence[float] | np.ndarray, max_samples: int) -> np.ndarray:
    """Sorted indices thinning a series to at most max_samples.

    Both ends are always kept. The interior is split into equal buckets and
    each bucket keeps its lowest and highest sample, so price extremes survive.
    """
    arr = np.asarray(prices, dtype=float)
    n = len(arr)
    if n <= max_samples:
        return np.arange(n)
    buckets = (max_samples - 2) // 2
    keep = [0, n - 1]
    if buckets > 0:
        edges = np.linspace(1, n - 1, buckets + 1).round().astype(int)
        for lo, hi in zip(edges[:-1], edges[1:]):
            if hi <= lo:
                continue
            segment = arr[lo:hi]
            keep.append(lo + int(np.argmin(segment)))
            keep.append(lo + int(np.argmax(segment)))
    return np.unique(keep)



def _as_price_array(prices: Sequence[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(prices, dtype=float)
    if arr.ndim != 1 or len(arr) < 2:
        raise InsufficientDataError(f"Need at least 2 price samples, got {arr.size}")
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        raise InsufficientDataError("Price window contains non-positive or non-finite values")
    return arr


def _ts(timestamps: Sequence[datetime] | None, idx: int) -> datetime | None:
    return timestamps[idx] if timestamps is not None else None


# ---------------------------------------------------------------------------
# Main search functions
# ---------------------------------------------------------------------------

def analyze(
    prices: Sequence[float] | np.ndarray,
    timestamps: Sequence[datetime] | None = None,
    profit_band: tuple[float, float] = DEFAULT_PROFIT_BAND,
    leverage_range: tuple[int, int] = DEFAULT_LEVERAGE_RANGE,
    min_movement_pct: float = DEFAULT_MIN_MOVEMENT_PCT,
    top_fraction: float = DEFAULT_TOP_FRACTION,
    rng: np.random.Generator | None = None,
) -> Scenario:
    """Pick a leveraged long/short scenario with profit inside `profit_band`.

    Every pair of samples (i < j) with at least `min_movement_pct` natural
    movement is combined with every integer leverage in `leverage_range`;
    candidates whose profit falls inside the band (inclusive) are scored, and
    one is drawn uniformly from the top `top_fraction` of the pool.

    Raises:
        InsufficientDataError: fewer than 2 usable samples.
        NoProfitableScenarioError: no candidate lands inside the band.
    """
    arr = _as_price_array(prices)
    if timestamps is not None and len(timestamps) != len(arr):
        raise ValueError("timestamps must align with prices")
    rng = rng if rng is not None else np.random.default_rng()
    band_lo, band_hi = profit_band
    lev_lo, lev_hi = leverage_range

    i, j, long_mov, short_mov = pair_movements(arr)

    # Pool long and short pairs: one row per (pair, direction) with movement above threshold
    long_keep = long_mov >= min_movement_pct
    short_keep = short_mov >= min_movement_pct
    pair_entry = np.concatenate([i[long_keep], i[short_keep]])
    pair_exit = np.concatenate([j[long_keep], j[short_keep]])
    movement = np.concatenate([long_mov[long_keep], short_mov[short_keep]])
    is_long = np.concatenate([
        np.ones(int(long_keep.sum()), dtype=bool),
        np.zeros(int(short_keep.sum()), dtype=bool),
    ])

    # Expand each pair across leverages, keeping only in-band profit
    cand_pair: list[np.ndarray] = []
    cand_lev: list[np.ndarray] = []
    for lev in range(lev_lo, lev_hi + 1):
        profit = movement * lev
        hit = np.nonzero((profit >= band_lo) & (profit <= band_hi))[0]
        if hit.size:
            cand_pair.append(hit)
            cand_lev.append(np.full(hit.size, lev))

    if not cand_pair:
        raise NoProfitableScenarioError(
            f"No scenario within {band_lo:.2f}-{band_hi:.2f}% across {len(arr)} samples"
        )

    pair_idx = np.concatenate(cand_pair)
    leverage = np.concatenate(cand_lev)
    scores = score_candidates(movement[pair_idx], leverage)

    pool = len(scores)
    top_k = max(1, math.ceil(top_fraction * pool))
    order = np.argsort(-scores, kind="stable")[:top_k]
    pick = int(order[int(rng.integers(top_k))])

    p = int(pair_idx[pick])
    lev = int(leverage[pick])
    mov = float(movement[p])
    entry_idx, exit_idx = int(pair_entry[p]), int(pair_exit[p])
    return Scenario(
        direction=LONG if is_long[p] else SHORT,
        entry_price=float(arr[entry_idx]),
        exit_price=float(arr[exit_idx]),
        leverage=lev,
        profit_percent=mov * lev,
        natural_movement=mov,
        entry_time=_ts(timestamps, entry_idx),
        exit_time=_ts(timestamps, exit_idx),
        score=float(scores[pick]),
        candidate_count=pool,
    )


def find_target_scenario(
    prices: Sequence[float] | np.ndarray,
    trade_type: str,
    target_percent: float,
    timestamps: Sequence[datetime] | None = None,
    tolerance: float = 0.5,
    loss: bool = False,
    leverage_range: tuple[int, int] = DEFAULT_LEVERAGE_RANGE,
    min_movement_pct: float = 0.01,
) -> Scenario:
    """Find the scenario closest to `target_percent` for a fixed direction.

    Used for manual completion. With `loss=True` the search looks for moves
    against the position (a long that fell, a short that rose) and returns a
    negative profit_percent. Candidates within `target ± tolerance` are ranked
    by closeness in 0.1-point buckets, then by lower leverage. When none are in
    tolerance, the largest available move is used with the smallest leverage
    that reaches the target (capped at the maximum leverage).
    """
    if trade_type not in (LONG, SHORT):
        raise ValueError(f"trade_type must be '{LONG}' or '{SHORT}'")
    arr = _as_price_array(prices)
    lev_lo, lev_hi = leverage_range

    i, j, long_mov, short_mov = pair_movements(arr)
    favourable = long_mov if trade_type == LONG else short_mov
    # A loss is the mirror move, measured against the same entry price
    movement = -favourable if loss else favourable

    keep = np.nonzero(movement >= min_movement_pct)[0]
    if keep.size == 0:
        raise NoProfitableScenarioError(
            f"No {'adverse' if loss else 'favourable'} {trade_type} movement in window"
        )

    leverages = np.arange(lev_lo, lev_hi + 1)
    profit = movement[keep][:, None] * leverages[None, :]
    distance = np.abs(profit - target_percent)
    rows, cols = np.nonzero(distance <= tolerance)

    if rows.size:
        bucket = np.floor(distance[rows, cols] * 10.0)
        best = np.lexsort((leverages[cols], bucket))[0]
        p = int(keep[rows[best]])
        lev = int(leverages[cols[best]])
        count = int(rows.size)
    else:
        p = int(keep[np.argmax(movement[keep])])
        lev = int(min(lev_hi, max(lev_lo, math.ceil(target_percent / movement[p]))))
        count = 0

    mov = float(movement[p])
    entry_idx, exit_idx = int(i[p]), int(j[p])
    return Scenario(
        direction=trade_type,
        entry_price=float(arr[entry_idx]),
        exit_price=float(arr[exit_idx]),
        leverage=lev,
        profit_percent=-mov * lev if loss else mov * lev,
        natural_movement=mov,
        entry_time=_ts(timestamps, entry_idx),
        exit_time=_ts(timestamps, exit_idx),
        candidate_count=count,
    )
