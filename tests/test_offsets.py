"""Tests for the price/offset calculator."""

import math

import pytest

from scalper_core.offsets import bracket_prices, compute_offsets, round_to_tick


class TestRoundToTick:
    def test_nearest_multiple(self) -> None:
        assert round_to_tick(1.13, 0.25) == 1.25
        assert round_to_tick(1.1, 0.25) == 1.0

    def test_float_noise_stripped(self) -> None:
        assert round_to_tick(0.1 * 3, 0.1) == 0.3

    def test_cent_tick(self) -> None:
        assert round_to_tick(100.456, 0.01) == 100.46

    @pytest.mark.parametrize("tick", [0.0, -0.25])
    def test_non_positive_tick_raises(self, tick: float) -> None:
        with pytest.raises(ValueError, match="tick size"):
            round_to_tick(1.0, tick)


class TestComputeOffsets:
    def test_range_two_tick_quarter(self) -> None:
        plan = compute_offsets(2.0, 0.5, 0.5, 1.0, 0.25)
        assert plan is not None
        assert plan.entry_offset == 1.0
        assert plan.stop_offset == 1.0
        assert plan.target_offset == 2.0
        assert plan.tick_size == 0.25

    def test_rounding_to_tick(self) -> None:
        plan = compute_offsets(1.3, 0.5, 0.3, 0.9, 0.25)
        assert plan is not None
        assert plan.entry_offset == 0.75  # 0.65 -> 2.6 ticks -> 3
        assert plan.stop_offset == 0.5  # 0.39 -> 1.56 ticks -> 2
        assert plan.target_offset == 1.25  # 1.17 -> 4.68 ticks -> 5

    def test_offsets_floored_to_one_tick(self) -> None:
        plan = compute_offsets(0.01, 0.5, 0.5, 0.5, 0.25)
        assert plan is not None
        assert plan.entry_offset == 0.25
        assert plan.stop_offset == 0.25
        assert plan.target_offset == 0.25

    @pytest.mark.parametrize("r", [0.003, 0.2, 1.0, 7.77, 250.0])
    @pytest.mark.parametrize("frac", [0.01, 0.5, 3.0])
    def test_every_offset_at_least_one_tick(self, r: float, frac: float) -> None:
        plan = compute_offsets(r, frac, frac, frac, 0.25)
        assert plan is not None
        for value in (plan.entry_offset, plan.stop_offset, plan.target_offset):
            assert value >= 0.25

    @pytest.mark.parametrize("r", [None, 0.0, -1.5, math.nan, math.inf])
    def test_invalid_reading_returns_none(self, r) -> None:
        assert compute_offsets(r, 0.5, 0.5, 1.0, 0.25) is None

    def test_non_positive_fraction_raises(self) -> None:
        with pytest.raises(ValueError, match="fraction"):
            compute_offsets(2.0, 0.0, 0.5, 1.0, 0.25)


class TestBracketPrices:
    def test_straddles_close(self) -> None:
        assert bracket_prices(100.0, 1.0, 0.25) == (99.0, 101.0)

    def test_prices_snap_to_tick(self) -> None:
        buy, sell = bracket_prices(100.1, 0.25, 0.25)
        assert buy == 99.75
        assert sell == 100.25

    def test_collapsed_bracket_nudges_buy_down(self) -> None:
        # Both sides round to 100.0 on a whole-point tick.
        assert bracket_prices(100.0, 0.1, 1.0) == (99.0, 100.0)

    def test_unfixable_bracket_returns_none(self) -> None:
        assert bracket_prices(0.2, 0.1, 1.0) is None
