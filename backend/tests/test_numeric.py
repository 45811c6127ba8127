"""
Tests for numeric helpers and period helpers.
"""

import pytest

from utils.numeric import (
    avg,
    cagr_pct,
    dominant_segment,
    gross_yield_pct,
    histogram,
    median,
    pct_change,
    percentile,
    round_half_up,
    safe_div,
)
from utils.periods import month_cutoff, quarter_sort_key, rolling_window


class TestRounding:
    """Half-up rounding, not banker's rounding."""

    def test_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.125, 2) == 0.13
        assert avg(5, 2) == 3

    def test_avg_empty(self):
        assert avg(100, 0) == 0

    def test_safe_div(self):
        assert safe_div(10, 4) == 2.5
        assert safe_div(10, 0) == 0


class TestMedian:
    def test_odd(self):
        assert median([3, 1, 2]) == 2

    def test_even_rounds_midpoint(self):
        assert median([1, 2]) == 2
        assert median([100, 200, 300, 400]) == 250

    def test_empty(self):
        assert median([]) == 0


class TestGrowth:
    """Percent change, CAGR and yield."""

    def test_pct_change(self):
        assert pct_change(120, 100) == 20.0
        assert pct_change(90, 100) == -10.0

    def test_pct_change_without_previous(self):
        assert pct_change(100, None) is None
        assert pct_change(100, 0) is None

    def test_cagr(self):
        assert cagr_pct(1000, 1210, 2) == 10.0
        assert cagr_pct(0, 1000, 2) is None
        assert cagr_pct(1000, 1100, 0) is None

    def test_gross_yield(self):
        assert gross_yield_pct(4.0, 1600) == 3.0
        assert gross_yield_pct(0, 1600) == 0
        assert gross_yield_pct(4.0, 0) == 0

    def test_dominant_segment(self):
        assert dominant_segment({'CCR': 2, 'OCR': 5}) == 'OCR'
        assert dominant_segment({}) == 'RCR'
        assert dominant_segment(None) == 'RCR'


class TestDistribution:
    """Percentiles and histograms."""

    def test_percentile_needs_more_than_ten(self):
        assert percentile(list(range(10)), 0.5) == 0
        assert percentile(list(range(11)), 0.5) == 5

    def test_histogram_includes_max(self):
        """The bucket holding the maximum value is always present."""
        result = histogram([200, 400], 200)
        assert result == [{'r': '$200', 'c': 1}, {'r': '$400', 'c': 1}]

    def test_histogram_empty(self):
        assert histogram([], 200) == []

    def test_histogram_counts_are_plain_ints(self):
        result = histogram([1000, 1150, 1199, 1200, 1399], 200)
        assert result == [{'r': '$1000', 'c': 3}, {'r': '$1200', 'c': 2}]
        assert all(type(b['c']) is int for b in result)


class TestPeriods:
    """Month windows anchored on the latest period."""

    def test_month_cutoff_crosses_year(self):
        assert month_cutoff("2024-03", 3) == "2024-01"
        assert month_cutoff("2024-02", 6) == "2023-09"
        assert month_cutoff("2024-12", 12) == "2024-01"

    def test_rolling_window_none_when_too_few(self, sale):
        window, label = rolling_window([sale() for _ in range(5)], 20)
        assert window is None
        assert label is None

    def test_rolling_window_twelve_months(self, sale):
        records = [sale(period='2024-06') for _ in range(10)] + [sale(period='2023-08') for _ in range(10)]
        window, label = rolling_window(records, 20)
        assert label == '12M'
        assert len(window) == 20

    def test_quarter_sort_key(self):
        quarters = ['24Q1', '98Q4', '23Q4', '24Q2']
        assert sorted(quarters, key=quarter_sort_key) == ['98Q4', '23Q4', '24Q1', '24Q2']
