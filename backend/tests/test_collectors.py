"""
Tests for bounded collectors (ReservoirSample, TopN).
"""

import random
from collections import Counter

import pytest

from services.collectors import ReservoirSample, TopN


class TestReservoirSample:
    """Tests for the fixed-capacity uniform sample."""

    def test_keeps_everything_under_capacity(self, rng):
        sample = ReservoirSample(10, rng)
        for i in range(7):
            sample.add(i)
        assert sample.items == list(range(7))
        assert sample.seen == 7

    def test_size_capped(self, rng):
        sample = ReservoirSample(10, rng)
        for i in range(1000):
            sample.add(i)
        assert len(sample) == 10
        assert sample.seen == 1000
        assert len(set(sample)) == 10
        assert all(0 <= x < 1000 for x in sample)

    def test_seeded_rng_is_reproducible(self):
        a, b = ReservoirSample(5, random.Random(7)), ReservoirSample(5, random.Random(7))
        for i in range(500):
            a.add(i)
            b.add(i)
        assert a.items == b.items

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ReservoirSample(0)

    def test_late_items_can_enter(self, rng):
        """Items past capacity are not systematically excluded."""
        sample = ReservoirSample(100, rng)
        for i in range(10000):
            sample.add(i)
        assert any(x >= 5000 for x in sample)

    def test_inclusion_probability_is_uniform(self):
        """Each of 20 items is kept in ~5/20 of 20,000 trials."""
        trials, n, cap = 20000, 20, 5
        counts = Counter()
        rng = random.Random(1234)
        for _ in range(trials):
            sample = ReservoirSample(cap, rng)
            for i in range(n):
                sample.add(i)
            counts.update(sample)

        expected = trials * cap / n
        for i in range(n):
            assert abs(counts[i] - expected) / expected < 0.05


class TestTopN:
    """Tests for the bounded best-K collector."""

    def test_matches_stable_full_sort(self):
        """TopN equals sorted(stream, key)[:K] for random streams with ties."""
        rng = random.Random(99)
        for _ in range(50):
            stream = [(rng.randint(0, 20), i) for i in range(rng.randint(0, 200))]
            k = rng.randint(1, 30)
            top = TopN(k, key=lambda item: item[0])
            for item in stream:
                top.add(item)
            assert top.result() == sorted(stream, key=lambda item: item[0])[:k]

    def test_most_recent_first(self):
        """A negated ordinal key keeps the newest items."""
        top = TopN(3, key=lambda month: -month)
        for month in [5, 1, 9, 3, 12, 7]:
            top.add(month)
        assert top.result() == [12, 9, 7]

    def test_equal_key_does_not_displace(self):
        top = TopN(2, key=lambda item: item[0])
        top.add((1, 'a'))
        top.add((2, 'b'))
        top.add((2, 'c'))
        assert top.result() == [(1, 'a'), (2, 'b')]

    def test_result_is_a_copy(self):
        top = TopN(2, key=lambda x: x)
        top.add(1)
        top.result().append(99)
        assert len(top) == 1

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            TopN(0, key=lambda x: x)
