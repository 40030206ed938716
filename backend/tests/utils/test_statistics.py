import math

import pytest

from playergraph.utils.statistics import (
    clamp,
    cosine_similarity,
    interval_overlap_ratio,
    jaccard,
    jensen_shannon_divergence,
    kill_death_ratio,
    normalize_distribution,
    ratio_similarity,
    safe_divide,
)


class TestScalarHelpers:
    def test_safe_divide(self):
        assert safe_divide(1, 4) == 0.25
        assert safe_divide(1, 0) == 0.0
        assert safe_divide(1, 0, default=1.0) == 1.0

    def test_clamp(self):
        assert clamp(-0.5) == 0.0
        assert clamp(1.5) == 1.0
        assert clamp(0.3) == 0.3

    def test_kill_death_ratio_without_deaths(self):
        assert kill_death_ratio(7, 0) == 7.0
        assert kill_death_ratio(6, 3) == 2.0

    @pytest.mark.parametrize(
        "a, b, expected",
        [(0, 0, 1.0), (2.0, 2.0, 1.0), (1.0, 2.0, 0.5), (0.0, 3.0, 0.0)],
    )
    def test_ratio_similarity(self, a, b, expected):
        assert ratio_similarity(a, b) == pytest.approx(expected)
        assert ratio_similarity(b, a) == pytest.approx(expected)


class TestVectorHelpers:
    def test_cosine_of_parallel_vectors(self):
        first = {"dust": 1.0, "snow": 2.0}
        second = {"dust": 2.0, "snow": 4.0}

        assert cosine_similarity(first, second, first.keys()) == pytest.approx(1.0)

    def test_cosine_restricted_to_keys(self):
        first = {"dust": 1.0, "snow": 5.0}
        second = {"dust": 3.0, "rail": 5.0}

        assert cosine_similarity(first, second, ["dust"]) == pytest.approx(1.0)

    def test_cosine_of_zero_vector(self):
        assert cosine_similarity({"dust": 0.0}, {"dust": 1.0}, ["dust"]) == 0.0

    def test_normalize_distribution(self):
        assert normalize_distribution([1, 3]) == [0.25, 0.75]
        assert normalize_distribution([0, 0]) == [0.0, 0.0]


class TestJensenShannon:
    def test_identical_distributions(self):
        assert jensen_shannon_divergence([0.5, 0.5], [0.5, 0.5]) == pytest.approx(0.0)

    def test_disjoint_distributions(self):
        assert jensen_shannon_divergence([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)

    def test_partial_overlap_is_between_bounds(self):
        value = jensen_shannon_divergence([0.5, 0.5], [1.0, 0.0])

        assert 0.0 < value < 1.0
        assert not math.isnan(value)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            jensen_shannon_divergence([1.0], [0.5, 0.5])


class TestSetAndIntervalHelpers:
    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0

    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ((0, 10), (20, 30), 0.0),
            ((0, 10), (10, 20), 0.0),
            ((0, 10), (5, 20), 0.5),
            ((0, 100), (10, 20), 1.0),
            ((0, 10), (5, 5), 1.0),
        ],
    )
    def test_interval_overlap_ratio(self, a, b, expected):
        assert interval_overlap_ratio(*a, *b) == pytest.approx(expected)
