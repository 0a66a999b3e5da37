import itertools

import numpy
import pytest

from regionkit.classify import (
    NODATA_CLASS,
    ClassBreaks,
    classify,
    equal_interval,
    fisher_jenks,
    goodness_of_variance_fit,
    quantiles,
)
from regionkit.errors import (
    ClassifierError,
    InsufficientDataError,
    InvalidValueError,
    NoDataError,
)


def _within_class_cost(sorted_values, class_starts):
    bounds = [0, *class_starts, len(sorted_values)]
    return sum(
        numpy.sum((group - group.mean()) ** 2)
        for group in (
            sorted_values[start:stop] for start, stop in zip(bounds[:-1], bounds[1:])
        )
    )


def test_fisher_jenks_two_clusters():
    breaks = fisher_jenks([1, 2, 3, 10, 11, 12], k=2)
    numpy.testing.assert_allclose(breaks.breaks, [10])
    assert breaks.k == 2
    assert breaks.class_range(0) == (1, 10)
    assert breaks.class_range(1) == (10, 12)
    numpy.testing.assert_array_equal(
        breaks.classify([1, 2, 3, 10, 11, 12]), [0, 0, 0, 1, 1, 1]
    )


def test_fisher_jenks_unsorted_input():
    breaks = fisher_jenks([11, 1, 12, 3, 10, 2], k=2)
    numpy.testing.assert_allclose(breaks.breaks, [10])


def test_fisher_jenks_single_class():
    breaks = fisher_jenks([4, 1, 12], k=1)
    assert len(breaks.breaks) == 0
    assert breaks.class_range(0) == (1, 12)
    numpy.testing.assert_array_equal(breaks.classify([1, 4, 12]), [0, 0, 0])


def test_fisher_jenks_one_value_per_class():
    breaks = fisher_jenks([3, 1, 2], k=3)
    numpy.testing.assert_allclose(breaks.breaks, [2, 3])
    numpy.testing.assert_array_equal(breaks.classify([1, 2, 3]), [0, 1, 2])


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_fisher_jenks_is_optimal(seed):
    rng = numpy.random.default_rng(seed)
    values = numpy.sort(rng.uniform(0, 100, size=8))
    k = 3

    breaks = fisher_jenks(values, k)
    class_starts = numpy.searchsorted(values, breaks.breaks, side="left")
    result = _within_class_cost(values, class_starts)

    best = min(
        _within_class_cost(values, starts)
        for starts in itertools.combinations(range(1, len(values)), k - 1)
    )
    assert result == pytest.approx(best)


def test_fisher_jenks_ignores_nodata():
    breaks = fisher_jenks([1, numpy.nan, 2, 3, 10, numpy.nan, 11, 12], k=2)
    numpy.testing.assert_allclose(breaks.breaks, [10])

    breaks = fisher_jenks([-9999, 1, 2, 3, 10, 11, 12], k=2, nodata_value=-9999)
    numpy.testing.assert_allclose(breaks.breaks, [10])
    assert breaks.lower == 1


def test_fisher_jenks_repeated_values():
    breaks = fisher_jenks([5, 5, 5, 5], k=2)
    assert breaks.k == 2
    # values equal to a break end up in the upper class
    numpy.testing.assert_array_equal(breaks.classify([5, 5]), [1, 1])


@pytest.mark.parametrize(
    "values, error",
    [
        [[], NoDataError],
        [[numpy.nan, numpy.nan], NoDataError],
        [[1, 2], InsufficientDataError],
    ],
)
def test_fisher_jenks_errors(values, error):
    with pytest.raises(error):
        fisher_jenks(values, k=3)
    assert issubclass(error, ClassifierError)


def test_nodata_value_only():
    with pytest.raises(NoDataError):
        fisher_jenks([-1, -1], k=1, nodata_value=-1)


@pytest.mark.parametrize("k", [0, -1, 1.5])
def test_invalid_k(k):
    with pytest.raises(ValueError):
        fisher_jenks([1, 2, 3], k=k)


def test_infinite_values():
    with pytest.raises(InvalidValueError):
        fisher_jenks([1, numpy.inf, 3], k=2)


def test_classify_value_on_break():
    breaks = ClassBreaks([10], lower=1, upper=12)
    assert breaks.classify(10) == 1
    assert breaks.classify(9.999) == 0
    assert isinstance(breaks.classify(12), int)


def test_classify_nodata():
    breaks = ClassBreaks([10], lower=1, upper=12)
    numpy.testing.assert_array_equal(
        breaks.classify([numpy.nan, 3, -9999], nodata_value=-9999),
        [NODATA_CLASS, 0, NODATA_CLASS],
    )


def test_class_breaks_validation():
    with pytest.raises(ValueError):
        ClassBreaks([5, 2], lower=0, upper=10)
    breaks = ClassBreaks([5], lower=0, upper=10)
    assert not breaks.breaks.flags.writeable
    with pytest.raises(IndexError):
        breaks.class_range(2)
    with pytest.raises(IndexError):
        breaks.class_range(-1)


def test_equal_interval():
    breaks = equal_interval([0, 10], k=2)
    numpy.testing.assert_allclose(breaks.breaks, [5])
    breaks = equal_interval([0, 3, 7, 12], k=4)
    numpy.testing.assert_allclose(breaks.breaks, [3, 6, 9])
    assert breaks.method == "equal_interval"


def test_quantiles():
    breaks = quantiles([1, 2, 3, 4], k=2)
    numpy.testing.assert_allclose(breaks.breaks, [2.5])


@pytest.mark.parametrize("method", ["fisher_jenks", "equal_interval", "quantiles"])
def test_classify_methods(method):
    breaks = classify([1, 2, 3, 10, 11, 12], k=3, method=method)
    assert breaks.k == 3
    assert breaks.method == method
    assert breaks.lower == 1
    assert breaks.upper == 12


def test_classify_unknown_method():
    with pytest.raises(ValueError):
        classify([1, 2, 3], k=2, method="head_tail")


def test_goodness_of_variance_fit():
    values = [1, 1, 5, 5]
    breaks = fisher_jenks(values, k=2)
    assert goodness_of_variance_fit(values, breaks) == pytest.approx(1.0)

    values = [1, 2, 3, 10, 11, 12]
    single = fisher_jenks(values, k=1)
    double = fisher_jenks(values, k=2)
    assert goodness_of_variance_fit(values, single) == pytest.approx(0.0)
    assert goodness_of_variance_fit(values, double) > 0.9
