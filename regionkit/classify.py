from typing import Tuple

import numpy

from regionkit.errors import InsufficientDataError, InvalidValueError, NoDataError

# Class index assigned to values equal to the nodata_value
NODATA_CLASS = -1


class ClassBreaks:
    """Ordered partition of a value range into k classes.

    The ``k-1`` breaks divide the range into half-open intervals, where class ``i`` spans
    ``[breaks[i-1], breaks[i])``. The first class starts at ``lower`` and the last class
    ends at ``upper`` (inclusive).

    Parameters
    ----------
    breaks: `numpy.ndarray`
        The k-1 boundaries between the classes, in ascending order
    lower: :class:`float`
        The smallest classified value
    upper: :class:`float`
        The largest classified value
    method: :class:`str` (optional)
        The name of the method used to obtain the breaks
    """

    def __init__(self, breaks, lower: float, upper: float, method: str = None):
        breaks = numpy.array(breaks, dtype=float).reshape(-1)
        if numpy.any(numpy.diff(breaks) < 0):
            raise ValueError(f"Expected breaks in ascending order, got {breaks.tolist()}")
        breaks.flags.writeable = False
        self._breaks = breaks
        self._lower = float(lower)
        self._upper = float(upper)
        self._method = method

    def __len__(self):
        return self.k

    def __repr__(self):
        return f"{self.__class__.__name__}(breaks={self._breaks.tolist()}, lower={self._lower}, upper={self._upper})"

    @property
    def breaks(self) -> numpy.ndarray:
        return self._breaks

    @property
    def lower(self) -> float:
        return self._lower

    @property
    def upper(self) -> float:
        return self._upper

    @property
    def method(self) -> str:
        return self._method

    @property
    def k(self) -> int:
        """The number of classes"""
        return len(self._breaks) + 1

    def class_range(self, class_index: int) -> Tuple[float, float]:
        """The (lower, upper) boundary of a class"""
        if not 0 <= class_index < self.k:
            raise IndexError(
                f"Class index {class_index} out of range for {self.k} classes"
            )
        lower = self._lower if class_index == 0 else self._breaks[class_index - 1]
        upper = self._upper if class_index == self.k - 1 else self._breaks[class_index]
        return (float(lower), float(upper))

    def classify(self, values, nodata_value=numpy.nan):
        """Map values to their class index using a binary search over the breaks.

        Parameters
        ----------
        values: Union[:class:`float`, `numpy.ndarray`]
            The value(s) to classify
        nodata_value: :class:`float`
            Values equal to ``nodata_value`` are assigned :data:`NODATA_CLASS`. Default: numpy.nan

        Returns
        -------
        Union[:class:`int`, `numpy.ndarray`]
            The class index per value

        Examples
        --------

        .. code-block:: python

            >>> breaks = ClassBreaks([10], lower=1, upper=12)
            >>> breaks.classify([1, 3, 10, 12, numpy.nan])
            array([ 0,  0,  1,  1, -1])

        ..
        """
        values = numpy.asarray(values, dtype=float)
        single = values.ndim == 0
        values = values.reshape(-1)
        classes = numpy.searchsorted(self._breaks, values, side="right")
        classes[nodata_mask(values, nodata_value)] = NODATA_CLASS
        return int(classes[0]) if single else classes


def nodata_mask(values, nodata_value):
    """True where ``values`` is NaN or equal to ``nodata_value``"""
    if nodata_value is None:
        return numpy.isnan(values)
    if numpy.isnan(nodata_value):
        return numpy.isnan(values)
    return numpy.isnan(values) | (values == nodata_value)


def _prepare(values, k, nodata_value):
    """Sorted values without nodata, validated against ``k``"""
    values = numpy.asarray(values, dtype=float).reshape(-1)
    values = values[~nodata_mask(values, nodata_value)]
    if not numpy.isfinite(values).all():
        raise InvalidValueError("Cannot classify infinite values")
    if len(values) == 0:
        raise NoDataError("There are no values with data to classify")
    if int(k) != k or k < 1:
        raise ValueError(f"Expected 'k' to be an integer of 1 or larger, got: {k}")
    if k > len(values):
        raise InsufficientDataError(
            f"Cannot divide {len(values)} values into {k} classes"
        )
    return numpy.sort(values), int(k)


def fisher_jenks(values, k: int, nodata_value=numpy.nan) -> ClassBreaks:
    """Natural breaks by Fisher's exact optimal grouping.

    Partitions the sorted values into ``k`` contiguous classes such that the total
    within-class sum of squared deviations is minimal.
    This is solved with dynamic programming, where ``cost[j, i]`` is the minimal
    cost of dividing the first ``i`` sorted values into ``j + 1`` classes.
    Each row is computed from the previous one, the cost of a single class is obtained in
    constant time from cumulative sums. A table of back-pointers stores the start of the
    last class, from which the breaks are reconstructed.
    The complexity is O(k·n²) in time and O(k·n) in memory.

    Equal values may end up on both sides of a break.
    In that case they are all classified in the upper class by :meth:`.ClassBreaks.classify`.

    Parameters
    ----------
    values: `numpy.ndarray`
        The values to classify. Values equal to ``nodata_value`` are ignored.
    k: :class:`int`
        The number of classes
    nodata_value: :class:`float`
        The value marking missing data. Default: numpy.nan

    Returns
    -------
    :class:`.ClassBreaks`
        The optimal breaks

    Raises
    ------
    NoDataError
        When there are no values besides ``nodata_value``
    InsufficientDataError
        When ``k`` is larger than the number of values

    Examples
    --------

    .. code-block:: python

        >>> fisher_jenks([1, 2, 3, 10, 11, 12], k=2).breaks
        array([10.])

    ..
    """
    values, k = _prepare(values, k, nodata_value)
    n = len(values)

    # Center the data to limit cancellation in the cumulative sums
    centered = values - values.mean()
    sum_1 = numpy.concatenate([[0.0], numpy.cumsum(centered)])
    sum_2 = numpy.concatenate([[0.0], numpy.cumsum(centered**2)])

    def _class_cost(start, stop):
        """Sum of squared deviations of values[start:stop], vectorized over ``start``"""
        size = stop - start
        cost = (sum_2[stop] - sum_2[start]) - (sum_1[stop] - sum_1[start]) ** 2 / size
        return numpy.maximum(cost, 0.0)

    cost = numpy.full((k, n + 1), numpy.inf)
    back = numpy.zeros((k, n + 1), dtype=int)
    stops = numpy.arange(1, n + 1)
    cost[0, 1:] = _class_cost(numpy.zeros(n, dtype=int), stops)

    for j in range(1, k):
        # with j+1 classes, at least j+1 values are needed
        for i in range(j + 1, n + 1):
            starts = numpy.arange(j, i)
            candidates = cost[j - 1, starts] + _class_cost(starts, i)
            best = int(numpy.argmin(candidates))
            cost[j, i] = candidates[best]
            back[j, i] = starts[best]

    class_starts = []
    stop = n
    for j in range(k - 1, 0, -1):
        stop = back[j, stop]
        class_starts.append(stop)
    breaks = values[class_starts[::-1]]
    return ClassBreaks(breaks, lower=values[0], upper=values[-1], method="fisher_jenks")


def equal_interval(values, k: int, nodata_value=numpy.nan) -> ClassBreaks:
    """Divide the value range into ``k`` classes of equal width"""
    values, k = _prepare(values, k, nodata_value)
    lower, upper = values[0], values[-1]
    breaks = lower + (upper - lower) * numpy.arange(1, k) / k
    return ClassBreaks(breaks, lower=lower, upper=upper, method="equal_interval")


def quantiles(values, k: int, nodata_value=numpy.nan) -> ClassBreaks:
    """Divide the values into ``k`` classes with (approximately) the same number of values"""
    values, k = _prepare(values, k, nodata_value)
    breaks = numpy.quantile(values, numpy.arange(1, k) / k)
    return ClassBreaks(breaks, lower=values[0], upper=values[-1], method="quantiles")


_METHODS = dict(
    fisher_jenks=fisher_jenks,
    equal_interval=equal_interval,
    quantiles=quantiles,
)


def classify(values, k: int, method="fisher_jenks", nodata_value=numpy.nan) -> ClassBreaks:
    """Determine ``k`` class breaks for ``values``.

    Parameters
    ----------
    values: `numpy.ndarray`
        The values to classify. Values equal to ``nodata_value`` are ignored.
    k: :class:`int`
        The number of classes
    method: :class:`str`
        The classification method. Options are ("fisher_jenks", "equal_interval", "quantiles").
        Default: "fisher_jenks"
    nodata_value: :class:`float`
        The value marking missing data. Default: numpy.nan

    Returns
    -------
    :class:`.ClassBreaks`
        The class breaks

    See also
    --------
    :func:`.fisher_jenks`
    """
    if method not in _METHODS:
        raise ValueError(
            f"Method '{method}' is not supported. Supported methods: {tuple(_METHODS)}"
        )
    return _METHODS[method](values, k, nodata_value=nodata_value)


def goodness_of_variance_fit(values, class_breaks: ClassBreaks, nodata_value=numpy.nan) -> float:
    """The goodness of variance fit (GVF) of a classification.

    GVF is one minus the ratio of the within-class sum of squared deviations
    and the sum of squared deviations from the overall mean.
    A value of 1 indicates a perfect fit.
    """
    values = numpy.asarray(values, dtype=float).reshape(-1)
    values = values[~nodata_mask(values, nodata_value)]
    if len(values) == 0:
        raise NoDataError("There are no values with data to evaluate")
    total = numpy.sum((values - values.mean()) ** 2)
    if total == 0:
        return 1.0
    classes = class_breaks.classify(values, nodata_value=nodata_value)
    within = 0.0
    for class_index in numpy.unique(classes):
        members = values[classes == class_index]
        within += numpy.sum((members - members.mean()) ** 2)
    return float(1 - within / total)
