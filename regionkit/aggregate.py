import abc
import warnings
from concurrent.futures import ThreadPoolExecutor
from fractions import Fraction
from typing import Any, Hashable, List, NamedTuple, Union

import numpy

from regionkit.errors import InvalidValueError
from regionkit.features import ObservationSet
from regionkit.join import JoinResult


class AggregateRow(NamedTuple):
    region_id: Hashable
    value: float
    count: int


class Reducer(metaclass=abc.ABCMeta):
    """Reduction of the observation values of a single region.

    A reducer works in two phases so that shards of observations can be reduced independently.
    :meth:`partial` reduces the values of one shard into a state,
    :meth:`merge` combines two states and :meth:`finalize` turns a state into the aggregated value.
    ``merge`` must be associative and commutative, so the result does not depend on the order
    in which shards are merged.
    """

    name = None

    @abc.abstractmethod
    def partial(self, values: numpy.ndarray) -> Any:
        pass

    @abc.abstractmethod
    def merge(self, left, right) -> Any:
        pass

    @abc.abstractmethod
    def finalize(self, state, count: int) -> float:
        pass


def _exact_sum(values):
    # Fractions make the sum exact, so it is independent of the summation order
    return sum((Fraction(float(value)) for value in values), Fraction(0))


class SumReducer(Reducer):
    name = "sum"

    def partial(self, values):
        return _exact_sum(values)

    def merge(self, left, right):
        return left + right

    def finalize(self, state, count):
        return float(state)


class CountReducer(Reducer):
    name = "count"

    def partial(self, values):
        return len(values)

    def merge(self, left, right):
        return left + right

    def finalize(self, state, count):
        return float(state)


class MeanReducer(Reducer):
    """Mean computed as exact sum over count, never as a running average"""

    name = "mean"

    def partial(self, values):
        return _exact_sum(values)

    def merge(self, left, right):
        return left + right

    def finalize(self, state, count):
        return float(state / count)


class MinReducer(Reducer):
    name = "min"

    def partial(self, values):
        return float(numpy.min(values))

    def merge(self, left, right):
        return min(left, right)

    def finalize(self, state, count):
        return state


class MaxReducer(Reducer):
    name = "max"

    def partial(self, values):
        return float(numpy.max(values))

    def merge(self, left, right):
        return max(left, right)

    def finalize(self, state, count):
        return state


_REDUCERS = {
    reducer.name: reducer
    for reducer in (SumReducer, CountReducer, MeanReducer, MinReducer, MaxReducer)
}


def get_reducer(reducer: Union[str, Reducer]) -> Reducer:
    """Obtain a :class:`.Reducer` by name. Reducer instances are returned as is."""
    if isinstance(reducer, Reducer):
        return reducer
    if reducer not in _REDUCERS:
        raise ValueError(
            f"Reducer '{reducer}' is not supported. Supported reducers: {tuple(_REDUCERS)}"
        )
    return _REDUCERS[reducer]()


def _reduce_shard(reducer, region_positions, values):
    """Partially reduce one shard into {region position: (state, count)}"""
    order = numpy.argsort(region_positions, kind="stable")
    unique_regions, group_starts, counts = numpy.unique(
        region_positions[order], return_index=True, return_counts=True
    )
    partials = {}
    for region, start, count in zip(unique_regions, group_starts, counts):
        shard_values = values[order[start : start + count]]
        partials[int(region)] = (reducer.partial(shard_values), int(count))
    return partials


def aggregate(
    join_result: JoinResult,
    observations: ObservationSet,
    reducer: Union[str, Reducer] = "sum",
    nodata_value: float = numpy.nan,
    n_shards: int = 1,
    n_workers: int = None,
) -> List[AggregateRow]:
    """Reduce the observation values per region.

    Observations that were not assigned to a region are ignored.
    Every region of the join appears exactly once in the output, in canonical order.
    Regions without observations get ``nodata_value`` and a count of zero,
    they are never dropped.

    Parameters
    ----------
    join_result: :class:`.JoinResult`
        The region assigned to each observation
    observations: :class:`.ObservationSet`
        The observations the join was performed on
    reducer: Union[:class:`str`, :class:`.Reducer`]
        The reduction to apply. Options are ("sum", "count", "mean", "min", "max")
        or a custom :class:`.Reducer`. Default: "sum"
    nodata_value: :class:`float`
        The value used for regions without observations. Default: numpy.nan
        Downstream, NaN and any value equal to ``nodata_value`` are treated as missing data.
        A region whose aggregate happens to equal a non-NaN ``nodata_value`` is therefore
        indistinguishable from a region without observations, a warning is given when this occurs.
    n_shards: :class:`int`
        The number of shards the observations are divided into before reducing. Default: 1
    n_workers: :class:`int` (optional)
        Number of threads used to reduce the shards.
        If None or 1, no threads are used. Default: None

    Returns
    -------
    List[:class:`.AggregateRow`]
        One row per region

    Raises
    ------
    InvalidValueError
        When an observation value is not finite
    ValueError
        When ``n_shards`` is smaller than one or the join does not match the observations
    """
    reducer = get_reducer(reducer)
    if n_shards < 1:
        raise ValueError(f"Expected 'n_shards' to be 1 or larger, got: {n_shards}")

    positions = join_result.observation_positions
    if len(positions) > 0 and positions.max() >= len(observations):
        raise ValueError(
            "The join result refers to more observations than were supplied. Was the join performed on these observations?"
        )
    values = numpy.asarray(observations.values, dtype=float)[positions]
    if not numpy.isfinite(values).all():
        raise InvalidValueError("Observation values must be finite")

    region_positions = join_result.region_positions
    assigned = region_positions >= 0
    values = values[assigned]
    region_positions = region_positions[assigned]

    shards = numpy.array_split(numpy.arange(len(values)), n_shards)

    def _reduce(shard):
        return _reduce_shard(reducer, region_positions[shard], values[shard])

    if n_workers is not None and n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            partials = list(executor.map(_reduce, shards))
    else:
        partials = [_reduce(shard) for shard in shards]

    merged = {}
    for partial in partials:
        for region, (state, count) in partial.items():
            if region in merged:
                merged_state, merged_count = merged[region]
                merged[region] = (reducer.merge(merged_state, state), merged_count + count)
            else:
                merged[region] = (state, count)

    rows = []
    for position, region in enumerate(join_result.regions):
        if position in merged:
            state, count = merged[position]
            rows.append(AggregateRow(region.id, reducer.finalize(state, count), count))
        else:
            rows.append(AggregateRow(region.id, nodata_value, 0))

    clashes = [
        row.region_id for row in rows if row.count > 0 and row.value == nodata_value
    ]
    if clashes:
        warnings.warn(
            f"The aggregated value of regions {clashes} equals the nodata_value {nodata_value}. These regions will be treated as regions without data."
        )
    return rows


def aggregate_table(rows: List[AggregateRow]):
    """Split aggregate rows into columns.

    Returns
    -------
    Tuple(`list`, `numpy.ndarray`, `numpy.ndarray`)
        The region ids, the aggregated values and the observation counts
    """
    ids = [row.region_id for row in rows]
    values = numpy.array([row.value for row in rows], dtype=float)
    counts = numpy.array([row.count for row in rows], dtype=int)
    return ids, values, counts
