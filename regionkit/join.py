import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Literal

import numpy

from regionkit.features import ObservationSet, check_crs
from regionkit.index import SpatialIndex


class _Unassigned:
    """Sentinel region id for observations that fall outside all regions"""

    def __repr__(self):
        return "UNASSIGNED"

    def __reduce__(self):
        return "UNASSIGNED"


UNASSIGNED = _Unassigned()


class JoinResult:
    """The region each observation was assigned to.

    Regions are referred to by their position in the canonical order of the :class:`.RegionSet`,
    where -1 means the observation was not assigned to any region.
    In ``inner`` mode unassigned observations are not part of the result.

    Parameters
    ----------
    observation_positions: `numpy.ndarray`
        The positions of the observations in the joined :class:`.ObservationSet`
    region_positions: `numpy.ndarray`
        The canonical position of the assigned region per observation, -1 if unassigned
    regions: :class:`.RegionSet`
        The regions that were joined against
    observation_ids: `numpy.ndarray`
        The source ids of all observations in the joined :class:`.ObservationSet`
    mode: :class:`str`
        The join mode, one of ("inner", "left")
    """

    def __init__(
        self, observation_positions, region_positions, regions, observation_ids, mode
    ):
        self._observation_positions = numpy.asarray(observation_positions, dtype=int)
        self._region_positions = numpy.asarray(region_positions, dtype=int)
        self._observation_positions.flags.writeable = False
        self._region_positions.flags.writeable = False
        self._regions = regions
        self._observation_ids = observation_ids
        self._mode = mode

    def __len__(self):
        return len(self._observation_positions)

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def regions(self):
        return self._regions

    @property
    def observation_positions(self) -> numpy.ndarray:
        return self._observation_positions

    @property
    def region_positions(self) -> numpy.ndarray:
        return self._region_positions

    @property
    def unassigned_count(self) -> int:
        return int(numpy.count_nonzero(self._region_positions < 0))

    @property
    def assigned_count(self) -> int:
        return int(numpy.count_nonzero(self._region_positions >= 0))

    def region_id(self, region_position):
        return UNASSIGNED if region_position < 0 else self._regions[region_position].id

    def to_dict(self) -> dict:
        """Mapping of observation id to region id, or to ``UNASSIGNED``"""
        return {
            self._observation_ids[observation]: self.region_id(region)
            for observation, region in zip(
                self._observation_positions, self._region_positions
            )
        }


def _assign(index: SpatialIndex, points: numpy.ndarray) -> numpy.ndarray:
    """The canonical position of the first region containing each point, -1 if there is none"""
    assigned = numpy.full(len(points), -1, dtype=int)
    point_positions, region_positions = index.candidate_pairs(points)
    if len(point_positions) == 0:
        return assigned

    # Test all candidate points of a region at once
    hit = numpy.zeros(len(point_positions), dtype=bool)
    order = numpy.argsort(region_positions, kind="stable")
    unique_regions, group_starts = numpy.unique(
        region_positions[order], return_index=True
    )
    group_stops = numpy.append(group_starts[1:], len(order))
    for region_position, start, stop in zip(unique_regions, group_starts, group_stops):
        pairs = order[start:stop]
        geometry = index.regions[region_position].geometry
        hit[pairs] = geometry.contains(points[point_positions[pairs]])

    # Pairs are sorted by point and then by region position,
    # so the first hit of a point is the first containing region in canonical order
    hit_points = point_positions[hit]
    hit_regions = region_positions[hit]
    first_points, first_hits = numpy.unique(hit_points, return_index=True)
    assigned[first_points] = hit_regions[first_hits]
    return assigned


def join(
    observations: ObservationSet,
    index: SpatialIndex,
    mode: Literal["inner", "left"] = "left",
    n_workers: int = None,
) -> JoinResult:
    """Assign each observation to the region that contains it.

    Candidate regions are obtained from the ``index`` and tested for exact containment
    (see :func:`regionkit.geometry.contains`) in canonical region order. The first region that contains
    the point is selected. This makes the result deterministic for points on a shared edge
    of adjacent regions, or points in overlapping regions.

    Parameters
    ----------
    observations: :class:`.ObservationSet`
        The observations to assign
    index: :class:`.SpatialIndex`
        The index built on the regions to join against
    mode: :class:`str`
        "left" keeps observations outside of all regions as unassigned,
        "inner" drops them. Default: "left"
    n_workers: :class:`int` (optional)
        Number of threads to divide the observations over.
        If None or 1, no threads are used. Default: None

    Returns
    -------
    :class:`.JoinResult`
        The assigned region per observation

    Raises
    ------
    ValueError
        When an unsupported mode is supplied
    CRSMismatchError
        When the regions and the observations have a different CRS

    Examples
    --------

    .. code-block:: python

        >>> from regionkit import ObservationSet, Region, RegionSet, SpatialIndex, join
        >>> from regionkit.geometry import Polygon
        >>> regions = RegionSet([
        ...     Region("west", Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])),
        ...     Region("east", Polygon([(1, 0), (2, 0), (2, 1), (1, 1)])),
        ... ])
        >>> observations = ObservationSet([(0.5, 0.5), (1, 0.5), (5, 5)], values=[1, 2, 3])
        >>> join(observations, SpatialIndex(regions)).to_dict()
        {0: 'west', 1: 'west', 2: UNASSIGNED}

    ..

    """
    if mode not in ("inner", "left"):
        raise ValueError(f"mode = '{mode}' is not supported. Supported modes: ('inner', 'left')")
    check_crs(index.regions, observations)

    points = observations.points
    if n_workers is not None and n_workers > 1 and len(points) > 0:
        chunks = numpy.array_split(points, min(n_workers, len(points)))
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            assigned = numpy.concatenate(
                list(executor.map(lambda chunk: _assign(index, chunk), chunks))
            )
    else:
        assigned = _assign(index, points)

    observation_positions = numpy.arange(len(points))
    if len(points) > 0 and not (assigned >= 0).any():
        warnings.warn("None of the observations fall within any of the regions.")
    if mode == "inner":
        keep = assigned >= 0
        observation_positions = observation_positions[keep]
        assigned = assigned[keep]

    return JoinResult(
        observation_positions,
        assigned,
        regions=index.regions,
        observation_ids=observations.ids,
        mode=mode,
    )
