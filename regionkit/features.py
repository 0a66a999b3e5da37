import warnings
from types import MappingProxyType
from typing import Any, Hashable, Iterable, NamedTuple

import numpy
from pyproj import CRS

from regionkit.errors import CRSMismatchError, InvalidValueError
from regionkit.geometry import MultiPolygon, Point, as_multipolygon, from_shapely


class _CRSMixin:
    @property
    def crs(self):
        """The Coordinate Reference System (CRS) represented as a ``pyproj.CRS`` object.

        Returns
        -------
        `pyproj.CRS`
            None if the CRS is not set. When setting, the value can be anything accepted by
            :meth:`pyproj.CRS.from_user_input() <pyproj.crs.CRS.from_user_input>`,
            such as an authority string (eg "EPSG:4326") or a WKT string.
        """
        return self._crs

    @crs.setter
    def crs(self, value):
        """Sets the value of the crs"""
        self._crs = None if not value else CRS.from_user_input(value)


def check_crs(left, right):
    """Verify two objects with a ``crs`` attribute can be combined.

    No reprojection is performed. Differing CRSs raise a :class:`.CRSMismatchError`.
    If only one of the two has a CRS, a warning is given and the CRSs are assumed to be identical.
    """
    if left.crs is None or right.crs is None:
        if left.crs is not None or right.crs is not None:
            warnings.warn(
                "`crs` not set for regions or observations. Assuming both have an identical CRS."
            )
        return
    if not left.crs.is_exact_same(right.crs):
        raise CRSMismatchError(
            f"Regions and observations have a different CRS ({left.crs.to_string()} and {right.crs.to_string()}). Please reproject one of them first."
        )


class Region:
    """A named polygonal area, the unit of aggregation.

    Parameters
    ----------
    id: Hashable
        An opaque identifier, unique within a :class:`.RegionSet`
    geometry: Union[:class:`.Polygon`, :class:`.MultiPolygon`]
        The geometry of the region. A Polygon is wrapped in a MultiPolygon.
    attributes: `dict` (optional)
        Arbitrary scalar attributes such as a name or a code
    """

    def __init__(self, id: Hashable, geometry, attributes=None):
        self._id = id
        self._geometry = as_multipolygon(geometry)
        self._attributes = MappingProxyType(dict(attributes or {}))

    def __repr__(self):
        return f"{self.__class__.__name__}(id={self._id!r}, geometry={self._geometry!r})"

    @property
    def id(self) -> Hashable:
        return self._id

    @property
    def geometry(self) -> MultiPolygon:
        return self._geometry

    @property
    def attributes(self):
        """Read-only view of the attributes"""
        return self._attributes

    @property
    def bounds(self):
        return self._geometry.bounds

    def with_geometry(self, geometry):
        """A copy of the region with a different geometry, used after repair"""
        return self.__class__(self._id, geometry, self._attributes)

    @classmethod
    def from_shapely(cls, id, geometry, attributes=None):
        """Create a Region from the polygonal parts of a Shapely geometry"""
        return cls(id, from_shapely(geometry), attributes)


class RegionSet(_CRSMixin):
    """An ordered collection of regions with unique ids.

    The order of the regions is the canonical region order.
    It is used to break ties when a point is contained by multiple regions
    and it determines the order of the aggregated output.

    Parameters
    ----------
    regions: Iterable[:class:`.Region`]
        The regions, in canonical order
    crs: `pyproj.CRS` (optional)
        The coordinate reference system of the region geometries.
        Default: None

    Raises
    ------
    ValueError
        When region ids are not unique
    """

    def __init__(self, regions: Iterable[Region], crs=None):
        self._regions = tuple(regions)
        self._positions = {}
        for position, region in enumerate(self._regions):
            if region.id in self._positions:
                raise ValueError(f"Region ids must be unique, found '{region.id}' twice")
            self._positions[region.id] = position
        self._crs = None
        self.crs = crs

    def __len__(self):
        return len(self._regions)

    def __iter__(self):
        return iter(self._regions)

    def __getitem__(self, item):
        return self._regions[item]

    @property
    def ids(self) -> list:
        return [region.id for region in self._regions]

    def position(self, region_id) -> int:
        """The position of a region in the canonical order"""
        return self._positions[region_id]

    def get(self, region_id) -> Region:
        return self._regions[self._positions[region_id]]

    @property
    def total_bounds(self):
        """The bounds containing all regions in (min-x, min-y, max-x, max-y)"""
        if not self._regions:
            raise ValueError("Cannot determine the bounds of an empty RegionSet")
        all_bounds = numpy.array([region.bounds for region in self._regions])
        return (
            float(all_bounds[:, 0].min()),
            float(all_bounds[:, 1].min()),
            float(all_bounds[:, 2].max()),
            float(all_bounds[:, 3].max()),
        )


class Observation(NamedTuple):
    point: Point
    value: float
    id: Any


class ObservationSet(_CRSMixin):
    """Columnar batch of point observations.

    Parameters
    ----------
    points: `numpy.ndarray`
        The locations in the form [[x1,y1], [x2,y2], ...]
    values: `numpy.ndarray`
        The numeric value of each observation
    ids: `numpy.ndarray` (optional)
        The unique source identifier of each observation. Defaults to the position of the observation.
    crs: `pyproj.CRS` (optional)
        The coordinate reference system of the points.
        Default: None

    Raises
    ------
    ValueError
        When the number of points, values and ids do not match or when ids are not unique
    InvalidValueError
        When a coordinate or value is not finite
    """

    def __init__(self, points, values, ids=None, crs=None):
        points = numpy.array(points, dtype=float)
        if points.size == 0:
            points = points.reshape(0, 2)
        if points.ndim != 2 or points.shape[-1] != 2:
            raise ValueError(
                f"Expected points of shape (N,2). Got shape {points.shape} instead."
            )
        values = numpy.array(values, dtype=float).reshape(-1)
        if ids is None:
            ids = numpy.arange(len(points)).astype(object)
        else:
            ids = numpy.array(ids, dtype=object).reshape(-1)
        if not len(points) == len(values) == len(ids):
            raise ValueError(
                f"Expected equal numbers of points, values and ids. Got {len(points)}, {len(values)} and {len(ids)}."
            )
        seen = set()
        for id in ids.tolist():
            if id in seen:
                raise ValueError(f"Observation ids must be unique, found '{id}' twice")
            seen.add(id)
        if not numpy.isfinite(points).all():
            raise InvalidValueError("Observation coordinates must be finite")
        if not numpy.isfinite(values).all():
            bad = ids[~numpy.isfinite(values)]
            raise InvalidValueError(
                f"Observation values must be finite. Got non-finite values for ids {bad.tolist()}"
            )
        for array in (points, values, ids):
            array.flags.writeable = False
        self._points = points
        self._values = values
        self._ids = ids
        self._crs = None
        self.crs = crs

    @classmethod
    def from_observations(cls, observations: Iterable[Observation], crs=None):
        observations = list(observations)
        return cls(
            points=[tuple(obs.point) for obs in observations],
            values=[obs.value for obs in observations],
            ids=[obs.id for obs in observations],
            crs=crs,
        )

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        for (x, y), value, id in zip(self._points, self._values, self._ids):
            yield Observation(Point(float(x), float(y)), float(value), id)

    @property
    def points(self) -> numpy.ndarray:
        return self._points

    @property
    def values(self) -> numpy.ndarray:
        return self._values

    @property
    def ids(self) -> numpy.ndarray:
        return self._ids
