"""Planar geometry primitives and predicates.

All operations treat coordinates as planar. No geodesic correction is applied,
which is an acceptable approximation for regions of small extent in a
projected coordinate system. Geometries in geographic coordinates (degrees)
will have distorted areas and centroids.
"""

from typing import NamedTuple, Tuple, Union

import numpy
import shapely
import shapely.geometry

from regionkit.errors import DegenerateGeometryError

# Relative tolerance used to decide whether a point lies on a ring segment
_ON_SEGMENT_TOLERANCE = 1e-12

# Maximum number of point-vertex pairs evaluated at once in `Ring.locate`
_MAX_PAIRS_PER_CHUNK = 2_000_000


class Point(NamedTuple):
    x: float
    y: float


class Ring:
    """A closed sequence of vertices.

    The ring is implicitly closed. If the last vertex repeats the first one it is dropped.
    The coordinates are stored in a read-only numpy array.

    Parameters
    ----------
    coords: `numpy.ndarray`
        The vertices of the ring in the form [[x1,y1], [x2,y2], ...]

    Raises
    ------
    ValueError
        When the coordinates are not of shape (N,2)
    """

    def __init__(self, coords):
        coords = numpy.array(coords, dtype=float)
        if coords.size == 0:
            coords = coords.reshape(0, 2)
        if coords.ndim != 2 or coords.shape[-1] != 2:
            raise ValueError(
                f"Expected ring coordinates of shape (N,2). Got shape {coords.shape} instead."
            )
        if len(coords) > 1 and numpy.array_equal(coords[0], coords[-1]):
            coords = coords[:-1]
        coords.flags.writeable = False
        self._coords = coords

    def __len__(self):
        return len(self._coords)

    def __repr__(self):
        return f"{self.__class__.__name__}({self._coords.tolist()})"

    @property
    def coords(self) -> numpy.ndarray:
        """The vertices of the ring, without the closing vertex"""
        return self._coords

    @property
    def is_degenerate(self) -> bool:
        """True if the ring has fewer than 3 distinct vertices"""
        if len(self._coords) < 3:
            return True
        return len(numpy.unique(self._coords, axis=0)) < 3

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """The bounds of the ring in (min-x, min-y, max-x, max-y)"""
        if len(self._coords) == 0:
            raise DegenerateGeometryError("Cannot determine the bounds of an empty ring")
        minx, miny = self._coords.min(axis=0)
        maxx, maxy = self._coords.max(axis=0)
        return (float(minx), float(miny), float(maxx), float(maxy))

    def _shifted(self):
        # Shoelace terms are computed relative to the first vertex to limit cancellation
        origin = self._coords[0]
        shifted = self._coords - origin
        x, y = shifted[:, 0], shifted[:, 1]
        x_next, y_next = numpy.roll(x, -1), numpy.roll(y, -1)
        return origin, x, y, x_next, y_next

    @property
    def signed_area(self) -> float:
        """The area of the ring based on the shoelace formula.
        Positive for counter-clockwise rings, negative for clockwise rings."""
        if len(self._coords) < 3:
            return 0.0
        _, x, y, x_next, y_next = self._shifted()
        return float(0.5 * numpy.sum(x * y_next - x_next * y))

    @property
    def centroid(self) -> Point:
        """The area-weighted centroid of the surface enclosed by the ring

        Raises
        ------
        DegenerateGeometryError
            When the ring encloses no area
        """
        signed_area = self.signed_area
        if signed_area == 0:
            raise DegenerateGeometryError(
                "Cannot determine the centroid of a ring without area"
            )
        origin, x, y, x_next, y_next = self._shifted()
        cross = x * y_next - x_next * y
        cx = numpy.sum((x + x_next) * cross) / (6 * signed_area)
        cy = numpy.sum((y + y_next) * cross) / (6 * signed_area)
        return Point(float(cx + origin[0]), float(cy + origin[1]))

    def locate(self, points: numpy.ndarray):
        """Locate points relative to the ring.

        Uses a crossing-number (ray casting) test for the interior and an explicit
        collinearity test for the boundary.

        Parameters
        ----------
        points: `numpy.ndarray`
            The points to locate in the form [[x1,y1], [x2,y2], ...]

        Returns
        -------
        Tuple(`numpy.ndarray`, `numpy.ndarray`)
            Two boolean arrays. The first is True where the point lies in the interior (or on the
            boundary, the crossing number is undefined there), the second is True where the
            point lies on the boundary.
        """
        points = numpy.asarray(points, dtype=float).reshape(-1, 2)
        inside = numpy.zeros(len(points), dtype=bool)
        on_boundary = numpy.zeros(len(points), dtype=bool)
        if len(points) == 0 or len(self._coords) == 0:
            return inside, on_boundary

        chunk_size = max(1, _MAX_PAIRS_PER_CHUNK // len(self._coords))
        for start in range(0, len(points), chunk_size):
            stop = start + chunk_size
            inside[start:stop], on_boundary[start:stop] = self._locate(
                points[start:stop]
            )
        return inside, on_boundary

    def _locate(self, points):
        x = points[:, 0][:, numpy.newaxis]
        y = points[:, 1][:, numpy.newaxis]
        x1 = self._coords[:, 0][numpy.newaxis]
        y1 = self._coords[:, 1][numpy.newaxis]
        x2 = numpy.roll(x1, -1, axis=1)
        y2 = numpy.roll(y1, -1, axis=1)

        dx = x2 - x1
        dy = y2 - y1
        cross = dx * (y - y1) - dy * (x - x1)
        within_segment_bounds = (
            (x >= numpy.minimum(x1, x2))
            & (x <= numpy.maximum(x1, x2))
            & (y >= numpy.minimum(y1, y2))
            & (y <= numpy.maximum(y1, y2))
        )
        collinear = numpy.abs(cross) <= _ON_SEGMENT_TOLERANCE * (dx**2 + dy**2)
        on_boundary = (collinear & within_segment_bounds).any(axis=1)

        straddles = (y1 > y) != (y2 > y)
        with numpy.errstate(divide="ignore", invalid="ignore"):
            x_intersect = x1 + (y - y1) * dx / dy
            crossings = straddles & (x < x_intersect)
        inside = crossings.sum(axis=1) % 2 == 1
        return inside, on_boundary


class Polygon:
    """A polygon consisting of one exterior ring and zero or more holes.

    Parameters
    ----------
    exterior: Union[:class:`.Ring`, `numpy.ndarray`]
        The outer boundary of the polygon
    holes: Sequence[Union[:class:`.Ring`, `numpy.ndarray`]] (optional)
        The inner boundaries of the polygon. Default: ()
    """

    def __init__(self, exterior, holes=()):
        self._exterior = exterior if isinstance(exterior, Ring) else Ring(exterior)
        self._holes = tuple(
            hole if isinstance(hole, Ring) else Ring(hole) for hole in holes
        )

    def __repr__(self):
        return f"{self.__class__.__name__}(exterior={len(self._exterior)} vertices, holes={len(self._holes)})"

    @property
    def exterior(self) -> Ring:
        return self._exterior

    @property
    def holes(self) -> Tuple[Ring, ...]:
        return self._holes

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self._exterior.bounds

    @property
    def area(self) -> float:
        """The area of the exterior minus the area of the holes. Never negative."""
        area = abs(self._exterior.signed_area) - sum(
            abs(hole.signed_area) for hole in self._holes
        )
        return max(area, 0.0)

    @property
    def centroid(self) -> Point:
        """The area-weighted centroid of the polygon, taking holes into account"""
        rings = [(self._exterior, 1)] + [(hole, -1) for hole in self._holes]
        return _weighted_centroid(
            (ring.centroid, sign * abs(ring.signed_area))
            for ring, sign in rings
            if ring.signed_area != 0
        )

    def contains(self, points: numpy.ndarray) -> numpy.ndarray:
        """Closed-region containment test.

        A point is contained if it lies inside or on the exterior ring
        and does not lie strictly inside any of the holes.
        Points on the boundary of a hole are therefore contained.
        """
        points = numpy.asarray(points, dtype=float).reshape(-1, 2)
        result = numpy.zeros(len(points), dtype=bool)
        if len(points) == 0:
            return result

        minx, miny, maxx, maxy = self.bounds
        in_bounds = (
            (points[:, 0] >= minx)
            & (points[:, 0] <= maxx)
            & (points[:, 1] >= miny)
            & (points[:, 1] <= maxy)
        )
        candidates = points[in_bounds]
        inside, on_boundary = self._exterior.locate(candidates)
        contained = inside | on_boundary
        for hole in self._holes:
            in_hole, on_hole_boundary = hole.locate(candidates)
            contained &= ~(in_hole & ~on_hole_boundary)
        result[in_bounds] = contained
        return result

    def to_shapely(self):
        """Represent the polygon as a Shapely Polygon"""
        return shapely.geometry.Polygon(
            self._exterior.coords, [hole.coords for hole in self._holes]
        )

    @classmethod
    def from_shapely(cls, polygon):
        """Create a Polygon from a Shapely Polygon"""
        return cls(
            numpy.array(polygon.exterior.coords)[:, :2],
            [numpy.array(hole.coords)[:, :2] for hole in polygon.interiors],
        )


class MultiPolygon:
    """An ordered collection of polygons that together represent one region.

    Parameters
    ----------
    polygons: Sequence[:class:`.Polygon`]
        The parts of the multipolygon
    """

    def __init__(self, polygons):
        polygons = tuple(polygons)
        for polygon in polygons:
            if not isinstance(polygon, Polygon):
                raise TypeError(f"Expected a Polygon, got {type(polygon)}")
        self._polygons = polygons

    def __len__(self):
        return len(self._polygons)

    def __iter__(self):
        return iter(self._polygons)

    def __getitem__(self, item):
        return self._polygons[item]

    def __repr__(self):
        return f"{self.__class__.__name__}({len(self._polygons)} polygons)"

    @property
    def geoms(self) -> Tuple[Polygon, ...]:
        return self._polygons

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        if not self._polygons:
            raise DegenerateGeometryError(
                "Cannot determine the bounds of an empty MultiPolygon"
            )
        all_bounds = numpy.array([polygon.bounds for polygon in self._polygons])
        return (
            float(all_bounds[:, 0].min()),
            float(all_bounds[:, 1].min()),
            float(all_bounds[:, 2].max()),
            float(all_bounds[:, 3].max()),
        )

    @property
    def area(self) -> float:
        return float(sum(polygon.area for polygon in self._polygons))

    @property
    def centroid(self) -> Point:
        return _weighted_centroid(
            (polygon.centroid, polygon.area)
            for polygon in self._polygons
            if polygon.area > 0
        )

    def contains(self, points: numpy.ndarray) -> numpy.ndarray:
        points = numpy.asarray(points, dtype=float).reshape(-1, 2)
        result = numpy.zeros(len(points), dtype=bool)
        for polygon in self._polygons:
            result |= polygon.contains(points)
        return result

    def to_shapely(self):
        """Represent the multipolygon as a Shapely MultiPolygon"""
        return shapely.geometry.MultiPolygon(
            [polygon.to_shapely() for polygon in self._polygons]
        )


def _weighted_centroid(centroids_and_weights):
    total_weight = 0.0
    weighted_x = 0.0
    weighted_y = 0.0
    for centroid, weight in centroids_and_weights:
        total_weight += weight
        weighted_x += centroid.x * weight
        weighted_y += centroid.y * weight
    if total_weight <= 0:
        raise DegenerateGeometryError(
            "Cannot determine the centroid of a geometry without area"
        )
    return Point(weighted_x / total_weight, weighted_y / total_weight)


def as_multipolygon(geometry: Union[Polygon, MultiPolygon]) -> MultiPolygon:
    """Wrap a Polygon in a MultiPolygon. MultiPolygons are returned as is."""
    if isinstance(geometry, MultiPolygon):
        return geometry
    if isinstance(geometry, Polygon):
        return MultiPolygon([geometry])
    raise TypeError(f"Expected a Polygon or MultiPolygon, got {type(geometry)}")


def from_shapely(geometry) -> MultiPolygon:
    """Convert the polygonal parts of a Shapely geometry into a MultiPolygon.

    Non-polygonal parts (points, lines) and empty parts are ignored.
    This is mostly relevant for the output of ``shapely.make_valid`` which
    can return a GeometryCollection.

    Parameters
    ----------
    geometry: `shapely.Geometry`
        Any Shapely geometry

    Returns
    -------
    :class:`.MultiPolygon`
        The polygonal parts of ``geometry``, possibly empty
    """
    polygons = []
    for part in shapely.get_parts(geometry):
        if part.is_empty:
            continue
        if isinstance(part, shapely.geometry.Polygon):
            polygons.append(Polygon.from_shapely(part))
        elif isinstance(
            part, (shapely.geometry.MultiPolygon, shapely.geometry.GeometryCollection)
        ):
            polygons.extend(from_shapely(part))
    return MultiPolygon(polygons)


def _make_valid(shape):
    if shape.is_valid:
        return shape
    repaired = shapely.make_valid(shape)
    if not (repaired.is_valid and repaired.area > 0):
        # zero width buffer is the classic fallback for self-intersections
        repaired = shape.buffer(0)
    return repaired


def _repair_part(polygon: Polygon):
    """Repair the exterior and the holes as separate surfaces and subtract the holes.

    Repairing the polygon as a whole would turn holes outside of the exterior into filled area.
    Only the part of a hole that lies within the exterior is kept.
    """
    shell = _make_valid(shapely.geometry.Polygon(polygon.exterior.coords))
    if not polygon.holes:
        return shell
    holes = shapely.union_all(
        [_make_valid(shapely.geometry.Polygon(hole.coords)) for hole in polygon.holes]
    )
    return shapely.difference(shell, holes)


def repair(geometry: Union[Polygon, MultiPolygon]) -> MultiPolygon:
    """Return a topologically valid version of ``geometry``.

    Self-intersecting rings are split and overlapping parts are merged.
    Holes are subtracted from the repaired exterior, so a hole crossing the exterior
    is clipped to it and a hole outside of the exterior has no effect.
    Holes with fewer than 3 distinct vertices are dropped.
    Valid geometries are returned unchanged, wrapped in a MultiPolygon.

    Parameters
    ----------
    geometry: Union[:class:`.Polygon`, :class:`.MultiPolygon`]
        The geometry to repair

    Returns
    -------
    :class:`.MultiPolygon`
        The repaired geometry

    Raises
    ------
    DegenerateGeometryError
        When an exterior ring has fewer than 3 distinct vertices or when the repaired geometry has no area
    """
    multipolygon = as_multipolygon(geometry)
    if len(multipolygon) == 0:
        raise DegenerateGeometryError("Cannot repair an empty geometry")
    for polygon in multipolygon:
        if polygon.exterior.is_degenerate:
            raise DegenerateGeometryError(
                f"Exterior ring has fewer than 3 distinct vertices: {polygon.exterior.coords.tolist()}"
            )
    multipolygon = MultiPolygon(
        Polygon(polygon.exterior, [hole for hole in polygon.holes if not hole.is_degenerate])
        for polygon in multipolygon
    )

    shape = multipolygon.to_shapely()
    if shape.is_valid:
        if multipolygon.area == 0:
            raise DegenerateGeometryError("Geometry has no area")
        return multipolygon

    # Parts are repaired separately and then merged, so overlapping parts are unioned
    parts = [_repair_part(polygon) for polygon in multipolygon]
    repaired = parts[0] if len(parts) == 1 else shapely.union_all(parts)
    result = from_shapely(repaired)
    if len(result) == 0 or result.area == 0:
        raise DegenerateGeometryError(
            "Repairing the geometry did not result in a polygon with area"
        )
    return result


def contains(geometry: Union[Polygon, MultiPolygon], points):
    """Test whether ``geometry`` contains the supplied point(s).

    Closed-region semantics apply: points on the exterior boundary
    or on the boundary of a hole are contained.

    Parameters
    ----------
    geometry: Union[:class:`.Polygon`, :class:`.MultiPolygon`]
        The geometry to test against
    points: `numpy.ndarray`
        A single point (x,y) or multiple points in the form [[x1,y1], [x2,y2], ...]

    Returns
    -------
    Union[:class:`bool`, `numpy.ndarray`]
        A bool if a single point was supplied, a boolean array otherwise

    Examples
    --------

    .. code-block:: python

        >>> from regionkit.geometry import Polygon, contains
        >>> square = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)], holes=[[(4, 4), (6, 4), (6, 6), (4, 6)]])
        >>> contains(square, (1, 1))
        True
        >>> contains(square, [(5, 5), (5, 4)])
        array([False,  True])

    ..
    """
    points = numpy.asarray(points, dtype=float)
    single = points.ndim == 1
    result = as_multipolygon(geometry).contains(points)
    return bool(result[0]) if single else result


def bbox(geometry: Union[Polygon, MultiPolygon]) -> Tuple[float, float, float, float]:
    """The axis-aligned bounding box in (min-x, min-y, max-x, max-y)"""
    return as_multipolygon(geometry).bounds


def area(geometry: Union[Polygon, MultiPolygon]) -> float:
    """Planar area of the exterior rings minus the holes"""
    return as_multipolygon(geometry).area


def centroid(geometry: Union[Polygon, MultiPolygon]) -> Point:
    """Area-weighted planar centroid

    Raises
    ------
    DegenerateGeometryError
        When the geometry has no area
    """
    return as_multipolygon(geometry).centroid
