import numpy
import pytest
import shapely

from regionkit.errors import DegenerateGeometryError
from regionkit.geometry import (
    MultiPolygon,
    Point,
    Polygon,
    Ring,
    area,
    bbox,
    centroid,
    contains,
    from_shapely,
    repair,
)


@pytest.mark.parametrize(
    "point, expected",
    [
        [(5, 5), False],  # inside the hole
        [(1, 1), True],
        [(5, 4), True],  # on the hole boundary
        [(4, 4), True],  # on a hole corner
        [(0, 5), True],  # on the exterior boundary
        [(10, 10), True],  # on an exterior corner
        [(10.5, 5), False],
        [(-1, -1), False],
    ],
)
def test_contains(square_with_hole, point, expected):
    assert contains(square_with_hole, point) == expected


def test_contains_multiple_points(square_with_hole):
    points = numpy.array([[5, 5], [1, 1], [5, 4], [11, 1]])
    result = contains(square_with_hole, points)
    numpy.testing.assert_array_equal(result, [False, True, True, False])


def test_contains_concave():
    # U-shape, the notch is at (1.5, 2)
    u_shape = Polygon([(0, 0), (3, 0), (3, 3), (2, 3), (2, 1), (1, 1), (1, 3), (0, 3)])
    numpy.testing.assert_array_equal(
        contains(u_shape, [(1.5, 2), (0.5, 2), (2.5, 2.5), (1.5, 0.5), (1.5, 1)]),
        [False, True, True, True, True],
    )


def test_contains_multipolygon():
    multipolygon = MultiPolygon(
        [
            Polygon([(0, 0), (1, 0), (1, 1), (0, 1)]),
            Polygon([(5, 5), (6, 5), (6, 6), (5, 6)]),
        ]
    )
    numpy.testing.assert_array_equal(
        contains(multipolygon, [(0.5, 0.5), (5.5, 5.5), (3, 3)]), [True, True, False]
    )


def test_ring_drops_closing_vertex():
    ring = Ring([(0, 0), (1, 0), (1, 1), (0, 0)])
    assert len(ring) == 3
    numpy.testing.assert_allclose(ring.coords, [[0, 0], [1, 0], [1, 1]])
    assert not ring.coords.flags.writeable


@pytest.mark.parametrize(
    "coords, expected",
    [
        [[(0, 0), (1, 0), (1, 1)], False],
        [[(0, 0), (1, 0), (0, 0), (1, 0)], True],
        [[(0, 0), (1, 1)], True],
        [[], True],
    ],
)
def test_ring_is_degenerate(coords, expected):
    assert Ring(coords).is_degenerate == expected


def test_ring_wrong_shape():
    with pytest.raises(ValueError):
        Ring([(0, 0, 0), (1, 0, 0), (1, 1, 0)])


def test_signed_area_orientation():
    counter_clockwise = Ring([(0, 0), (2, 0), (2, 2), (0, 2)])
    clockwise = Ring([(0, 0), (0, 2), (2, 2), (2, 0)])
    assert counter_clockwise.signed_area == 4
    assert clockwise.signed_area == -4


def test_area(square_with_hole):
    assert area(square_with_hole) == 96
    clockwise = Polygon([(0, 0), (0, 2), (2, 2), (2, 0)])
    assert area(clockwise) == 4


def test_bbox(square_with_hole):
    assert bbox(square_with_hole) == (0, 0, 10, 10)
    multipolygon = MultiPolygon(
        [
            Polygon([(0, 0), (1, 0), (1, 1), (0, 1)]),
            Polygon([(5, -5), (6, -5), (6, 6), (5, 6)]),
        ]
    )
    assert bbox(multipolygon) == (0, -5, 6, 6)


def test_centroid(square_with_hole):
    numpy.testing.assert_allclose(centroid(square_with_hole), (5, 5))

    l_shape = Polygon([(0, 0), (2, 0), (2, 1), (1, 1), (1, 2), (0, 2)])
    numpy.testing.assert_allclose(centroid(l_shape), (5 / 6, 5 / 6))

    off_center_hole = Polygon(
        [(0, 0), (4, 0), (4, 4), (0, 4)],
        holes=[[(0.5, 0.5), (1.5, 0.5), (1.5, 1.5), (0.5, 1.5)]],
    )
    numpy.testing.assert_allclose(centroid(off_center_hole), (31 / 15, 31 / 15))
    expected = shapely.centroid(off_center_hole.to_shapely())
    numpy.testing.assert_allclose(centroid(off_center_hole), (expected.x, expected.y))


def test_centroid_multipolygon():
    multipolygon = MultiPolygon(
        [
            Polygon([(0, 0), (2, 0), (2, 2), (0, 2)]),
            Polygon([(10, 0), (11, 0), (11, 1), (10, 1)]),
        ]
    )
    result = centroid(multipolygon)
    assert isinstance(result, Point)
    numpy.testing.assert_allclose(result, ((4 * 1 + 1 * 10.5) / 5, (4 * 1 + 1 * 0.5) / 5))


def test_centroid_degenerate():
    with pytest.raises(DegenerateGeometryError):
        centroid(Polygon([(0, 0), (1, 0), (2, 0)]))


def test_shapely_conversion(square_with_hole):
    shape = square_with_hole.to_shapely()
    assert shape.area == pytest.approx(96)
    assert len(shape.interiors) == 1

    converted = from_shapely(shape)
    assert isinstance(converted, MultiPolygon)
    assert len(converted) == 1
    assert area(converted) == pytest.approx(96)


def test_from_shapely_ignores_non_polygonal_parts():
    collection = shapely.geometry.GeometryCollection(
        [
            shapely.geometry.box(0, 0, 1, 1),
            shapely.geometry.LineString([(0, 0), (5, 5)]),
            shapely.geometry.Point(3, 3),
        ]
    )
    converted = from_shapely(collection)
    assert len(converted) == 1
    assert area(converted) == pytest.approx(1)


def test_repair_valid_polygon(square_with_hole):
    repaired = repair(square_with_hole)
    assert isinstance(repaired, MultiPolygon)
    assert len(repaired) == 1
    assert area(repaired) == 96


def test_repair_bowtie():
    bowtie = Polygon([(0, 0), (2, 2), (2, 0), (0, 2)])
    assert not bowtie.to_shapely().is_valid

    repaired = repair(bowtie)
    assert repaired.to_shapely().is_valid
    assert len(repaired) == 2
    assert area(repaired) == pytest.approx(2)
    assert contains(repaired, (0.5, 1))
    assert contains(repaired, (1.5, 1))
    assert not contains(repaired, (1, 0.5))


def test_repair_overlapping_parts():
    overlapping = MultiPolygon(
        [
            Polygon([(0, 0), (2, 0), (2, 2), (0, 2)]),
            Polygon([(1, 0), (3, 0), (3, 2), (1, 2)]),
        ]
    )
    repaired = repair(overlapping)
    assert repaired.to_shapely().is_valid
    assert area(repaired) == pytest.approx(6)


@pytest.mark.parametrize(
    "hole, expected_area, outside_points",
    [
        # hole outside of the exterior
        [[(10, 10), (11, 10), (11, 11), (10, 11)], 16, [(10.5, 10.5)]],
        # hole crossing the exterior
        [[(3, 1), (6, 1), (6, 3), (3, 3)], 14, [(3.5, 2), (5, 2)]],
    ],
)
def test_repair_misplaced_hole(hole, expected_area, outside_points):
    polygon = Polygon([(0, 0), (4, 0), (4, 4), (0, 4)], holes=[hole])
    assert not polygon.to_shapely().is_valid

    repaired = repair(polygon)
    assert repaired.to_shapely().is_valid
    assert area(repaired) == pytest.approx(expected_area)
    numpy.testing.assert_array_equal(
        contains(repaired, outside_points), [False] * len(outside_points)
    )
    assert contains(repaired, (1, 1))


def test_repair_bowtie_with_hole():
    bowtie = Polygon(
        [(0, 0), (2, 2), (2, 0), (0, 2)],
        holes=[[(0.2, 0.9), (0.4, 0.9), (0.4, 1.1), (0.2, 1.1)]],
    )
    repaired = repair(bowtie)
    assert area(repaired) == pytest.approx(2 - 0.04)
    assert not contains(repaired, (0.3, 1))
    assert contains(repaired, (1.5, 1))


def test_repair_drops_degenerate_hole():
    polygon = Polygon(
        [(0, 0), (4, 0), (4, 4), (0, 4)], holes=[[(1, 1), (2, 2), (1, 1)]]
    )
    repaired = repair(polygon)
    assert len(repaired[0].holes) == 0
    assert area(repaired) == 16


@pytest.mark.parametrize(
    "coords",
    [
        [(0, 0), (1, 1), (0, 0), (1, 1)],  # two distinct vertices
        [(0, 0), (1, 0), (2, 0)],  # no area
        [],
    ],
)
def test_repair_degenerate(coords):
    with pytest.raises(DegenerateGeometryError):
        repair(Polygon(coords))


def test_repair_empty_multipolygon():
    with pytest.raises(DegenerateGeometryError):
        repair(MultiPolygon([]))


def test_as_multipolygon_type_error():
    with pytest.raises(TypeError):
        area([(0, 0), (1, 0), (1, 1)])
