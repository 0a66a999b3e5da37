import numpy
import pytest

from regionkit import ObservationSet, Region, RegionSet
from regionkit.geometry import Polygon


def unit_square(x, y, size=1):
    return Polygon([(x, y), (x + size, y), (x + size, y + size), (x, y + size)])


@pytest.fixture(scope="function")
def square_with_hole():
    return Polygon(
        [(0, 0), (10, 0), (10, 10), (0, 10)],
        holes=[[(4, 4), (6, 4), (6, 6), (4, 6)]],
    )


@pytest.fixture(scope="function")
def adjacent_regions():
    return RegionSet(
        [
            Region("west", unit_square(0, 0), {"name": "West"}),
            Region("east", unit_square(1, 0), {"name": "East"}),
        ]
    )


@pytest.fixture(scope="function")
def grid_regions():
    """10 by 10 unit squares covering (0, 0, 10, 10)"""
    return RegionSet(
        [
            Region(f"r{ix}_{iy}", unit_square(ix, iy))
            for ix in range(10)
            for iy in range(10)
        ]
    )


@pytest.fixture(scope="function")
def random_observations():
    rng = numpy.random.default_rng(0)
    points = rng.uniform(-1, 11, size=(500, 2))
    # include points on the shared edges and corners of the grid
    points[:50] = rng.integers(0, 11, size=(50, 2))
    values = rng.uniform(0, 1000, size=500)
    return ObservationSet(points, values, ids=[f"obs{i}" for i in range(500)])
