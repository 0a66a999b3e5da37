"""Re-bin regions into a coarse rectangular grid.

Regions are assigned to a grid cell by the location of their centroid, not by
the overlap of the polygon with the cell. A region straddling two cells is counted
in one of them only. This approximation is adequate when the cells are considerably
larger than the regions.
"""

import warnings
from typing import Hashable, List, NamedTuple, Tuple

import numpy
import scipy.stats

from regionkit.aggregate import AggregateRow
from regionkit.classify import nodata_mask
from regionkit.errors import DegenerateGeometryError


class GridCell(NamedTuple):
    ix: int
    iy: int
    bounds: Tuple[float, float, float, float]
    region_ids: Tuple[Hashable, ...]
    area: float
    aggregate: float
    density: float


def _regions_with_centroid(regions):
    """The regions that have a centroid, together with their centroids"""
    kept = []
    centroids = []
    for region in regions:
        try:
            centroids.append(region.geometry.centroid)
        except DegenerateGeometryError as error:
            warnings.warn(f"Region '{region.id}' is left out: {error}")
            continue
        kept.append(region)
    return kept, centroids


def _edges(coords, nr_bins):
    lower, upper = float(coords.min()), float(coords.max())
    if lower == upper:
        lower, upper = lower - 0.5, upper + 0.5
    return numpy.linspace(lower, upper, nr_bins + 1)


def regrid(
    regions, rows: List[AggregateRow], nx: int, ny: int, nodata_value=numpy.nan
) -> List[GridCell]:
    """Group regions into ``nx`` by ``ny`` equal-width cells based on their centroids.

    The centroid range in x and y is divided into ``nx`` and ``ny`` bins respectively.
    Per cell the area and the aggregated values of the regions are summed
    and the density (aggregate / area) is determined.
    Regions with ``nodata_value`` contribute to the area of a cell but not to the aggregate.
    If none of the regions in a cell have data, the aggregate and density of the cell are ``nodata_value``.
    Cells without any region are left out.
    Regions without area have no centroid, these are left out with a warning.

    Parameters
    ----------
    regions: Iterable[:class:`.Region`]
        The regions to regrid
    rows: List[:class:`.AggregateRow`]
        The aggregated value per region, see :func:`regionkit.aggregate.aggregate`
    nx: :class:`int`
        The number of cells in x-direction
    ny: :class:`int`
        The number of cells in y-direction
    nodata_value: :class:`float`
        The value marking regions without data. Default: numpy.nan

    Returns
    -------
    List[:class:`.GridCell`]
        The non-empty cells, ordered by ``ix`` and then ``iy``

    Raises
    ------
    ValueError
        When ``nx`` or ``ny`` is smaller than one
    """
    for name, value in (("nx", nx), ("ny", ny)):
        if int(value) != value or value < 1:
            raise ValueError(f"Expected '{name}' to be an integer of 1 or larger, got: {value}")
    nx, ny = int(nx), int(ny)

    regions, centroids = _regions_with_centroid(regions)
    if not regions:
        return []

    values_by_id = {row.region_id: row.value for row in rows}
    values = numpy.array(
        [values_by_id.get(region.id, nodata_value) for region in regions], dtype=float
    )
    has_data = ~nodata_mask(values, nodata_value)
    centroids = numpy.array(centroids)
    areas = numpy.array([region.geometry.area for region in regions])

    x_edges = _edges(centroids[:, 0], nx)
    y_edges = _edges(centroids[:, 1], ny)
    bins = [x_edges, y_edges]
    x, y = centroids[:, 0], centroids[:, 1]
    area_sum = scipy.stats.binned_statistic_2d(
        x, y, areas, statistic="sum", bins=bins, expand_binnumbers=True
    )
    value_sum = scipy.stats.binned_statistic_2d(
        x, y, numpy.where(has_data, values, 0.0), statistic="sum", bins=bins
    )
    data_count = scipy.stats.binned_statistic_2d(
        x, y, has_data.astype(float), statistic="sum", bins=bins
    )

    cell_ids = area_sum.binnumber.T - 1  # binnumbers are 1-based
    cells = []
    for ix, iy in numpy.unique(cell_ids, axis=0):
        members = numpy.flatnonzero((cell_ids[:, 0] == ix) & (cell_ids[:, 1] == iy))
        area = float(area_sum.statistic[ix, iy])
        if data_count.statistic[ix, iy] > 0:
            total = float(value_sum.statistic[ix, iy])
            density = total / area if area > 0 else nodata_value
        else:
            total = density = nodata_value
        cells.append(
            GridCell(
                ix=int(ix),
                iy=int(iy),
                bounds=(
                    float(x_edges[ix]),
                    float(y_edges[iy]),
                    float(x_edges[ix + 1]),
                    float(y_edges[iy + 1]),
                ),
                region_ids=tuple(regions[member].id for member in members),
                area=area,
                aggregate=total,
                density=density,
            )
        )
    return cells
