import warnings
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy

from regionkit.aggregate import AggregateRow, aggregate, aggregate_table
from regionkit.classify import NODATA_CLASS, ClassBreaks, classify, nodata_mask
from regionkit.errors import ClassifierError, DegenerateGeometryError
from regionkit.features import RegionSet
from regionkit.geometry import repair
from regionkit.index import SpatialIndex
from regionkit.join import JoinResult, join
from regionkit.regrid import GridCell, regrid


class ClassifiedRegion(NamedTuple):
    value: float
    count: int
    class_index: int
    class_range: Optional[Tuple[float, float]]


def _classify_or_warn(values, k, method, nodata_value):
    try:
        return classify(values, k, method=method, nodata_value=nodata_value), None
    except ClassifierError as error:
        warnings.warn(f"Classification was skipped: {error}")
        return None, error


def _class_of(breaks, value, nodata_value):
    if breaks is None or nodata_mask(numpy.array([value], dtype=float), nodata_value)[0]:
        return NODATA_CLASS, None
    class_index = breaks.classify(value, nodata_value=nodata_value)
    return class_index, breaks.class_range(class_index)


class ChoroplethResult:
    """The outcome of :func:`.choropleth`.

    Parameters
    ----------
    regions: :class:`.RegionSet`
        The repaired regions that took part in the join
    rows: List[:class:`.AggregateRow`]
        The aggregated value per region
    join_result: :class:`.JoinResult`
        The region assigned to each observation
    breaks: :class:`.ClassBreaks`
        The class breaks, None if classification failed
    rejected: `dict`
        The ids of regions whose geometry could not be repaired, mapped to the error
    classification_error: :class:`.ClassifierError`
        The reason classification failed, None if it succeeded
    nodata_value: :class:`float`
        The value marking regions without observations
    """

    def __init__(
        self,
        regions: RegionSet,
        rows: List[AggregateRow],
        join_result: JoinResult,
        breaks: Optional[ClassBreaks],
        rejected: Dict,
        classification_error: Optional[ClassifierError] = None,
        nodata_value=numpy.nan,
    ):
        self.regions = regions
        self.rows = rows
        self.join_result = join_result
        self.breaks = breaks
        self.rejected = rejected
        self.classification_error = classification_error
        self.nodata_value = nodata_value

    @property
    def unassigned_count(self) -> int:
        return self.join_result.unassigned_count

    def table(self):
        """The aggregated rows as columns (ids, values, counts), usable without classification"""
        return aggregate_table(self.rows)

    def mapping(self) -> Dict:
        """Mapping of region id to :class:`.ClassifiedRegion`.

        Regions without data, or all regions if classification failed,
        get class :data:`.NODATA_CLASS` and no class range.
        """
        result = {}
        for row in self.rows:
            class_index, class_range = _class_of(self.breaks, row.value, self.nodata_value)
            result[row.region_id] = ClassifiedRegion(
                row.value, row.count, class_index, class_range
            )
        return result


def repair_regions(regions):
    """Repair the geometry of every region.

    Regions that cannot be repaired are left out, the others are unaffected.

    Returns
    -------
    Tuple(:class:`.RegionSet`, `dict`)
        The repaired regions in the original order and a dict mapping the id of each rejected region to the error
    """
    crs = getattr(regions, "crs", None)
    repaired = []
    rejected = {}
    for region in regions:
        try:
            repaired.append(region.with_geometry(repair(region.geometry)))
        except DegenerateGeometryError as error:
            warnings.warn(f"Region '{region.id}' is left out: {error}")
            rejected[region.id] = error
    return RegionSet(repaired, crs=crs), rejected


def choropleth(
    regions,
    observations,
    k: int,
    reducer="sum",
    mode="left",
    method="fisher_jenks",
    nodata_value=numpy.nan,
    cell_size=None,
    target_per_cell=4,
    n_workers=None,
    n_shards=1,
) -> ChoroplethResult:
    """Assign observations to regions, aggregate them and classify the aggregates.

    Steps:

    #. Repair the region geometries, see :func:`regionkit.geometry.repair`
    #. Build a :class:`.SpatialIndex` on the repaired regions
    #. Assign each observation to a region, see :func:`regionkit.join.join`
    #. Aggregate the values per region, see :func:`regionkit.aggregate.aggregate`
    #. Divide the aggregates into ``k`` classes, see :func:`regionkit.classify.classify`

    A region that cannot be repaired is left out and reported in ``rejected``.
    If classification fails, ``breaks`` is None and the aggregates are still available.

    Parameters
    ----------
    regions: :class:`.RegionSet`
        The regions to aggregate to
    observations: :class:`.ObservationSet`
        The observations to aggregate
    k: :class:`int`
        The number of classes
    reducer: Union[:class:`str`, :class:`.Reducer`]
        See :func:`regionkit.aggregate.aggregate`. Default: "sum"
    mode: :class:`str`
        See :func:`regionkit.join.join`. Default: "left"
    method: :class:`str`
        See :func:`regionkit.classify.classify`. Default: "fisher_jenks"
    nodata_value: :class:`float`
        The value for regions without observations. Default: numpy.nan
        Aggregates equal to a non-NaN ``nodata_value`` are treated as missing data as well,
        see :func:`regionkit.aggregate.aggregate`.
    cell_size: Union[:class:`float`, Tuple(float, float)] (optional)
        See :class:`.SpatialIndex`. Default: None
    target_per_cell: :class:`float`
        See :class:`.SpatialIndex`. Default: 4
    n_workers: :class:`int` (optional)
        Number of threads used for indexing, joining and aggregating. Default: None
    n_shards: :class:`int`
        See :func:`regionkit.aggregate.aggregate`. Default: 1

    Returns
    -------
    :class:`.ChoroplethResult`
    """
    repaired, rejected = repair_regions(regions)
    index = SpatialIndex(
        repaired,
        cell_size=cell_size,
        target_per_cell=target_per_cell,
        n_workers=n_workers,
    )
    join_result = join(observations, index, mode=mode, n_workers=n_workers)
    rows = aggregate(
        join_result,
        observations,
        reducer=reducer,
        nodata_value=nodata_value,
        n_shards=n_shards,
        n_workers=n_workers,
    )
    _, values, _ = aggregate_table(rows)
    breaks, error = _classify_or_warn(values, k, method, nodata_value)
    return ChoroplethResult(
        repaired,
        rows,
        join_result,
        breaks,
        rejected,
        classification_error=error,
        nodata_value=nodata_value,
    )


class GridChoropleth(NamedTuple):
    cells: List[GridCell]
    breaks: Optional[ClassBreaks]
    classes: numpy.ndarray
    rejected: Dict


def regridded_choropleth(
    regions, rows, nx: int, ny: int, k: int, method="fisher_jenks", nodata_value=numpy.nan
) -> GridChoropleth:
    """Regrid the aggregated regions (see :func:`regionkit.regrid.regrid`) and classify the cell densities.

    The regions are repaired first, regions that cannot be repaired are left out and reported in ``rejected``.
    If classification fails, ``breaks`` is None and every cell gets class :data:`.NODATA_CLASS`.
    """
    repaired, rejected = repair_regions(regions)
    cells = regrid(repaired, rows, nx, ny, nodata_value=nodata_value)
    densities = numpy.array([cell.density for cell in cells], dtype=float)
    breaks, _ = _classify_or_warn(densities, k, method, nodata_value)
    if breaks is None:
        classes = numpy.full(len(cells), NODATA_CLASS, dtype=int)
    else:
        classes = breaks.classify(densities, nodata_value=nodata_value)
    return GridChoropleth(cells, breaks, classes, rejected)
