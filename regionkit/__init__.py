from regionkit.aggregate import AggregateRow, Reducer, aggregate, aggregate_table
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
    CRSMismatchError,
    DegenerateGeometryError,
    GeometryError,
    InsufficientDataError,
    InvalidValueError,
    NoDataError,
)
from regionkit.features import Observation, ObservationSet, Region, RegionSet
from regionkit.geometry import MultiPolygon, Point, Polygon, Ring
from regionkit.index import SpatialIndex
from regionkit.join import UNASSIGNED, JoinResult, join
from regionkit.pipeline import choropleth, regridded_choropleth, repair_regions
from regionkit.regrid import GridCell, regrid
from regionkit.version import __version__
