from concurrent.futures import ThreadPoolExecutor
from typing import Tuple

import numpy

from regionkit.features import RegionSet

# Upper limit on the number of (region, cell) entries in a SpatialIndex
_MAX_INDEX_ENTRIES = 50_000_000


class CellIndex:
    """References to cells of a rectangular grid by ID (idx, idy).

    Each (idx, idy) pair can be packed into a single 64-bit integer using :meth:`.CellIndex.index_1d`,
    which allows for sorting and searching on cells as if they were scalars.

    Parameters
    ----------
    index: Union[numpy.ndarray, list, tuple]
        The cell-ids in the form [[idx1, idy1], [idx2, idy2], ...]

    Raises
    ------
    ValueError
        When the last axis of the index does not contain two elements
    """

    def __init__(self, index):
        self.index = numpy.array(index, dtype=int)
        if self.index.size == 0:
            self.index = self.index.reshape(0, 2)
        if self.index.shape[-1] != 2:
            raise ValueError(
                f"The last axis should contain two elements (an x and a y coordinate). Got {self.index.shape[-1]} elements instead."
            )
        self.index = self.index.reshape(-1, 2)

    @classmethod
    def from_index_1d(cls, combined):
        """Turn 1d-view into CellIndex"""
        combined = numpy.array(combined, dtype="int64").reshape(-1)
        index = numpy.empty(shape=(*combined.shape, 2), dtype="int32")
        # Extract the first 32 bits
        index[..., 0] = ((combined >> 32) & 0xFFFFFFFF).astype("uint32").view("int32")
        # Extract the last 32 bits
        index[..., 1] = (combined & 0xFFFFFFFF).astype("uint32").view("int32")
        return cls(index)

    def __len__(self):
        return len(self.index)

    def __array__(self, dtype=None):
        return self.index if dtype is None else self.index.astype(dtype)

    @property
    def index_1d(self):
        """Turn index based on x,y into a single integer. Assumes x and y fit in 32-bit integers"""
        index = self.index.astype("int64")
        if index.size == 0:
            return numpy.array([], dtype="int64")

        index &= 0xFFFFFFFF

        # Combine the integers into a single 64-bit integer
        return (index[..., 0] << 32) | index[..., 1]


class SpatialIndex:
    """Uniform grid over the bounding boxes of a set of regions.

    Every region is registered in each grid cell its bounding box overlaps.
    A query returns the regions registered in the cell the point falls in.
    This is a pre-filter only, the candidates still need an exact containment test.

    The index is read-only after construction and can be shared between threads.
    It needs to be rebuilt when the regions change.

    Parameters
    ----------
    regions: :class:`.RegionSet`
        The regions to index
    cell_size: Union[:class:`float`, Tuple(float, float)] (optional)
        The width and height of a grid cell. A single value is used for both.
        If None, the cell size is derived from the number of regions and the total bounds
        such that a cell holds about ``target_per_cell`` regions.
        Default: None
    target_per_cell: :class:`float` (optional)
        The desired average number of regions per cell when deriving the cell size. Default: 4
    n_workers: :class:`int` (optional)
        Number of threads used to determine the cells of each region.
        If None or 1, no threads are used. Default: None

    Raises
    ------
    ValueError
        When the cell size or target is not positive, or when the cell size is so small
        the index would hold an unreasonable number of entries
    """

    def __init__(self, regions: RegionSet, cell_size=None, target_per_cell=4, n_workers=None):
        if not isinstance(regions, RegionSet):
            regions = RegionSet(regions)
        if target_per_cell <= 0:
            raise ValueError(
                f"'target_per_cell' must be larger than zero, got {target_per_cell}"
            )
        self._regions = regions

        if len(regions) == 0:
            self._origin = (0.0, 0.0)
            self._bounds = (0.0, 0.0, 0.0, 0.0)
            self._dx = self._dy = 1.0
            self._shape = (0, 0)
            self._keys = numpy.array([], dtype="int64")
            self._offsets = numpy.zeros(1, dtype=int)
            self._positions = numpy.array([], dtype=int)
            return

        self._bounds = regions.total_bounds
        self._origin = (self._bounds[0], self._bounds[1])
        self._dx, self._dy = self._resolve_cell_size(cell_size, target_per_cell)
        width = self._bounds[2] - self._bounds[0]
        height = self._bounds[3] - self._bounds[1]
        self._shape = (
            int(numpy.floor(width / self._dx)) + 1,
            int(numpy.floor(height / self._dy)) + 1,
        )

        region_bounds = numpy.array([region.bounds for region in regions])
        low = self._cell_coords(region_bounds[:, :2])
        high = self._cell_coords(region_bounds[:, 2:])
        nr_entries = numpy.prod(high - low + 1, axis=1).sum()
        if nr_entries > _MAX_INDEX_ENTRIES:
            raise ValueError(
                f"A cell size of {(self._dx, self._dy)} results in {nr_entries} index entries. Please use a larger cell size."
            )

        def _region_cells(position):
            ids_x = numpy.arange(low[position, 0], high[position, 0] + 1)
            ids_y = numpy.arange(low[position, 1], high[position, 1] + 1)
            mesh_x, mesh_y = numpy.meshgrid(ids_x, ids_y)
            cells = CellIndex(numpy.stack([mesh_x.ravel(), mesh_y.ravel()], axis=-1))
            return cells.index_1d

        if n_workers is not None and n_workers > 1:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                per_region = list(executor.map(_region_cells, range(len(regions))))
        else:
            per_region = [_region_cells(position) for position in range(len(regions))]

        # Merge step: a single sort on (cell, region position) regardless of how the cells were computed
        keys = numpy.concatenate(per_region)
        positions = numpy.repeat(
            numpy.arange(len(regions)), [len(cells) for cells in per_region]
        )
        order = numpy.lexsort((positions, keys))
        keys = keys[order]
        self._positions = positions[order]
        self._keys, first = numpy.unique(keys, return_index=True)
        self._offsets = numpy.append(first, len(keys))

    def _resolve_cell_size(self, cell_size, target_per_cell) -> Tuple[float, float]:
        if cell_size is not None:
            dx, dy = numpy.broadcast_to(numpy.asarray(cell_size, dtype=float), (2,))
            if dx <= 0 or dy <= 0:
                raise ValueError(
                    f"Size of cell cannot be set to '{cell_size}', must be larger than zero"
                )
            return float(dx), float(dy)

        width = self._bounds[2] - self._bounds[0]
        height = self._bounds[3] - self._bounds[1]
        nr_cells = max(1.0, len(self._regions) / target_per_cell)
        extent = max(width, height)
        if extent == 0:
            return 1.0, 1.0
        if width == 0 or height == 0:
            size = extent / nr_cells
        else:
            size = numpy.sqrt(width * height / nr_cells)
        return float(size), float(size)

    def _cell_coords(self, points):
        points = numpy.asarray(points, dtype=float).reshape(-1, 2)
        ids = numpy.empty(points.shape, dtype="int64")
        ids[:, 0] = numpy.floor((points[:, 0] - self._origin[0]) / self._dx)
        ids[:, 1] = numpy.floor((points[:, 1] - self._origin[1]) / self._dy)
        return ids

    @property
    def regions(self) -> RegionSet:
        return self._regions

    @property
    def cell_size(self) -> Tuple[float, float]:
        """The width and height of a grid cell"""
        return (self._dx, self._dy)

    @property
    def shape(self) -> Tuple[int, int]:
        """The number of cells in x- and y-direction covering the total bounds"""
        return self._shape

    @property
    def bounds(self):
        return self._bounds

    @property
    def occupied_cells(self) -> CellIndex:
        """The IDs of the cells with at least one region registered, sorted by their 1d representation"""
        return CellIndex.from_index_1d(self._keys)

    @property
    def mean_candidates_per_cell(self) -> float:
        """The average number of regions registered in a non-empty cell"""
        if len(self._keys) == 0:
            return 0.0
        return len(self._positions) / len(self._keys)

    def cell_at_point(self, points) -> CellIndex:
        """The ID of the grid cell in which each point falls"""
        return CellIndex(self._cell_coords(points))

    def candidate_pairs(self, points) -> Tuple[numpy.ndarray, numpy.ndarray]:
        """All (point, region) candidate pairs for a batch of points.

        Parameters
        ----------
        points: `numpy.ndarray`
            The points in the form [[x1,y1], [x2,y2], ...]

        Returns
        -------
        Tuple(`numpy.ndarray`, `numpy.ndarray`)
            The position of the point and the canonical position of the candidate region for each pair.
            Pairs are ordered by point and, per point, by region position.
        """
        points = numpy.asarray(points, dtype=float).reshape(-1, 2)
        empty = numpy.array([], dtype=int)
        if len(points) == 0 or len(self._keys) == 0:
            return empty, empty

        minx, miny, maxx, maxy = self._bounds
        in_bounds = (
            (points[:, 0] >= minx)
            & (points[:, 0] <= maxx)
            & (points[:, 1] >= miny)
            & (points[:, 1] <= maxy)
        )
        keys = numpy.zeros(len(points), dtype="int64")
        keys[in_bounds] = self.cell_at_point(points[in_bounds]).index_1d
        slot = numpy.searchsorted(self._keys, keys).clip(max=len(self._keys) - 1)
        found = in_bounds & (self._keys[slot] == keys)

        starts = self._offsets[slot]
        counts = numpy.where(found, self._offsets[slot + 1] - starts, 0)
        point_positions = numpy.repeat(numpy.arange(len(points)), counts)
        within = numpy.arange(counts.sum()) - numpy.repeat(
            numpy.cumsum(counts) - counts, counts
        )
        region_positions = self._positions[numpy.repeat(starts, counts) + within]
        return point_positions, region_positions

    def candidates(self, point) -> numpy.ndarray:
        """The canonical positions of the regions that might contain ``point``.

        The result is a superset of the regions containing the point and can be empty.
        """
        _, region_positions = self.candidate_pairs(numpy.asarray(point).reshape(1, 2))
        return region_positions

    def candidate_ids(self, point) -> list:
        """The ids of the regions that might contain ``point``, in canonical order"""
        return [self._regions[position].id for position in self.candidates(point)]


def build(regions, **kwargs) -> SpatialIndex:
    """Build a :class:`.SpatialIndex` over ``regions``. Keyword arguments are passed to :class:`.SpatialIndex`."""
    return SpatialIndex(regions, **kwargs)


def candidates(index: SpatialIndex, point) -> list:
    """The ids of the regions in ``index`` that might contain ``point``"""
    return index.candidate_ids(point)
