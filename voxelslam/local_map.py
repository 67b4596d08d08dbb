"""Local TSDF map stored as a ring buffer in every dimension."""

from __future__ import annotations

import itertools
import logging

import numpy as np

from voxelslam.global_map import TSDF_DTYPE, GlobalMap, TSDFEntry, floor_divide
from voxelslam.local_map_hw import LocalMapHW

logger = logging.getLogger(__name__)

Vector3 = tuple[int, int, int]


def _vector(pos) -> Vector3:
    x, y, z = pos
    return (int(x), int(y), int(z))


class LocalMap:
    """Cuboid of TSDF entries around a position that can be shifted cheaply.

    Each dimension is a ring, so shifting only moves the position and the
    ring offset; cells that leave the cuboid are saved to the global map
    and cells that enter it are loaded from there.
    """

    def __init__(self, size_x, size_y, size_z, global_map: GlobalMap) -> None:
        requested = (int(size_x), int(size_y), int(size_z))
        if any(s < 0 for s in requested):
            raise ValueError(f"local map size must not be negative: {requested}")
        self._size: Vector3 = tuple(s if s % 2 == 1 else s + 1 for s in requested)
        if self._size != requested:
            logger.warning(
                "Changed LocalMap size from even %s to odd %s", requested, self._size
            )
        self._pos: Vector3 = (0, 0, 0)
        self._offset: Vector3 = tuple(s // 2 for s in self._size)
        self._map = global_map

        default = global_map.get_value((0, 0, 0))
        self._data = np.empty(int(np.prod(self._size)), dtype=TSDF_DTYPE)
        self._data["value"] = default.value
        self._data["weight"] = default.weight

    @property
    def size(self) -> Vector3:
        """Side lengths of the cuboid; always odd."""
        return self._size

    @property
    def pos(self) -> Vector3:
        """Global position of the central cell."""
        return self._pos

    @property
    def offset(self) -> Vector3:
        """Index of the central cell in the data array, per dimension."""
        return self._offset

    @property
    def data(self) -> np.ndarray:
        """The flat array holding the entries, in ring order."""
        return self._data

    @property
    def global_map(self) -> GlobalMap:
        """The global map that holds the cells outside the cuboid."""
        return self._map

    def copy(self) -> "LocalMap":
        """Return a map with its own copy of the data, sharing the global map."""
        clone = LocalMap.__new__(LocalMap)
        clone._size = self._size
        clone._pos = self._pos
        clone._offset = self._offset
        clone._map = self._map
        clone._data = self._data.copy()
        return clone

    def swap(self, other: "LocalMap") -> None:
        """Exchange the whole state of this map with another one."""
        self._data, other._data = other._data, self._data
        self._size, other._size = other._size, self._size
        self._pos, other._pos = other._pos, self._pos
        self._offset, other._offset = other._offset, self._offset
        self._map, other._map = other._map, self._map

    def fill_from(self, other: "LocalMap") -> None:
        """Copy the state of another map of the same size into this one."""
        if self._data.size != other._data.size:
            raise ValueError("cannot fill a local map from one of a different size")
        self._data[:] = other._data
        self._size = other._size
        self._pos = other._pos
        self._offset = other._offset
        self._map = other._map

    def in_bounds(self, pos) -> bool:
        """Whether a global cell lies inside the cuboid."""
        return all(
            abs(p - c) <= s // 2 for p, c, s in zip(_vector(pos), self._pos, self._size)
        )

    def _index(self, pos: Vector3) -> int:
        sx, sy, sz = self._size
        x, y, z = (
            (p - c + o + s) % s
            for p, c, o, s in zip(pos, self._pos, self._offset, self._size)
        )
        return x * sy * sz + y * sz + z

    def __getitem__(self, pos) -> TSDFEntry:
        pos = _vector(pos)
        if not self.in_bounds(pos):
            raise IndexError(f"position {pos} out of bounds")
        return TSDFEntry.from_raw(self._data[self._index(pos)])

    def __setitem__(self, pos, value: TSDFEntry) -> None:
        pos = _vector(pos)
        if not self.in_bounds(pos):
            raise IndexError(f"position {pos} out of bounds")
        self._data[self._index(pos)] = value.raw

    def shift(self, new_pos) -> None:
        """Move the centre to ``new_pos``, at most one size away per axis."""
        new_pos = _vector(new_pos)
        diff = tuple(n - p for n, p in zip(new_pos, self._pos))
        if any(abs(d) > s for d, s in zip(diff, self._size)):
            raise ValueError(
                f"cannot shift from {self._pos} to {new_pos}: more than {self._size} away"
            )

        half = tuple(s // 2 for s in self._size)
        for axis, d in enumerate(diff):
            if d == 0:
                continue
            # Save the slab that leaves the map.
            start = [p - h for p, h in zip(self._pos, half)]
            end = [p + h for p, h in zip(self._pos, half)]
            if d > 0:
                end[axis] = start[axis] + d - 1
            else:
                start[axis] = end[axis] + d + 1
            self._transfer(start, end, save=True)

            # Move position and ring offset.
            pos = list(self._pos)
            offset = list(self._offset)
            size = self._size[axis]
            pos[axis] += d
            offset[axis] = (offset[axis] + d + size) % size
            self._pos = tuple(pos)
            self._offset = tuple(offset)

            # Load the slab that enters the map at the opposite side.
            start = [p - h for p, h in zip(self._pos, half)]
            end = [p + h for p, h in zip(self._pos, half)]
            if d > 0:
                start[axis] = end[axis] - (d - 1)
            else:
                end[axis] = start[axis] - d - 1
            self._transfer(start, end, save=False)

    def _transfer(self, bottom_corner, top_corner, *, save: bool) -> None:
        """Copy an inclusive box of cells to (``save``) or from the global map."""
        if not (self.in_bounds(bottom_corner) and self.in_bounds(top_corner)):
            raise ValueError("area to transfer lies outside the local map")

        start = np.minimum(bottom_corner, top_corner)
        end = np.maximum(bottom_corner, top_corner)
        cs = GlobalMap.CHUNK_SIZE
        chunk_start = floor_divide(start, cs)
        chunk_end = floor_divide(end, cs)
        start_delta = [int(s) - c * cs for s, c in zip(start, chunk_start)]
        end_delta = [int(e) - c * cs for e, c in zip(end, chunk_end)]

        sx, sy, sz = self._size
        ranges = [range(lo, hi + 1) for lo, hi in zip(chunk_start, chunk_end)]
        for chunk_pos in itertools.product(*ranges):
            chunk = self._map.activate_chunk(chunk_pos)
            deltas = []
            for axis, c in enumerate(chunk_pos):
                lo = start_delta[axis] if c == chunk_start[axis] else 0
                hi = end_delta[axis] if c == chunk_end[axis] else cs - 1
                deltas.append(np.arange(lo, hi + 1))
            dx, dy, dz = deltas

            chunk_index = (
                dx[:, None, None] * cs * cs + dy[None, :, None] * cs + dz[None, None, :]
            ).ravel()

            ring = [
                (c * cs + d - p + o + s) % s
                for c, d, p, o, s in zip(chunk_pos, deltas, self._pos, self._offset, self._size)
            ]
            local_index = (
                ring[0][:, None, None] * sy * sz + ring[1][None, :, None] * sz + ring[2][None, None, :]
            ).ravel()

            if save:
                chunk[chunk_index] = self._data[local_index]
            else:
                self._data[local_index] = chunk[chunk_index]

    def hardware_representation(self) -> LocalMapHW:
        """Return size, position and offset as a flat description."""
        return LocalMapHW(*self._size, *self._pos, *self._offset)

    def write_back(self) -> None:
        """Save every cell to the global map and write that to its file."""
        half = tuple(s // 2 for s in self._size)
        start = [p - h for p, h in zip(self._pos, half)]
        end = [p + h for p, h in zip(self._pos, half)]
        self._transfer(start, end, save=True)
        self._map.write_back()