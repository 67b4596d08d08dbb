"""Flat description of a local map with ring-buffer index arithmetic."""

from __future__ import annotations

from dataclasses import dataclass

from voxelslam.global_map import TSDFEntry


def overflow(val: int, maximum: int) -> int:
    """Wrap ``val`` from ``[0, 3 * maximum)`` into ``[0, maximum)`` by subtraction."""
    if val >= 2 * maximum:
        return val - 2 * maximum
    if val >= maximum:
        return val - maximum
    return val


@dataclass(frozen=True)
class LocalMapHW:
    """Size, position and ring offset of a local map, with access helpers."""

    size_x: int
    size_y: int
    size_z: int
    pos_x: int
    pos_y: int
    pos_z: int
    offset_x: int
    offset_y: int
    offset_z: int

    def in_bounds(self, x: int, y: int, z: int) -> bool:
        """Whether a global cell lies inside the map."""
        return (
            abs(x - self.pos_x) <= self.size_x // 2
            and abs(y - self.pos_y) <= self.size_y // 2
            and abs(z - self.pos_z) <= self.size_z // 2
        )

    def get_index(self, x: int, y: int, z: int) -> int:
        """Index of a global cell in the flat data array."""
        ix = overflow(x - self.pos_x + self.offset_x + self.size_x, self.size_x)
        iy = overflow(y - self.pos_y + self.offset_y + self.size_y, self.size_y)
        iz = overflow(z - self.pos_z + self.offset_z + self.size_z, self.size_z)
        return ix * self.size_y * self.size_z + iy * self.size_z + iz

    def get(self, data, x: int, y: int, z: int) -> TSDFEntry:
        """Entry at a global cell, or an empty entry outside the map."""
        if self.in_bounds(x, y, z):
            return TSDFEntry.from_raw(data[self.get_index(x, y, z)])
        return TSDFEntry(0, 0)

    def set(self, data, x: int, y: int, z: int, value: TSDFEntry) -> None:
        """Store an entry at a global cell; cells outside the map are ignored."""
        if self.in_bounds(x, y, z):
            data[self.get_index(x, y, z)] = value.raw