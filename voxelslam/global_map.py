"""Chunked global TSDF map, with chunks swapped to an SQLite file by age."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

TSDF_DTYPE = np.dtype([("value", "<i2"), ("weight", "<i2")])

_INT16_MIN = -(2**15)
_INT16_MAX = 2**15 - 1

Vector3 = tuple[int, int, int]


def floor_divide(pos, divisor: int) -> Vector3:
    """Divide each coordinate by ``divisor``, rounding towards negative infinity."""
    x, y, z = pos
    return (int(x) // divisor, int(y) // divisor, int(z) // divisor)


@dataclass(frozen=True)
class TSDFEntry:
    """A truncated signed distance value together with its weight."""

    value: int
    weight: int

    def __post_init__(self) -> None:
        for name in ("value", "weight"):
            number = getattr(self, name)
            if not _INT16_MIN <= number <= _INT16_MAX:
                raise ValueError(f"{name} {number} does not fit in 16 bits")

    @property
    def raw(self) -> tuple[int, int]:
        """The entry as a ``(value, weight)`` record for a TSDF array."""
        return (self.value, self.weight)

    @classmethod
    def from_raw(cls, raw) -> "TSDFEntry":
        """Build an entry from a ``(value, weight)`` record."""
        return cls(int(raw[0]), int(raw[1]))


@dataclass
class ActiveChunk:
    """A chunk held in memory, with its position and age for replacement."""

    data: np.ndarray
    pos: Vector3
    age: int


class GlobalMap:
    """Global map of TSDF values divided into cubic chunks.

    At most ``NUM_CHUNKS`` chunks are kept in memory; the oldest one is
    written to the backing file when another chunk is needed.
    """

    CHUNK_SIZE = 64
    NUM_CHUNKS = 64

    def __init__(self, path, initial_tsdf_value: int, initial_weight: int) -> None:
        self.path = Path(path)
        self.initial_entry = TSDFEntry(initial_tsdf_value, initial_weight)
        self.active_chunks: list[ActiveChunk] = []
        self.num_poses = 0
        # An existing file is replaced, never extended.
        self.path.unlink(missing_ok=True)
        self._conn: sqlite3.Connection | None = sqlite3.connect(self.path)
        with self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS chunks (tag TEXT PRIMARY KEY, data BLOB NOT NULL)"
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS poses (id INTEGER PRIMARY KEY, data BLOB NOT NULL)"
            )

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ValueError("global map is closed")
        return self._conn

    @staticmethod
    def _tag(chunk_pos: Vector3) -> str:
        x, y, z = chunk_pos
        return f"{x}_{y}_{z}"

    def _index(self, pos: Vector3, chunk_pos: Vector3) -> int:
        size = self.CHUNK_SIZE
        x, y, z = (p - c * size for p, c in zip(pos, chunk_pos))
        return x * size * size + y * size + z

    def _new_chunk(self) -> np.ndarray:
        data = np.empty(self.CHUNK_SIZE**3, dtype=TSDF_DTYPE)
        data["value"] = self.initial_entry.value
        data["weight"] = self.initial_entry.weight
        return data

    def _load(self, tag: str) -> np.ndarray | None:
        row = self._connection.execute(
            "SELECT data FROM chunks WHERE tag = ?", (tag,)
        ).fetchone()
        if row is None:
            return None
        return np.frombuffer(row[0], dtype=TSDF_DTYPE).copy()

    def _store(self, chunk: ActiveChunk) -> None:
        self._connection.execute(
            "INSERT OR REPLACE INTO chunks (tag, data) VALUES (?, ?)",
            (self._tag(chunk.pos), chunk.data.tobytes()),
        )

    def activate_chunk(self, chunk_pos) -> np.ndarray:
        """Make a chunk active and return its data array, which may be modified in place."""
        chunk_pos = tuple(int(c) for c in chunk_pos)
        index = next(
            (i for i, chunk in enumerate(self.active_chunks) if chunk.pos == chunk_pos),
            None,
        )
        if index is None:
            data = self._load(self._tag(chunk_pos))
            if data is None:
                data = self._new_chunk()
            new_chunk = ActiveChunk(data=data, pos=chunk_pos, age=0)
            count = len(self.active_chunks)
            if count < self.NUM_CHUNKS:
                index = count
                # Oldest age for now, so that every other chunk gets older.
                new_chunk.age = count
                self.active_chunks.append(new_chunk)
            else:
                index = max(range(count), key=lambda i: self.active_chunks[i].age)
                with self._connection:
                    self._store(self.active_chunks[index])
                self.active_chunks[index] = new_chunk

        age = self.active_chunks[index].age
        for chunk in self.active_chunks:
            if chunk.age < age:
                chunk.age += 1
        self.active_chunks[index].age = 0
        return self.active_chunks[index].data

    def get_value(self, pos) -> TSDFEntry:
        """Return the entry stored at a global cell position."""
        pos = tuple(int(p) for p in pos)
        chunk_pos = floor_divide(pos, self.CHUNK_SIZE)
        chunk = self.activate_chunk(chunk_pos)
        return TSDFEntry.from_raw(chunk[self._index(pos, chunk_pos)])

    def set_value(self, pos, value: TSDFEntry) -> None:
        """Store an entry at a global cell position."""
        pos = tuple(int(p) for p in pos)
        chunk_pos = floor_divide(pos, self.CHUNK_SIZE)
        chunk = self.activate_chunk(chunk_pos)
        chunk[self._index(pos, chunk_pos)] = value.raw

    def write_back(self) -> None:
        """Write every active chunk to the backing file."""
        logger.info("GlobalMap: Writing Chunks")
        with self._connection:
            for chunk in self.active_chunks:
                self._store(chunk)
        logger.info("GlobalMap: Finished writing Chunks")

    def close(self) -> None:
        """Close the backing file without writing the active chunks."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "GlobalMap":
        return self

    def __exit__(self, *args) -> None:
        self.close()