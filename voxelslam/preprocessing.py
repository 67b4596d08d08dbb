"""Reduction and median filters for raw lidar scan points."""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

Vector3 = tuple[int, int, int]


def _as_points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=np.int64)
    if pts.size == 0:
        return pts.reshape(0, 3)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {pts.shape}")
    return pts


def _to_array(points) -> np.ndarray:
    return np.array(list(points), dtype=np.int64).reshape(-1, 3)


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding towards zero."""
    q = abs(a) // abs(b)
    return -q if (a < 0) != (b < 0) else q


class Preprocessing:
    """Filters that thin out and smooth scan points before registration.

    Points are integer ``(N, 3)`` arrays. ``map_bounds`` gives, per axis,
    the largest absolute coordinate a point may have to be kept by the
    bounded reduction filters; ``resolution`` is the voxel side length.
    """

    def __init__(self, map_bounds, resolution: int, scale: float = 1.0) -> None:
        bounds = tuple(int(b) for b in map_bounds)
        if len(bounds) != 3:
            raise ValueError(f"map bounds need three values, got {bounds}")
        resolution = int(resolution)
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        self.map_bounds: Vector3 = bounds
        self.resolution = resolution
        self.scale = float(scale)

    def _usable(self, pts: np.ndarray) -> np.ndarray:
        """Mask of points that are not the origin and lie inside the map bounds."""
        nonzero = np.any(pts != 0, axis=1)
        inside = np.all(np.abs(pts) <= np.array(self.map_bounds, dtype=np.int64), axis=1)
        return nonzero & inside

    def _voxel(self, x: int, y: int, z: int) -> Vector3:
        r = self.resolution
        return (x // r, y // r, z // r)

    def _voxel_center(self, x: int, y: int, z: int) -> Vector3:
        r = self.resolution
        half = r // 2
        return ((x // r) * r + half, (y // r) * r + half, (z // r) * r + half)

    def scale_points(self, points) -> np.ndarray:
        """Multiply every point by the scale, truncating towards zero."""
        pts = _as_points(points)
        if self.scale == 1.0:
            return pts.copy()
        scaled = pts.astype(np.float32) * np.float32(self.scale)
        return np.trunc(scaled).astype(np.int64)

    def reduction_filter_average(self, points) -> np.ndarray:
        """Replace the points of each voxel by their integer average.

        The ring structure of the cloud is lost.
        """
        pts = _as_points(points)
        sums: dict[Vector3, list[int]] = {}
        for x, y, z in pts[self._usable(pts)].tolist():
            acc = sums.setdefault(self._voxel(x, y, z), [0, 0, 0, 0])
            acc[0] += x
            acc[1] += y
            acc[2] += z
            acc[3] += 1
        return _to_array(
            (_trunc_div(sx, n), _trunc_div(sy, n), _trunc_div(sz, n))
            for sx, sy, sz, n in sums.values()
        )

    def reduction_filter_closest(self, points) -> np.ndarray:
        """Keep, for each voxel, the first point closest to the voxel centre."""
        pts = _as_points(points)
        closest: dict[Vector3, tuple[Vector3, int]] = {}
        default = ((0, 0, 0), self.resolution * 2)
        for x, y, z in pts[self._usable(pts)].tolist():
            center = self._voxel_center(x, y, z)
            dx, dy, dz = x - center[0], y - center[1], z - center[2]
            distance = int(np.sqrt(float(dx * dx + dy * dy + dz * dz)))
            _, best = closest.setdefault(center, default)
            if distance < best:
                closest[center] = ((x, y, z), distance)
        return _to_array(point for point, _ in closest.values())

    def reduction_filter_voxel_center(self, points) -> np.ndarray:
        """Replace the points by the centres of the voxels they occupy."""
        pts = _as_points(points)
        centers = dict.fromkeys(
            self._voxel_center(x, y, z) for x, y, z in pts[self._usable(pts)].tolist()
        )
        return _to_array(centers)

    def reduction_filter_random_point(self, points, rng=None) -> np.ndarray:
        """Keep one randomly chosen point per voxel.

        Only points at the origin are dropped; the map bounds are not applied.
        """
        pts = _as_points(points)
        if rng is None:
            rng = np.random.default_rng()
        shuffled = pts[rng.permutation(len(pts))]
        chosen: dict[Vector3, Vector3] = {}
        for x, y, z in shuffled.tolist():
            if x == 0 and y == 0 and z == 0:
                continue
            chosen.setdefault(self._voxel(x, y, z), (x, y, z))
        return _to_array(chosen.values())

    def median_filter(self, points, rings: int, window_size: int) -> np.ndarray:
        """Replace each point by the median, by distance to the origin, of its ring neighbours.

        Points are laid out ring-interleaved: index ``point * rings + ring``.
        Windows wrap around the cloud. Points beyond the last complete set of
        rings become zero. An even window leaves the points unchanged.
        """
        pts = _as_points(points)
        window_size = int(window_size)
        if not 0 <= window_size <= 255:
            raise ValueError(f"window size must be in [0, 255], got {window_size}")
        if window_size % 2 == 0:
            logger.warning("Median filter window must be % 2 == 1, but isn't. Skipping.")
            return pts.copy()
        rings = int(rings)
        if rings <= 0:
            raise ValueError(f"number of rings must be positive, got {rings}")

        n = len(pts)
        result = np.zeros_like(pts)
        count = (n // rings) * rings
        if count == 0:
            return result

        half = window_size // 2
        centers = np.arange(count)
        windows = (
            centers[:, None] - half * rings + np.arange(window_size)[None, :] * rings + n
        ) % n
        norms = np.linalg.norm(pts[windows].astype(np.float64), axis=2)
        middle = np.argsort(norms, axis=1, kind="stable")[:, window_size // 2]
        result[:count] = pts[windows[centers, middle]]
        return result