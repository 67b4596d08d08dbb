"""Scan registration against a local map, seeded by accumulated IMU motion."""

from __future__ import annotations

import logging
from collections import deque

import numpy as np

from voxelslam.imu_accumulator import ImuAccumulator
from voxelslam.local_map import LocalMap
from voxelslam.registration_kernel import register_scan

logger = logging.getLogger(__name__)

_ITERATION_WINDOW = 100
_REPORT_AFTER = 100
_REPORT_EVERY = 20


def _as_points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=np.int64)
    if pts.size == 0:
        return pts.reshape(0, 3)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {pts.shape}")
    return pts


def _as_transform(transform) -> np.ndarray:
    mat = np.array(transform, dtype=np.float32)
    if mat.shape != (4, 4):
        raise ValueError(f"transform must have shape (4, 4), got {mat.shape}")
    return mat


def transform_point_cloud(points, transform) -> np.ndarray:
    """Return integer points moved by a 4x4 transform.

    Coordinates are rounded to the nearest integer, halves away from zero.
    """
    pts = _as_points(points)
    mat = _as_transform(transform)
    moved = pts.astype(np.float32) @ mat[:3, :3].T + mat[:3, 3]
    moved = np.where(moved < 0, moved - np.float32(0.5), moved + np.float32(0.5))
    return np.trunc(moved).astype(np.int64)


class Registration:
    """Registers scans with a local map and keeps track of the pose.

    Each scan first gets the rotation and translation accumulated from the
    IMU samples up to its timestamp, then is refined against the map.
    """

    def __init__(
        self,
        imu_buffer: deque,
        matrix_resolution: int,
        map_resolution: int,
        max_iterations: int = 50,
        it_weight_gradient: float = 0.0,
        epsilon: float = 0.01,
    ) -> None:
        matrix_resolution = int(matrix_resolution)
        map_resolution = int(map_resolution)
        if matrix_resolution <= 0:
            raise ValueError(f"matrix resolution must be positive, got {matrix_resolution}")
        if map_resolution <= 0:
            raise ValueError(f"map resolution must be positive, got {map_resolution}")
        max_iterations = int(max_iterations)
        if max_iterations < 0:
            raise ValueError(f"max iterations must not be negative, got {max_iterations}")
        self.matrix_resolution = matrix_resolution
        self.map_resolution = map_resolution
        self.max_iterations = max_iterations
        self.it_weight_gradient = float(it_weight_gradient)
        self.epsilon = float(epsilon)
        self.imu_accumulator = ImuAccumulator(imu_buffer)
        self._iterations: deque[int] = deque(maxlen=_ITERATION_WINDOW)
        self._runs = 0

    @property
    def mean_iterations(self) -> float:
        """Mean iteration count over the most recent registrations."""
        if not self._iterations:
            return 0.0
        return sum(self._iterations) / len(self._iterations)

    def _record(self, iterations: int) -> None:
        self._iterations.append(iterations)
        self._runs += 1
        if self._runs > _REPORT_AFTER and self._runs % _REPORT_EVERY == 0:
            logger.info(
                "Average Iterations: %d / %d", int(self.mean_iterations), self.max_iterations
            )

    def register_cloud(
        self, local_map: LocalMap, cloud, cloud_timestamp: float, pose
    ) -> tuple[np.ndarray, np.ndarray]:
        """Register ``cloud`` with ``local_map`` starting from ``pose``.

        Returns the refined pose and the cloud transformed by it; the
        arguments are left unchanged.
        """
        pts = _as_points(cloud)
        pose = _as_transform(pose)

        imu_estimate = self.imu_accumulator.acc_transform(cloud_timestamp)
        # The rotation happens around the scanner, so it is applied apart from the translation.
        pose[:3, :3] = imu_estimate[:3, :3] @ pose[:3, :3]
        pose[:3, 3] += imu_estimate[:3, 3]

        result = register_scan(
            pts,
            local_map.hardware_representation(),
            local_map.data,
            self.max_iterations,
            self.it_weight_gradient,
            pose,
            self.epsilon,
            self.matrix_resolution,
            self.map_resolution,
        )
        self._record(result.iterations)
        final_pose = np.asarray(result.transform, dtype=np.float32)
        return final_pose, transform_point_cloud(pts, final_pose)