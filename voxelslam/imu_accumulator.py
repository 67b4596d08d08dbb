"""Accumulation of IMU angular velocities into a rotation between scans."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ImuSample:
    """An IMU reading: timestamp in seconds and angular velocity in rad/s."""

    timestamp: float
    angular_velocity: tuple[float, float, float]


def _axis_rotation(axis: int, angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    i, j = [(1, 2), (2, 0), (0, 1)][axis]
    rot = np.eye(3, dtype=np.float32)
    rot[i, i] = c
    rot[i, j] = -s
    rot[j, i] = s
    rot[j, j] = c
    return rot


def _before(ts_1: float, ts_2: float) -> bool:
    """Whether ``ts_1`` is not later than ``ts_2`` at whole-millisecond precision."""
    return math.trunc((ts_2 - ts_1) * 1000) >= 0


class ImuAccumulator:
    """Turns IMU samples up to a scan's timestamp into one accumulated transform.

    Samples are taken from the front of ``buffer`` (a deque of
    :class:`ImuSample`). The very first sample only sets the reference time.
    """

    def __init__(self, buffer: deque) -> None:
        self.buffer = buffer
        self._first = True
        self._last_timestamp = 0.0

    def acc_transform(self, pcl_timestamp: float) -> np.ndarray:
        """Consume the samples up to ``pcl_timestamp`` and return their 4x4 transform."""
        transform = np.eye(4, dtype=np.float32)
        while self.buffer and _before(self.buffer[0].timestamp, pcl_timestamp):
            sample = self.buffer.popleft()
            if self._first:
                self._last_timestamp = sample.timestamp
                self._first = False
                continue
            self._apply(transform, sample)
            self._last_timestamp = sample.timestamp
        return transform

    def _apply(self, transform: np.ndarray, sample: ImuSample) -> None:
        dt = abs(sample.timestamp - self._last_timestamp)
        ox, oy, oz = (np.float32(w) * np.float32(dt) for w in sample.angular_velocity)
        rotation = _axis_rotation(0, ox) @ _axis_rotation(1, oy) @ _axis_rotation(2, oz)
        transform[:3, :3] = rotation @ transform[:3, :3]