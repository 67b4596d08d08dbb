"""Point-to-TSDF scan registration by Gauss-Newton iterations.

Scan points are matched against the TSDF values of a local map. Every
iteration builds the normal equations ``H xi = -g`` from the TSDF gradient
at each transformed point, solves them for a small motion ``xi`` and
applies that motion to the accumulated transform.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from voxelslam.linear_solver import lu_decomposition, lu_solve
from voxelslam.local_map_hw import LocalMapHW
from voxelslam.matrix_ops import matrix_mul


@dataclass(frozen=True)
class StepResult:
    """Normal equations and error statistics of one registration step."""

    h: np.ndarray
    g: np.ndarray
    error: int
    count: int


@dataclass(frozen=True)
class RegistrationResult:
    """Final transform of a registration and the iteration it stopped at."""

    transform: np.ndarray
    iterations: int


def _trunc_div(a: np.ndarray, b: int) -> np.ndarray:
    """Integer division rounding towards zero."""
    q = np.abs(a) // abs(b)
    return np.where((a < 0) != (b < 0), -q, q)


def _check_resolution(name: str, value: int) -> int:
    value = int(value)
    if value == 0:
        raise ValueError(f"{name} must not be zero")
    return value


def _as_points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=np.int64)
    if pts.size == 0:
        return pts.reshape(0, 3)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"points must have shape (N, 3), got {pts.shape}")
    return pts


def _lookup(map_hw: LocalMapHW, data: np.ndarray, cells: np.ndarray):
    """Return TSDF values and weights at many cells; cells outside give zeros."""
    size = np.array([map_hw.size_x, map_hw.size_y, map_hw.size_z], dtype=np.int64)
    pos = np.array([map_hw.pos_x, map_hw.pos_y, map_hw.pos_z], dtype=np.int64)
    offset = np.array([map_hw.offset_x, map_hw.offset_y, map_hw.offset_z], dtype=np.int64)

    inside = np.all(np.abs(cells - pos) <= size // 2, axis=1)
    values = np.zeros(len(cells), dtype=np.int64)
    weights = np.zeros(len(cells), dtype=np.int64)
    if inside.any():
        ring = (cells[inside] - pos + offset + size) % size
        index = ring[:, 0] * size[1] * size[2] + ring[:, 1] * size[2] + ring[:, 2]
        values[inside] = data["value"][index]
        weights[inside] = data["weight"][index]
    return values, weights


def xi_to_transform(xi, center) -> np.ndarray:
    """Turn a motion ``xi`` into a 4x4 transform rotating about ``center``.

    The first three entries of ``xi`` are the rotation axis scaled by the
    angle, the last three the translation added after the rotation.
    """
    xi = np.asarray(xi, dtype=np.float32)
    if xi.shape != (6,):
        raise ValueError(f"xi must have shape (6,), got {xi.shape}")
    c = np.asarray(center, dtype=np.float32)
    if c.shape != (3,):
        raise ValueError(f"center must have shape (3,), got {c.shape}")

    with np.errstate(all="ignore"):
        theta = np.sqrt(xi[0] * xi[0] + xi[1] * xi[1] + xi[2] * xi[2])
        sin_theta = np.sin(theta)
        one_minus_cos = np.float32(1) - np.cos(theta)
        a0, a1, a2 = xi[:3] / theta
        skew = np.array(
            [[0, -a2, a1], [a2, 0, -a0], [-a1, a0, 0]], dtype=np.float32
        )
        rotation = (
            sin_theta * skew
            + one_minus_cos * (skew @ skew)
            + np.eye(3, dtype=np.float32)
        )

        transform = np.eye(4, dtype=np.float32)
        transform[:3, :3] = rotation
        shift = rotation @ (-c)
        transform[:3, 3] = shift + c + xi[3:]
    return transform


def registration_step(
    points, map_hw: LocalMapHW, data, int_transform, center,
    matrix_resolution, map_resolution,
) -> StepResult:
    """Build the normal equations for one iteration over all scan points.

    ``int_transform`` is the current transform scaled by
    ``matrix_resolution`` and truncated to integers. Points that land in a
    cell of weight zero are ignored.
    """
    matrix_resolution = _check_resolution("matrix_resolution", matrix_resolution)
    map_resolution = _check_resolution("map_resolution", map_resolution)
    pts = _as_points(points)
    mat = np.asarray(int_transform, dtype=np.int64)
    if mat.shape != (4, 4):
        raise ValueError(f"transform must have shape (4, 4), got {mat.shape}")
    centre = np.asarray(center, dtype=np.int64)
    if centre.shape != (3,):
        raise ValueError(f"center must have shape (3,), got {centre.shape}")
    data = np.asarray(data)

    transformed = pts @ mat[:3, :3].T + mat[:3, 3]
    transformed = _trunc_div(transformed, matrix_resolution)
    cells = _trunc_div(transformed, map_resolution)
    relative = transformed - centre

    current, weight = _lookup(map_hw, data, cells)
    keep = weight != 0
    cells, relative, current = cells[keep], relative[keep], current[keep]

    gradient = np.zeros((len(cells), 3), dtype=np.int64)
    for axis in range(3):
        step = np.zeros(3, dtype=np.int64)
        step[axis] = 1
        last_v, last_w = _lookup(map_hw, data, cells - step)
        next_v, next_w = _lookup(map_hw, data, cells + step)
        valid = (last_w != 0) & (next_w != 0) & ((next_v > 0) == (last_v > 0))
        gradient[:, axis] = np.where(valid, _trunc_div(next_v - last_v, 2), 0)

    jacobi = np.empty((len(cells), 6), dtype=np.int64)
    jacobi[:, :3] = np.cross(relative, gradient) if len(cells) else 0
    jacobi[:, 3:] = gradient

    h = jacobi.T @ jacobi
    g = jacobi.T @ current
    return StepResult(
        h=h, g=g, error=int(np.abs(current).sum()), count=int(len(cells))
    )


def register_scan(
    points, map_hw: LocalMapHW, data, max_iterations, it_weight_gradient,
    in_transform, epsilon, matrix_resolution, map_resolution,
) -> RegistrationResult:
    """Register scan points against the map, starting from ``in_transform``.

    Iteration stops after ``max_iterations`` or once the mean error changes
    by at most ``epsilon`` against both the error two and four iterations
    back. The reported iteration count is the index at which the loop
    stopped.
    """
    matrix_resolution = _check_resolution("matrix_resolution", matrix_resolution)
    map_resolution = _check_resolution("map_resolution", map_resolution)
    total = np.array(in_transform, dtype=np.float32)
    if total.shape != (4, 4):
        raise ValueError(f"transform must have shape (4, 4), got {total.shape}")
    pts = _as_points(points)
    data = np.asarray(data)

    eps = np.float32(epsilon)
    weight_gradient = np.float32(it_weight_gradient)
    alpha = np.float32(0)
    previous_errors = [np.float32(0)] * 4

    iteration = 0
    while iteration < max_iterations:
        with np.errstate(all="ignore"):
            int_transform = (total * np.float32(matrix_resolution)).astype(np.int64)
            center = total[:3, 3].astype(np.int64)

        step = registration_step(
            pts, map_hw, data, int_transform, center,
            matrix_resolution, map_resolution,
        )

        with np.errstate(all="ignore"):
            alpha_bonus = alpha * np.float32(step.count)
            h = step.h.astype(np.float32)
            h[np.diag_indices(6)] += alpha_bonus
            g = (-step.g).astype(np.float32)

            xi = lu_solve(lu_decomposition(h), g)
            total = matrix_mul(xi_to_transform(xi, center), total).astype(np.float32)

            alpha = np.float32(alpha + weight_gradient)
            err = np.float32(step.error) / np.float32(step.count)
            d1 = err - previous_errors[2]
            d2 = err - previous_errors[0]

        if -eps <= d1 <= eps and -eps <= d2 <= eps:
            break
        previous_errors = previous_errors[1:] + [err]
        iteration += 1

    return RegistrationResult(transform=total, iterations=iteration)