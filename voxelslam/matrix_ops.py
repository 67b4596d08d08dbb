"""Small dense matrix helpers for homogeneous transforms."""

from __future__ import annotations

import numpy as np


def matrix_mul(a, b) -> np.ndarray:
    """Return the matrix product ``a @ b``."""
    a = np.asarray(a)
    b = np.asarray(b)
    if a.ndim != 2 or b.ndim != 2:
        raise ValueError("both operands must be two-dimensional")
    if a.shape[1] != b.shape[0]:
        raise ValueError(f"cannot multiply shapes {a.shape} and {b.shape}")
    return a @ b


def transform_point(mat, point) -> np.ndarray:
    """Apply the rotation and translation of a 4x4 (or 3x4) transform to a 3D point."""
    mat = np.asarray(mat)
    point = np.asarray(point)
    if mat.ndim != 2 or mat.shape[0] < 3 or mat.shape[1] != 4:
        raise ValueError(f"transform must be 4x4 or 3x4, got shape {mat.shape}")
    if point.shape != (3,):
        raise ValueError(f"point must have shape (3,), got {point.shape}")
    return mat[:3, 3] + mat[:3, :3] @ point