"""LU decomposition without pivoting and the matching triangular solve."""

from __future__ import annotations

import numpy as np


def _square_float_copy(a) -> np.ndarray:
    arr = np.asarray(a)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValueError(f"expected a square matrix, got shape {arr.shape}")
    dtype = arr.dtype if np.issubdtype(arr.dtype, np.floating) else np.float64
    return arr.astype(dtype, copy=True)


def lu_decomposition(a) -> np.ndarray:
    """Return the compact Doolittle LU factors of ``a``.

    The strictly lower part holds L (whose unit diagonal is implied), the
    upper part including the diagonal holds R. No pivoting is done, so a
    zero pivot yields infinities or NaNs instead of an error.
    """
    lu = _square_float_copy(a)
    n = lu.shape[0]
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for i in range(n - 1):
            lu[i + 1:, i] /= lu[i, i]
            lu[i + 1:, i + 1:] -= np.outer(lu[i + 1:, i], lu[i, i + 1:])
    return lu


def lu_solve(lu, b) -> np.ndarray:
    """Solve ``A x = b`` given the compact factors from :func:`lu_decomposition`."""
    lu = np.asarray(lu)
    if lu.ndim != 2 or lu.shape[0] != lu.shape[1]:
        raise ValueError(f"expected a square matrix, got shape {lu.shape}")
    n = lu.shape[0]
    x = np.array(b, dtype=lu.dtype if np.issubdtype(lu.dtype, np.floating) else np.float64)
    if x.shape != (n,):
        raise ValueError(f"right-hand side must have shape ({n},), got {x.shape}")
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for i in range(n):
            x[i] -= lu[i, :i] @ x[:i]
        for i in reversed(range(n)):
            x[i] -= lu[i, i + 1:] @ x[i + 1:]
            x[i] /= lu[i, i]
    return x


def lu_split(a) -> tuple[np.ndarray, np.ndarray]:
    """Return the separate factors ``(L, R)`` with ``L @ R == a``.

    L is unit lower triangular and R is upper triangular.
    """
    r = _square_float_copy(a)
    n = r.shape[0]
    lower = np.eye(n, dtype=r.dtype)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for i in range(n - 1):
            lower[i + 1:, i] = r[i + 1:, i] / r[i, i]
            r[i + 1:, i:] -= np.outer(lower[i + 1:, i], r[i, i:])
    return lower, r