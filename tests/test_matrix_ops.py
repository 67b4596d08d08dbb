import numpy as np
import pytest

from voxelslam.matrix_ops import matrix_mul, transform_point


def _rot_z_90():
    return np.array(
        [[0, -1, 0, 0], [1, 0, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]], dtype=float
    )


def test_identity_is_neutral():
    m = np.arange(16, dtype=float).reshape(4, 4)
    np.testing.assert_array_equal(matrix_mul(np.eye(4), m), m)
    np.testing.assert_array_equal(matrix_mul(m, np.eye(4)), m)


def test_multiplication_is_associative():
    rng = np.random.default_rng(3)
    a, b, c = (rng.normal(size=(4, 4)) for _ in range(3))
    left = matrix_mul(matrix_mul(a, b), c)
    right = matrix_mul(a, matrix_mul(b, c))
    np.testing.assert_allclose(left, right, atol=1e-12)


def test_non_square_shapes():
    a = np.ones((2, 3))
    b = np.ones((3, 5))
    assert matrix_mul(a, b).shape == (2, 5)


def test_shape_mismatch_raises():
    with pytest.raises(ValueError):
        matrix_mul(np.ones((2, 3)), np.ones((2, 3)))


def test_identity_transform_keeps_point():
    p = np.array([4.0, -2.0, 7.5])
    np.testing.assert_array_equal(transform_point(np.eye(4), p), p)


def test_four_quarter_turns_return_point():
    p = np.array([1.0, 2.0, 3.0])
    q = p
    for _ in range(4):
        q = transform_point(_rot_z_90(), q)
    np.testing.assert_allclose(q, p)


def test_quarter_turn_about_z():
    np.testing.assert_allclose(transform_point(_rot_z_90(), [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_transform_composes_with_matrix_mul():
    rng = np.random.default_rng(8)
    a = np.eye(4)
    b = np.eye(4)
    a[:3, :] = rng.normal(size=(3, 4))
    b[:3, :] = rng.normal(size=(3, 4))
    p = rng.normal(size=3)
    direct = transform_point(matrix_mul(a, b), p)
    chained = transform_point(a, transform_point(b, p))
    np.testing.assert_allclose(direct, chained, atol=1e-12)


def test_integer_transform_stays_integer():
    mat = np.eye(4, dtype=int) * 1024
    mat[3, 3] = 1
    result = transform_point(mat, np.array([1, 2, 3]))
    assert np.issubdtype(result.dtype, np.integer)
    np.testing.assert_array_equal(result // 1024, [1, 2, 3])


def test_bad_shapes_raise():
    with pytest.raises(ValueError):
        transform_point(np.eye(3), [1, 2, 3])
    with pytest.raises(ValueError):
        transform_point(np.eye(4), [1, 2])