import math
from collections import deque

import numpy as np
import pytest

from voxelslam.imu_accumulator import ImuAccumulator, ImuSample


def is_rotation(m):
    r = m[:3, :3].astype(np.float64)
    return np.allclose(r @ r.T, np.eye(3), atol=1e-5) and math.isclose(
        np.linalg.det(r), 1.0, abs_tol=1e-5
    )


def test_empty_buffer_gives_identity():
    acc = ImuAccumulator(deque())
    assert np.array_equal(acc.acc_transform(1.0), np.eye(4))


def test_first_sample_only_sets_reference():
    buf = deque([ImuSample(0.0, (1.0, 2.0, 3.0))])
    acc = ImuAccumulator(buf)
    assert np.array_equal(acc.acc_transform(1.0), np.eye(4))
    assert len(buf) == 0


def test_rotation_about_z():
    buf = deque([ImuSample(0.0, (0.0, 0.0, 1.0)), ImuSample(0.5, (0.0, 0.0, 1.0))])
    m = ImuAccumulator(buf).acc_transform(1.0)
    assert is_rotation(m)
    assert m[2, 2] == pytest.approx(1.0)
    assert math.acos(float(m[0, 0])) == pytest.approx(0.5, abs=1e-5)
    assert m[1, 0] > 0
    assert np.array_equal(m[:3, 3], np.zeros(3))
    assert np.array_equal(m[3], [0, 0, 0, 1])


def test_later_samples_stay_in_buffer():
    late = ImuSample(5.0, (1.0, 0.0, 0.0))
    buf = deque([ImuSample(0.0, (0.0, 0.0, 0.0)), late])
    acc = ImuAccumulator(buf)
    assert np.array_equal(acc.acc_transform(1.0), np.eye(4))
    assert list(buf) == [late]


def test_sub_millisecond_later_sample_counts_as_before():
    buf = deque([ImuSample(1.0005, (0.0, 0.0, 0.0))])
    ImuAccumulator(buf).acc_transform(1.0)
    assert len(buf) == 0


def test_state_persists_between_calls():
    buf = deque([ImuSample(0.0, (0.0, 0.0, 1.0))])
    acc = ImuAccumulator(buf)
    assert np.array_equal(acc.acc_transform(0.1), np.eye(4))
    buf.append(ImuSample(0.25, (0.0, 0.0, 1.0)))
    m = acc.acc_transform(1.0)
    assert math.acos(float(m[0, 0])) == pytest.approx(0.25, abs=1e-5)


def test_rotations_compose_about_same_axis():
    samples = [ImuSample(t, (0.0, 1.0, 0.0)) for t in (0.0, 0.2, 0.4)]
    m = ImuAccumulator(deque(samples)).acc_transform(1.0)
    assert is_rotation(m)
    assert m[1, 1] == pytest.approx(1.0)
    assert math.acos(float(m[0, 0])) == pytest.approx(0.4, abs=1e-5)


def test_general_rotation_is_orthonormal():
    samples = [ImuSample(0.0, (0.3, -0.2, 0.5)), ImuSample(0.1, (0.3, -0.2, 0.5)),
               ImuSample(0.3, (-1.0, 0.4, 2.0))]
    m = ImuAccumulator(deque(samples)).acc_transform(1.0)
    assert is_rotation(m)
    assert not np.allclose(m, np.eye(4))