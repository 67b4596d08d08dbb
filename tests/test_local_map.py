import itertools

import pytest

from voxelslam.global_map import GlobalMap, TSDFEntry
from voxelslam.local_map import LocalMap

DEFAULT = TSDFEntry(600, 0)


@pytest.fixture
def global_map(tmp_path):
    gm = GlobalMap(tmp_path / "map.db", DEFAULT.value, DEFAULT.weight)
    yield gm
    gm.close()


def _cells(local_map):
    half = [s // 2 for s in local_map.size]
    return itertools.product(
        *(range(p - h, p + h + 1) for p, h in zip(local_map.pos, half))
    )


def _fill_distinct(local_map):
    values = {}
    for number, cell in enumerate(_cells(local_map)):
        entry = TSDFEntry(number % 30000, 1 + number % 7)
        local_map[cell] = entry
        values[cell] = entry
    return values


def test_even_sizes_become_odd(global_map):
    lm = LocalMap(4, 3, 4, global_map)
    assert lm.size == (5, 3, 5)
    assert all(s % 2 == 1 for s in lm.size)


def test_initial_values_are_global_default(global_map):
    lm = LocalMap(3, 5, 3, global_map)
    assert all(lm[cell] == DEFAULT for cell in _cells(lm))
    assert lm.pos == (0, 0, 0)


def test_ring_boundaries_match_array_bounds_initially(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    hw = lm.hardware_representation()
    assert hw.get_index(-2, -2, -2) == 0
    assert hw.get_index(2, 2, 2) == lm.data.size - 1


def test_set_and_get_roundtrip(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    lm[(1, -2, 2)] = TSDFEntry(-17, 4)
    assert lm[(1, -2, 2)] == TSDFEntry(-17, 4)
    assert lm[(0, 0, 0)] == DEFAULT


def test_out_of_bounds_access_raises(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    with pytest.raises(IndexError):
        lm[(3, 0, 0)]
    with pytest.raises(IndexError):
        lm[(0, 0, -3)] = TSDFEntry(1, 1)


def test_in_bounds(global_map):
    lm = LocalMap(5, 3, 5, global_map)
    assert lm.in_bounds((2, -1, 2))
    assert not lm.in_bounds((2, 2, 0))
    assert not lm.in_bounds((-3, 0, 0))


def test_shift_saves_leaving_cells_and_restores_them(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    lm[(2, 0, 0)] = TSDFEntry(11, 1)
    lm[(-2, 1, 1)] = TSDFEntry(-4, 2)

    lm.shift((3, 0, 0))
    assert lm.pos == (3, 0, 0)
    assert not lm.in_bounds((-2, 1, 1))
    assert global_map.get_value((-2, 1, 1)) == TSDFEntry(-4, 2)
    assert lm[(2, 0, 0)] == TSDFEntry(11, 1)

    lm.shift((0, 0, 0))
    assert lm[(-2, 1, 1)] == TSDFEntry(-4, 2)
    assert lm[(2, 0, 0)] == TSDFEntry(11, 1)


def test_shift_loads_entering_cells_from_global_map(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    global_map.set_value((5, 0, -1), TSDFEntry(9, 9))
    lm.shift((3, 0, 0))
    assert lm[(5, 0, -1)] == TSDFEntry(9, 9)
    assert lm[(4, 0, 0)] == DEFAULT


def test_shift_keeps_cells_that_stay_inside(global_map):
    lm = LocalMap(5, 7, 3, global_map)
    before = _fill_distinct(lm)
    lm.shift((2, -1, 1))
    for cell in _cells(lm):
        if cell in before:
            assert lm[cell] == before[cell]
        else:
            assert lm[cell] == DEFAULT


def test_hardware_view_agrees_after_shift(global_map):
    lm = LocalMap(5, 5, 3, global_map)
    _fill_distinct(lm)
    lm.shift((-3, 2, 1))
    hw = lm.hardware_representation()
    assert (hw.pos_x, hw.pos_y, hw.pos_z) == lm.pos
    assert (hw.offset_x, hw.offset_y, hw.offset_z) == lm.offset
    for cell in _cells(lm):
        assert hw.get(lm.data, *cell) == lm[cell]


def test_shift_by_whole_size_replaces_everything(global_map):
    lm = LocalMap(3, 3, 3, global_map)
    lm[(1, 1, 1)] = TSDFEntry(5, 5)
    lm.shift((3, 0, 0))
    assert all(lm[cell] == DEFAULT for cell in _cells(lm))
    assert global_map.get_value((1, 1, 1)) == TSDFEntry(5, 5)


def test_shift_too_far_raises(global_map):
    lm = LocalMap(5, 5, 5, global_map)
    with pytest.raises(ValueError):
        lm.shift((0, 6, 0))
    assert lm.pos == (0, 0, 0)


def test_write_back_stores_all_cells(global_map):
    lm = LocalMap(3, 3, 3, global_map)
    lm.shift((-1, 2, 0))
    lm[(-2, 3, 1)] = TSDFEntry(-8, 3)
    lm.write_back()
    assert global_map.get_value((-2, 3, 1)) == TSDFEntry(-8, 3)
    assert global_map.get_value((-1, 2, 0)) == DEFAULT


def test_copy_is_independent(global_map):
    lm = LocalMap(3, 3, 3, global_map)
    clone = lm.copy()
    clone[(0, 0, 0)] = TSDFEntry(1, 1)
    assert lm[(0, 0, 0)] == DEFAULT
    assert clone.size == lm.size
    assert clone.global_map is lm.global_map


def test_swap_exchanges_state(global_map):
    a = LocalMap(3, 3, 3, global_map)
    b = LocalMap(5, 5, 5, global_map)
    a[(1, 0, 0)] = TSDFEntry(2, 2)
    b.shift((1, 1, 1))
    a.swap(b)
    assert a.size == (5, 5, 5) and a.pos == (1, 1, 1)
    assert b.size == (3, 3, 3) and b.pos == (0, 0, 0)
    assert b[(1, 0, 0)] == TSDFEntry(2, 2)


def test_fill_from_copies_state(global_map):
    a = LocalMap(3, 3, 3, global_map)
    b = LocalMap(3, 3, 3, global_map)
    b.shift((1, 0, 0))
    b[(2, 0, 0)] = TSDFEntry(6, 6)
    a.fill_from(b)
    assert a.pos == b.pos
    assert a[(2, 0, 0)] == TSDFEntry(6, 6)
    a[(2, 0, 0)] = TSDFEntry(0, 1)
    assert b[(2, 0, 0)] == TSDFEntry(6, 6)


def test_fill_from_different_size_raises(global_map):
    a = LocalMap(3, 3, 3, global_map)
    b = LocalMap(5, 3, 3, global_map)
    with pytest.raises(ValueError):
        a.fill_from(b)