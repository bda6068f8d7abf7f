"""Tests for eikmark.samples: sample grid bookkeeping and active lists."""

import numpy as np
import pytest

from eikmark.samples import GENERATION_MAX, ActiveList, SampleGrid


@pytest.fixture
def grid():
    return SampleGrid((3, 4))


class TestSampleGrid:
    def test_strides_are_c_order(self):
        assert SampleGrid((3, 4, 5)).strides == (20, 5, 1)
        assert SampleGrid((3, 4)).size == 12

    @pytest.mark.parametrize("index", [(0, 0, 0), (2, 3, 4), (1, 0, 3)])
    def test_index_and_flat_agree(self, index):
        grid = SampleGrid((3, 4, 5))
        s = grid.flat(index)
        assert s == np.ravel_multi_index(index, (3, 4, 5))
        assert grid.index(s) == index

    def test_neighbors_inside_and_outside(self, grid):
        assert grid.neighbor(0, 0, -1) == -1
        assert grid.neighbor(0, 1, -1) == -1
        assert grid.neighbor(0, 0, 1) == 4
        assert grid.neighbor(0, 1, 1) == 1
        assert grid.neighbor(3, 1, 1) == -1
        assert grid.neighbor(11, 0, 1) == -1
        assert grid.neighbor(11, 0, -1) == 7

    def test_clear_activated_starts_new_generation(self, grid):
        grid.set_activated(5)
        assert grid.was_activated(5)
        generation = grid.generation
        grid.clear_activated()
        assert grid.generation == generation + 1
        assert not grid.was_activated(5)

    def test_clear_activated_sample(self, grid):
        grid.set_activated(2)
        grid.clear_activated_sample(2)
        assert not grid.was_activated(2)

    def test_generation_wraps_around(self, grid):
        grid.generation = GENERATION_MAX
        grid.set_activated(7)
        grid.clear_activated()
        assert grid.generation == 1
        assert not grid.activated.any()
        assert not grid.was_activated(7)


class TestActiveList:
    def test_append_activates(self, grid):
        al = ActiveList(grid)
        al.append(6)
        assert grid.was_activated(6)
        assert al.size() == 1
        assert len(al) == 1
        assert al.get(0) == 6
        assert not al.is_empty()

    def test_clear(self, grid):
        al = ActiveList(grid)
        al.append(1)
        al.clear()
        assert al.is_empty()

    def test_append_if_absent_merges_without_duplicates(self, grid):
        bl1 = ActiveList(grid)
        bl2 = ActiveList(grid)
        for s in (3, 1, 3, 2):
            bl1.append(s)
        for s in (2, 5, 1, 0):
            bl2.append(s)
        bl1.set_all_absent()
        bl2.set_all_absent()
        al = ActiveList(grid)
        al.append_if_absent(bl1)
        al.append_if_absent(bl2)
        assert list(al) == [3, 1, 2, 5, 0]
        assert not grid.absent.any()

    def test_shuffle_keeps_samples(self, grid):
        al = ActiveList(grid)
        for s in range(10):
            al.append(s)
        al.shuffle(np.random.default_rng(1))
        assert sorted(al) == list(range(10))

    def test_to_array(self, grid):
        al = ActiveList(grid)
        al.append(4)
        al.append(9)
        np.testing.assert_array_equal(al.to_array(), [4, 9])

    def test_dump_prints_indices(self, grid, capsys):
        al = ActiveList(grid)
        al.append(5)
        al.dump()
        out = capsys.readouterr().out
        assert "n=1" in out
        assert "(1, 1)" in out
