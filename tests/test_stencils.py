"""Tests for eikmark.stencils: neighbour offsets and their combinations."""

import itertools

import pytest

from eikmark.stencils import Stencil, split_combination


@pytest.fixture(params=[2, 3], ids=["2D", "3D"])
def stencil(request):
    return Stencil(request.param)


def joined(stencil, combos):
    """Neighbour offsets of split combinations, joined back into tuples."""
    offsets = []
    for axes, signs in combos:
        c = [0] * stencil.ndim
        for a, k in zip(axes, signs):
            c[a] = k
        offsets.append(tuple(c))
    return offsets


class TestStencil:
    def test_sizes(self):
        s2 = Stencil(2)
        s3 = Stencil(3)
        assert len(s2.offsets) == 4
        assert len(s2.all_set) == 8
        assert [len(cs) for cs in s2.nabor_sets] == [3] * 4
        assert len(s3.offsets) == 6
        assert len(s3.all_set) == 26
        assert [len(cs) for cs in s3.nabor_sets] == [9] * 6

    def test_all_set_covers_every_combination(self, stencil):
        expected = set(itertools.product((-1, 0, 1), repeat=stencil.ndim))
        expected.discard((0,) * stencil.ndim)
        assert set(joined(stencil, stencil.all_set)) == expected

    def test_combinations_with_most_offsets_come_first(self, stencil):
        for cs in (stencil.all_set,) + stencil.nabor_sets:
            counts = [len(axes) for axes, _ in cs]
            assert counts == sorted(counts, reverse=True)

    def test_nabor_sets_include_opposite_offset(self, stencil):
        for (axis, step), cs in zip(stencil.steps, stencil.nabor_sets):
            for c in joined(stencil, cs):
                assert c[axis] == -step

    def test_steps_match_offsets(self, stencil):
        for (axis, step), offset in zip(stencil.steps, stencil.offsets):
            assert offset[axis] == step
            assert sum(abs(k) for k in offset) == 1

    def test_unsupported_dimensions_raise(self):
        with pytest.raises(ValueError, match="2D and 3D"):
            Stencil(4)


def test_split_combination():
    assert split_combination((1, 0, -1)) == ((0, 2), (1, -1))
    assert split_combination((0, -1)) == ((1,), (-1,))
