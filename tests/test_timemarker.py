"""Tests for eikmark.timemarker: times and marks from known samples."""

import numpy as np
import pytest

import eikmark
from eikmark import (
    ArrayTensors,
    Concurrency,
    ConstantTensors,
    EigenTensors2,
    HeapType,
    SweepError,
    TimeMarker,
    TimeMarker2,
    TimeMarker2X,
    TimeMarker3,
    TimeMarker3X,
    TimeMarkerX
)
from eikmark.parallel import TaichiSweep


# ---------------------------------------------------------------------------
# Helpers and fixtures
# ---------------------------------------------------------------------------

def make_arrays(shape, known):
    """Times and marks with known samples given as {index: mark}."""
    times = np.ones(shape, dtype=np.float32)
    marks = np.zeros(shape, dtype=np.int32)
    for index, m in known.items():
        times[index] = 0.
        marks[index] = m
    return times, marks


def distances(shape, index):
    grids = np.meshgrid(*(np.arange(n) for n in shape), indexing="ij")
    return np.sqrt(sum((g - i) ** 2 for g, i in zip(grids, index)))


def random_known(shape, n, seed=1):
    rng = np.random.default_rng(seed)
    flat = rng.choice(int(np.prod(shape)), size=n, replace=False)
    return {np.unravel_index(s, shape): m + 1 for m, s in enumerate(flat)}


def per_source_times(shape, known):
    """Times from each known sample alone, stacked along the first axis."""
    each = []
    for index, m in known.items():
        t, _ = make_arrays(shape, {index: m})
        TimeMarker(shape).apply(t, np.zeros(shape, dtype=np.int32))
        each.append(t)
    return np.stack(each)


def clear_of_ties(each, gap=0.01):
    """Flag samples where the two least times from known samples differ clearly."""
    ordered = np.sort(each, axis=0)
    with np.errstate(invalid="ignore"):
        return ordered[1] - ordered[0] > gap * ordered[0]


def nearest_marks(known, each):
    return np.array(list(known.values()))[each.argmin(axis=0)]


@pytest.fixture(params=["shuffle", "heap"])
def marker_class(request):
    return TimeMarker if request.param == "shuffle" else TimeMarkerX


# ---------------------------------------------------------------------------
# Single known sample
# ---------------------------------------------------------------------------

class TestSingleSource:
    def test_boundary_scenario(self, marker_class):
        """5x5 grid, known sample in the middle, identity tensors."""
        times, marks = make_arrays((5, 5), {(2, 2): 1})
        marker_class((5, 5)).apply(times, marks)
        assert times[2, 2] == 0.
        for index in [(1, 2), (3, 2), (2, 1), (2, 3)]:
            assert times[index] == pytest.approx(1.)
        for index in [(1, 1), (1, 3), (3, 1), (3, 3)]:
            assert 1.4 <= times[index] <= 1.75
        assert (marks == 1).all()
        # Times increase away from the known sample.
        assert np.all(np.diff(times[2, 2:]) > 0)
        assert np.all(np.diff(times[2, 2::-1]) > 0)
        assert np.all(np.diff(times[2:, 2]) > 0)
        assert np.all(np.diff(times[2::-1, 2]) > 0)

    def test_isotropic_times_approximate_distances(self):
        shape = (21, 21)
        times, marks = make_arrays(shape, {(10, 10): 5})
        TimeMarker(shape).apply(times, marks)
        r = distances(shape, (10, 10))
        unknown = r > 0
        assert np.all(times[unknown] >= 0.99 * r[unknown])
        assert np.all(times[unknown] <= 1.25 * r[unknown])
        # Along axes, times are exact up to the convergence tolerance.
        np.testing.assert_allclose(times[10, :], np.abs(np.arange(21) - 10), rtol=2e-3)
        np.testing.assert_allclose(times[:, 10], np.abs(np.arange(21) - 10), rtol=2e-3)

    def test_isotropic_3d(self):
        shape = (7, 7, 7)
        times, marks = make_arrays(shape, {(3, 3, 3): 2})
        TimeMarker3(7, 7, 7).apply(times, marks)
        r = distances(shape, (3, 3, 3))
        unknown = r > 0
        assert times[2, 3, 3] == pytest.approx(1.)
        assert times[3, 3, 6] == pytest.approx(3., rel=2e-3)
        assert np.all(np.isfinite(times))
        assert np.all(times[unknown] >= 0.99 * r[unknown])
        assert np.all(times[unknown] <= 1.4 * r[unknown])
        assert (marks == 2).all()

    def test_anisotropic_times(self):
        """Speed 2 along the 1st axis and 1 along the 2nd."""
        shape = (11, 11)
        tensors = EigenTensors2.from_angles(np.zeros(shape), np.full(shape, 4.), np.ones(shape))
        times, marks = make_arrays(shape, {(5, 5): 1})
        TimeMarker2(11, 11, tensors).apply(times, marks)
        assert times[9, 5] == pytest.approx(2., rel=2e-3)
        assert times[1, 5] == pytest.approx(2., rel=2e-3)
        assert times[5, 9] == pytest.approx(4., rel=2e-3)
        assert times[5, 1] == pytest.approx(4., rel=2e-3)

    def test_heap_variant_matches_shuffle_variant(self):
        shape = (9, 12)
        times1, marks1 = make_arrays(shape, {(2, 7): 3})
        times2, marks2 = make_arrays(shape, {(2, 7): 3})
        TimeMarker(shape).apply(times1, marks1)
        TimeMarker2X(9, 12).apply(times2, marks2)
        np.testing.assert_array_equal(times1, times2)
        np.testing.assert_array_equal(marks1, marks2)


# ---------------------------------------------------------------------------
# Many known samples
# ---------------------------------------------------------------------------

class TestManySources:
    def test_two_corners_split_the_grid(self, marker_class):
        shape = (10, 10)
        times, marks = make_arrays(shape, {(0, 0): 1, (9, 9): 2})
        marker_class(shape).apply(times, marks)
        i, j = np.meshgrid(np.arange(10), np.arange(10), indexing="ij")
        assert (marks[i + j <= 8] == 1).all()
        assert (marks[i + j >= 10] == 2).all()
        assert np.all(np.isfinite(times))

    def test_times_are_minimum_over_sources(self):
        shape = (15, 15)
        known = {(2, 3): 1, (11, 12): 2, (12, 1): 3}
        times, marks = make_arrays(shape, known)
        TimeMarker(shape).apply(times, marks)
        each = per_source_times(shape, known)
        np.testing.assert_allclose(times, each.min(axis=0), rtol=1e-2, atol=1e-2)
        # Marks are those of the sources with least times, away from ties.
        clear = clear_of_ties(each)
        np.testing.assert_array_equal(marks[clear], nearest_marks(known, each)[clear])

    def test_known_samples_are_unchanged(self, marker_class):
        shape = (12, 12)
        known = random_known(shape, 10)
        for index in np.ndindex(3, 3): # a block of known samples
            known[(index[0] + 5, index[1] + 5)] = 99
        times, marks = make_arrays(shape, known)
        marker_class(shape).apply(times, marks)
        for index, m in known.items():
            assert times[index] == 0.
            assert marks[index] == m
        assert np.all(times[times != 0.] > 0.)

    def test_repeated_transforms_are_identical(self, marker_class):
        shape = (16, 13)
        known = random_known(shape, 12, seed=7)
        times1, marks1 = make_arrays(shape, known)
        times2, marks2 = make_arrays(shape, known)
        marker_class(shape).apply(times1, marks1)
        marker_class(shape).apply(times2, marks2)
        np.testing.assert_array_equal(times1, times2)
        np.testing.assert_array_equal(marks1, marks2)

    def test_min_heap(self):
        shape = (10, 10)
        known = random_known(shape, 5, seed=3)
        times1, marks1 = make_arrays(shape, known)
        times2, marks2 = make_arrays(shape, known)
        TimeMarker(shape).apply(times1, marks1)
        TimeMarkerX(shape, heap_type=HeapType.MIN).apply(times2, marks2)
        np.testing.assert_allclose(times1, times2, rtol=1e-2, atol=1e-2)

    def test_3d_heap_variant(self):
        shape = (6, 7, 8)
        known = random_known(shape, 6, seed=5)
        times1, marks1 = make_arrays(shape, known)
        times2, marks2 = make_arrays(shape, known)
        TimeMarker(shape).apply(times1, marks1)
        TimeMarker3X(6, 7, 8).apply(times2, marks2)
        np.testing.assert_allclose(times1, times2, rtol=1e-2, atol=1e-2)
        # Where two known samples give the same time, the mark depends on
        # the order in which they are processed.
        clear = clear_of_ties(per_source_times(shape, known))
        assert clear.any()
        np.testing.assert_array_equal(marks2[clear], marks1[clear])


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

class TestEdgeCases:
    def test_unreachable_samples_stay_infinite(self, marker_class):
        """Zero tensors in a ring enclose samples without known samples."""
        shape = (11, 11)
        d = np.broadcast_to(np.array([1., 0., 1.], dtype=np.float32), shape + (3,)).copy()
        i, j = np.meshgrid(np.arange(11), np.arange(11), indexing="ij")
        ring = np.maximum(np.abs(i - 7), np.abs(j - 7)) == 2
        inside = np.maximum(np.abs(i - 7), np.abs(j - 7)) < 2
        d[ring] = 0.
        times, marks = make_arrays(shape, {(0, 0): 4})
        marker_class(shape, ArrayTensors(d)).apply(times, marks)
        assert np.all(np.isinf(times[inside | ring]))
        assert (marks[inside] == 0).all()
        outside = ~(inside | ring)
        assert np.all(np.isfinite(times[outside]))
        assert (marks[outside] == 4).all()

    def test_no_known_samples(self):
        times = np.ones((4, 5), dtype=np.float32)
        marks = np.full((4, 5), 3, dtype=np.int32)
        marker = TimeMarker((4, 5))
        marker.apply(times, marks)
        assert np.all(np.isinf(times))
        assert (marks == 3).all()
        assert marker.last_stats.sources == 0

    def test_single_row_grid(self):
        times, marks = make_arrays((1, 6), {(0, 0): 1})
        TimeMarker((1, 6)).apply(times, marks)
        np.testing.assert_allclose(times[0], np.arange(6), rtol=1e-5)

    def test_float64_times_and_int64_marks(self):
        times = np.ones((6, 6))
        marks = np.zeros((6, 6), dtype=np.int64)
        times[0, 0] = 0.
        marks[0, 0] = 2 ** 40
        TimeMarker((6, 6)).apply(times, marks)
        assert times[0, 5] == pytest.approx(5., rel=2e-3)
        assert (marks == 2 ** 40).all()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrency:
    @pytest.mark.parametrize("concurrency", [Concurrency.PARALLELX, Concurrency.PARALLEL])
    @pytest.mark.parametrize("shape", [(24, 31), (9, 10, 11)], ids=["2D", "3D"])
    def test_parallel_agrees_with_serial(self, marker_class, concurrency, shape):
        known = random_known(shape, 8, seed=11)
        times1, marks1 = make_arrays(shape, known)
        times2, marks2 = make_arrays(shape, known)
        marker_class(shape).apply(times1, marks1)
        marker_class(shape, concurrency=concurrency).apply(times2, marks2)
        np.testing.assert_allclose(times2, times1, rtol=1e-5)
        clear = clear_of_ties(per_source_times(shape, known))
        np.testing.assert_array_equal(marks2[clear], marks1[clear])
        for index, m in known.items():
            assert times2[index] == 0.
            assert marks2[index] == m

    def test_parallel_single_source_2d(self):
        shape = (40, 40)
        times1, marks1 = make_arrays(shape, {(20, 20): 1})
        times2, marks2 = make_arrays(shape, {(20, 20): 1})
        TimeMarker(shape).apply(times1, marks1)
        TimeMarker(shape, concurrency="parallel").apply(times2, marks2)
        np.testing.assert_allclose(times2, times1, rtol=1e-5)
        assert (marks2 == 1).all()

    def test_parallel_reuses_fields(self):
        marker = TimeMarker((8, 8), concurrency=Concurrency.PARALLEL)
        for index in [(0, 0), (7, 7)]:
            times, marks = make_arrays((8, 8), {index: 1})
            marker.apply(times, marks)
            assert times[index] == 0.
            assert np.all(np.isfinite(times))

    def test_parallel_unreachable_samples(self):
        shape = (11, 11)
        d = np.broadcast_to(np.array([1., 0., 1.], dtype=np.float32), shape + (3,)).copy()
        d[4:7, :] = 0.
        times, marks = make_arrays(shape, {(0, 0): 4})
        TimeMarker(shape, ArrayTensors(d), concurrency="parallel").apply(times, marks)
        assert np.all(np.isfinite(times[:4]))
        assert np.all(np.isinf(times[4:]))

    @pytest.mark.parametrize("concurrency", list(Concurrency))
    def test_wide_marks_are_restored(self, marker_class, concurrency):
        times = np.ones((6, 6))
        marks = np.zeros((6, 6), dtype=np.int64)
        times[0, 0] = times[5, 5] = 0.
        marks[0, 0] = 2 ** 40
        marks[5, 5] = -2 ** 35
        marker_class((6, 6), concurrency=concurrency).apply(times, marks)
        assert marks[0, 0] == 2 ** 40
        assert marks[5, 5] == -2 ** 35
        assert set(np.unique(marks)) == {2 ** 40, -2 ** 35}
        assert marks[0, 1] == 2 ** 40
        assert marks[5, 4] == -2 ** 35

    def test_heap_variant_copies_back_once(self, monkeypatch):
        synced = []
        sync = TaichiSweep.sync

        def counting_sync(self, ctx):
            synced.append(ctx)
            sync(self, ctx)

        monkeypatch.setattr(TaichiSweep, "sync", counting_sync)
        shape = (14, 14)
        known = random_known(shape, 9, seed=2)
        times1, marks1 = make_arrays(shape, known)
        times2, marks2 = make_arrays(shape, known)
        TimeMarkerX(shape).apply(times1, marks1)
        TimeMarkerX(shape, concurrency=Concurrency.PARALLEL).apply(times2, marks2)
        assert len(synced) == 1
        np.testing.assert_allclose(times2, times1, rtol=1e-5)

    def test_worker_failure_raises_sweep_error(self):
        class BrokenTensors(ConstantTensors):
            def get_tensor(self, index, d):
                raise RuntimeError("broken")

        times, marks = make_arrays((5, 5), {(2, 2): 1})
        marker = TimeMarker((5, 5), BrokenTensors((5, 5)), concurrency=Concurrency.PARALLELX)
        with pytest.raises(SweepError, match="broken") as info:
            marker.apply(times, marks)
        assert isinstance(info.value.__cause__, RuntimeError)

    def test_set_concurrency(self):
        marker = TimeMarker((4, 4))
        assert marker.concurrency == Concurrency.SERIAL
        marker.set_concurrency("parallelx")
        assert marker.concurrency == Concurrency.PARALLELX
        with pytest.raises(ValueError, match="Unknown concurrency"):
            marker.set_concurrency("fast")


# ---------------------------------------------------------------------------
# Validation, statistics, and the top level function
# ---------------------------------------------------------------------------

class TestValidation:
    @pytest.mark.parametrize("shape", [(5,), (2, 2, 2, 2), (0, 5), (3, -1, 2)])
    def test_invalid_shapes_raise(self, shape):
        with pytest.raises(ValueError):
            TimeMarker(shape)

    def test_mismatched_arrays_raise(self):
        marker = TimeMarker((5, 6))
        with pytest.raises(ValueError, match="shape"):
            marker.apply(np.ones((6, 5), dtype=np.float32), np.zeros((6, 5), dtype=np.int32))

    def test_integer_times_raise(self):
        with pytest.raises(ValueError, match="floating"):
            TimeMarker((3, 3)).apply(np.ones((3, 3), dtype=np.int32), np.zeros((3, 3), dtype=np.int32))

    def test_float_marks_raise(self):
        with pytest.raises(ValueError, match="integers"):
            TimeMarker((3, 3)).apply(np.ones((3, 3)), np.zeros((3, 3)))

    def test_non_contiguous_arrays_raise(self):
        times = np.asfortranarray(np.ones((3, 4)))
        with pytest.raises(ValueError, match="contiguous"):
            TimeMarker((3, 4)).apply(times, np.zeros((3, 4), dtype=np.int32))

    def test_mismatched_tensors_raise(self):
        with pytest.raises(ValueError, match="shape"):
            TimeMarker((3, 4), ConstantTensors((4, 3)))
        marker = TimeMarker((3, 4))
        with pytest.raises(ValueError, match="shape"):
            marker.set_tensors(ConstantTensors((3, 4, 2)))


class TestStatistics:
    def test_last_stats(self):
        times, marks = make_arrays((5, 5), {(2, 2): 1})
        marker = TimeMarker((5, 5))
        assert marker.last_stats is None
        marker.apply(times, marks)
        stats = marker.last_stats
        assert stats.sources == 1
        assert stats.visits >= 24
        assert stats.ratio == pytest.approx(stats.visits / 25)
        assert stats.elapsed >= 0.

    def test_verbose_prints_progress(self, capsys):
        times, marks = make_arrays((5, 5), {(2, 2): 1})
        TimeMarker((5, 5), verbose=True).apply(times, marks)
        out = capsys.readouterr().out
        assert "Marking times from 1 known samples." in out
        assert "Visited" in out

    def test_silent_by_default(self, capsys):
        times, marks = make_arrays((5, 5), {(2, 2): 1})
        TimeMarker((5, 5)).apply(times, marks)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_stats_print(self, capsys):
        times, marks = make_arrays((5, 5), {(2, 2): 1})
        marker = TimeMarker((5, 5))
        marker.apply(times, marks)
        marker.last_stats.print()
        assert "sources => 1" in capsys.readouterr().out


class TestTimeMarkerFunction:
    @pytest.mark.parametrize("variant", ["shuffle", "heap"])
    def test_variants(self, variant):
        times, marks = make_arrays((6, 6), {(0, 0): 1, (5, 5): 2})
        marker = eikmark.time_marker(times, marks, variant=variant)
        assert marker.last_stats.sources == 2
        assert marks[1, 0] == 1
        assert marks[5, 4] == 2

    def test_unknown_variant_raises(self):
        times, marks = make_arrays((3, 3), {(0, 0): 1})
        with pytest.raises(ValueError, match="Unknown variant"):
            eikmark.time_marker(times, marks, variant="sorted")

    def test_unknown_concurrency_raises(self):
        times, marks = make_arrays((3, 3), {(0, 0): 1})
        with pytest.raises(ValueError, match="Unknown concurrency"):
            eikmark.time_marker(times, marks, concurrency="gpu")

    def test_keyword_arguments_are_passed_on(self):
        times, marks = make_arrays((6, 6), {(0, 0): 1})
        marker = eikmark.time_marker(times, marks, tensors=ConstantTensors((6, 6), [4., 0., 4.]),
                                     epsilon=0.01, nabor_factor=2.)
        assert marker.epsilon == 0.01
        assert marker.nabor_factor == 2.
        assert times[0, 5] == pytest.approx(2.5, rel=1e-2)
