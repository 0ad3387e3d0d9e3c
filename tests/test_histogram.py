import math
import random

import pytest

from latbench.histogram import LatencyHistogram, compress, decompress


def _filled(values):
    h = LatencyHistogram()
    for v in values:
        h.measure(v)
    return h


def test_percentiles_monotonic():
    rnd = random.Random(99)
    h = _filled(rnd.expovariate(1 / 12) for _ in range(2_000))
    ps = [0, 1, 10, 25, 50, 75, 90, 95, 99, 99.9, 100]
    values = [h.percentile(p) for p in ps]
    assert values == sorted(values)


def test_single_sample_is_every_percentile():
    h = _filled([7.3])
    for p in (0, 25, 50, 99, 100):
        assert h.percentile(p) == 7.3


def test_min_and_max_exact():
    h = _filled([5.0, 12.0, 100.0, 6.5])
    assert h.percentile(0) == 5.0
    assert h.percentile(100) == 100.0


def test_insertion_order_does_not_matter():
    rnd = random.Random(3)
    values = [rnd.uniform(0, 200) for _ in range(500)]
    shuffled = list(values)
    random.Random(4).shuffle(shuffled)
    a, b = _filled(values), _filled(shuffled)
    assert a.summary() == b.summary()


def test_repeated_queries_are_stable():
    h = _filled([1, 2, 3, 40, 50])
    first = h.summary()
    assert h.summary() == first
    assert h.percentile(50) == h.percentile(50)


def test_bucket_error_is_about_one_percent():
    for value in (5.0, 17.0, 100.0, 2500.0):
        assert decompress(compress(value)) == pytest.approx(value, rel=0.012)


def test_median_of_skewed_data():
    h = _filled([5.0] * 90 + [100.0] * 10)
    assert h.percentile(50) == pytest.approx(5.0, rel=0.02)
    assert h.percentile(95) == pytest.approx(100.0, rel=0.02)


def test_empty_histogram_is_nan():
    h = LatencyHistogram()
    assert math.isnan(h.percentile(50))
    assert h.count == 0


@pytest.mark.parametrize("p", [-0.1, 100.5])
def test_out_of_range_percentile_rejected(p):
    h = _filled([1.0])
    with pytest.raises(ValueError):
        h.percentile(p)


def test_non_finite_values_dropped():
    h = _filled([float("nan"), float("inf"), 3.0])
    assert h.count == 1
    assert h.dropped == 2
    assert h.percentile(100) == 3.0


def test_negative_values_clamped_to_zero():
    h = _filled([-4.0, 2.0])
    assert h.percentile(0) == 0.0


def test_summary_labels_and_order():
    h = _filled([5, 10, 15, 50, 100])
    labels = [label for label, _ in h.summary()]
    assert labels == ["min", "50th", "75th", "90th", "95th", "99th", "max"]
