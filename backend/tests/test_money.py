"""Integer-cent allocation and discount helpers."""

import pytest

from cafepos.money import allocate_proportionally, clamp_discount, percentage_of


def test_allocation_matches_exact_proportions():
    assert allocate_proportionally([10000, 30000], 40000) == [10000, 30000]


def test_allocation_distributes_leftover_cents_by_largest_remainder():
    assert allocate_proportionally([100, 100, 100], 100) == [34, 33, 33]
    # 1/6, 2/6, 3/6 of 101 -> 16.83, 33.67, 50.5
    assert allocate_proportionally([1, 2, 3], 101) == [17, 34, 50]


@pytest.mark.parametrize(
    "weights,total",
    [
        ([333, 333, 334], 999),
        ([1, 1, 1, 1, 1, 1, 1], 10),
        ([2500, 1250, 99], 3700),
        ([7], 123),
    ],
)
def test_allocation_always_sums_to_total(weights, total):
    shares = allocate_proportionally(weights, total)
    assert sum(shares) == total
    assert all(share >= 0 for share in shares)


def test_allocation_with_zero_weights_splits_evenly():
    assert allocate_proportionally([0, 0], 5) == [3, 2]


def test_allocation_of_nothing():
    assert allocate_proportionally([], 100) == []
    assert allocate_proportionally([100, 300], 0) == [0, 0]


def test_allocation_rejects_negative_input():
    with pytest.raises(ValueError):
        allocate_proportionally([100, -1], 50)
    with pytest.raises(ValueError):
        allocate_proportionally([100], -50)


def test_percentage_rounds_half_up():
    assert percentage_of(1000, 10) == 100
    assert percentage_of(1005, 10) == 101  # 100.5
    assert percentage_of(333, "12.5") == 42  # 41.625


def test_clamp_discount():
    assert clamp_discount(500, 200) == 200
    assert clamp_discount(500, 900) == 500
    assert clamp_discount(500, -10) == 0
