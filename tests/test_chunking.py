import pytest

from transitdemand.chunking import (
    hash_string,
    merge_to_finalize,
    merge_undersized,
    normalize_group_sizes,
    split_into_groups,
)
from transitdemand.config import PopulationChunkingConfig

CFG = PopulationChunkingConfig()


def test_hash_matches_31_multiplier_rolling_hash():
    assert hash_string("") == 0
    assert hash_string("a") == 97
    assert hash_string("abc") == 96354


def test_hash_wraps_to_signed_32_bit():
    value = hash_string("residence-1234567-job-7654321")
    assert 0 <= value <= 2 ** 31


def test_thousand_splits_into_bounded_groups():
    groups = split_into_groups(1000, "a", "b", CFG)
    assert len(groups) >= 3
    assert sum(groups) == 1000
    assert all(CFG.min_size <= g <= CFG.max_size for g in groups)


@pytest.mark.parametrize("size", [31, 159, 381, 761, 999, 2500, 12345])
def test_groups_always_sum_and_respect_bounds(size):
    groups = split_into_groups(size, "home-3", "work-9", CFG)
    assert sum(groups) == size
    assert all(g <= CFG.max_size for g in groups)
    if len(groups) > 1:
        assert all(g >= CFG.minimum_finalize_size for g in groups)


def test_split_is_deterministic():
    assert split_into_groups(1001, "x", "y", CFG) == split_into_groups(1001, "x", "y", CFG)


def test_remainder_placement_depends_on_endpoints():
    # 1003 / 6 groups leaves a remainder of 1, placed by the endpoint hash
    a = split_into_groups(1003, "1", "2", CFG)
    b = split_into_groups(1003, "1", "3", CFG)
    assert sorted(a) == sorted(b)
    assert sum(a) == 1003


def test_small_and_empty_sizes():
    assert split_into_groups(15, "a", "b", CFG) == [15]
    assert split_into_groups(20, "a", "b", CFG) == [20]
    assert split_into_groups(0, "a", "b", CFG) == []


def test_merge_undersized_folds_into_neighbour():
    assert merge_undersized([5, 100, 10], 20) == [115]
    assert merge_undersized([100, 10], 20) == [110]


def test_merge_to_finalize_leaves_no_short_group():
    assert merge_to_finalize([25, 100], 30) == [125]
    assert merge_to_finalize([10, 10, 50], 30) == [70]
    assert merge_to_finalize([12, 12], 30) == [24]


def test_normalize_is_idempotent():
    once = normalize_group_sizes([400, 25, 100], CFG)
    assert normalize_group_sizes(once, CFG) == once
    assert sum(once) == 525


def test_compliant_sizes_keep_their_order():
    assert normalize_group_sizes([200, 100], CFG) == [200, 100]
    assert merge_to_finalize([380, 30, 160], CFG.minimum_finalize_size) == [380, 30, 160]
