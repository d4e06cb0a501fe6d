import pytest

from data_handler import Bag
from loaders.local_filter import (
    AllFilter,
    LargeFilter,
    RedundancyFilter,
    SingleFilter,
    make_local_filter,
)


def bag(n_sentences, positive):
    return Bag(("e", "v"), [[0]] * n_sentences, positive=positive)


def test_make_local_filter():
    assert isinstance(make_local_filter("all"), AllFilter)
    assert isinstance(make_local_filter("single"), SingleFilter)
    assert isinstance(make_local_filter("redundancy"), RedundancyFilter)
    large = make_local_filter("large", threshold=3)
    assert isinstance(large, LargeFilter) and large.threshold == 3


def test_unknown_filter():
    with pytest.raises(AssertionError):
        make_local_filter("bogus")


def test_single_filter():
    f = SingleFilter()
    assert f.filter_z(bag(1, {0}))
    assert not f.filter_z(bag(1, {0, 1}))
    assert f.filter_y(bag(1, {0, 1}))


def test_redundancy_filter():
    f = RedundancyFilter()
    assert not f.filter_z(bag(1, {0}))
    assert f.filter_z(bag(2, {0}))
    assert not f.filter_z(bag(2, {0, 1}))


def test_large_filter():
    f = LargeFilter(2)
    assert f.filter_z(bag(2, {0}))
    assert not f.filter_z(bag(3, {0}))
    assert not f.filter_y(bag(3, {0}))
