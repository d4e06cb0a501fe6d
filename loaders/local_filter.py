"""
local_filter.py

Bag eligibility policies used when building the local (pre-EM)
sentence classifiers.

- AllFilter: every bag.
- SingleFilter: bags with at most one positive relation.
- RedundancyFilter: bags with at most one positive relation and more than one sentence.
- LargeFilter: bags with at most `threshold` sentences; also filters the
  dataset as a whole before training.

2026-02-09 - SD
"""

import logging

log = logging.getLogger("local_filter")

LEGAL_FILTERS = ["all", "single", "redundancy", "large"]


class LocalFilter:
    """
    Decide which bags contribute examples to the local Z classifiers.
    """

    name = None

    def filter_z(self, bag):
        """
        :param bag: Bag
        :return: True if the bag contributes to the local Z training data
        """
        raise NotImplementedError

    def filter_y(self, bag):
        """
        :param bag: Bag
        :return: True if the bag is kept in the dataset at all
        """
        return True

    def __repr__(self):
        return f"{type(self).__name__}()"


class AllFilter(LocalFilter):
    name = "all"

    def filter_z(self, bag):
        return True


class SingleFilter(LocalFilter):
    name = "single"

    def filter_z(self, bag):
        return len(bag.positive) <= 1


class RedundancyFilter(LocalFilter):
    name = "redundancy"

    def filter_z(self, bag):
        return len(bag.positive) <= 1 and len(bag) > 1


class LargeFilter(LocalFilter):
    name = "large"

    def __init__(self, threshold):
        self.threshold = threshold

    def filter_z(self, bag):
        return len(bag) <= self.threshold

    def filter_y(self, bag):
        return len(bag) <= self.threshold

    def __repr__(self):
        return f"LargeFilter(threshold={self.threshold})"


def make_local_filter(name, threshold=None):
    """
    Build a LocalFilter by name.

    :param name: one of LEGAL_FILTERS
    :param threshold: maximum bag size for the "large" filter
    :return: LocalFilter instance
    """
    assert name in LEGAL_FILTERS, f"Local filter must be one of {LEGAL_FILTERS}"

    if name == "all":
        local_filter = AllFilter()
    elif name == "single":
        local_filter = SingleFilter()
    elif name == "redundancy":
        local_filter = RedundancyFilter()
    else:
        assert threshold is not None and threshold > 0, (
            "The large filter needs a positive threshold"
        )
        local_filter = LargeFilter(threshold)

    log.warning(f"The LOCAL FILTER is set to: {local_filter}")
    return local_filter
