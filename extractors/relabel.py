"""
relabel.py

Weak-supervision completion for bags with unknown relation labels.

Promotes the most likely (bag, unknown relation) pairs to positive until
a target fraction theta of all bag-relation pairs is positive, then marks
every remaining unknown pair negative.

Adapted from:
@inproceedings{min2013distant,
  title={Distant Supervision for Relation Extraction with an Incomplete Knowledge Base},
  author={Min, Bonan and Grishman, Ralph and Wan, Li and Wang, Chang and Gondek, David},
  booktitle={Proceedings of NAACL-HLT},
  year={2013}
}

2026-02-09 - SD
"""

import heapq
import logging

log = logging.getLogger(__name__)


def select_top_pairs(scored_pairs, budget):
    """
    Keep the `budget` highest-scoring pairs with a bounded min-heap.

    :param scored_pairs: iterable of (score, bag index, relation id)
    :param budget: maximum number of pairs to keep
    :return: list of (score, bag index, relation id), unordered
    """
    heap = []
    if budget <= 0:
        return heap
    for item in scored_pairs:
        if len(heap) < budget:
            heapq.heappush(heap, item)
        elif item > heap[0]:
            heapq.heapreplace(heap, item)
    return heap


def relabel_unknowns(dataset, percent_positive, y_log_probs):
    """
    Restore the original labels, then promote and demote unknown pairs in place.

    :param dataset: BagDataset with finalized labels
    :param percent_positive: target fraction theta of positive bag-relation pairs
    :param y_log_probs: callable(bag index, set of relation ids) -> {relation id: log P(y)}
    :return: number of promoted pairs
    """
    dataset.restore_labels()
    n_positive, n_negative, n_unknown = dataset.count_labels()
    log.warning(
        f"Before relabeling: {n_positive} positive, {n_negative} negative, "
        f"{n_unknown} unknown"
    )

    expected_positive = int(percent_positive * len(dataset) * len(dataset.label_index))
    number_to_change = expected_positive - n_positive
    log.warning(
        f"Relabeling parameters: {percent_positive} theta, {len(dataset)} groups, "
        f"{len(dataset.label_index)} labels"
    )

    selected = []
    if number_to_change > 0:
        log.warning(
            f"Target {expected_positive} positive, need to change {number_to_change} unknown"
        )

        def candidates():
            for i, bag in enumerate(dataset):
                unknown_not_positive = bag.unknown - bag.positive
                if not unknown_not_positive:
                    continue
                scores = y_log_probs(i, unknown_not_positive)
                for y in sorted(scores):
                    yield (float(scores[y]), i, y)

        selected = select_top_pairs(candidates(), number_to_change)
        for score, i, y in selected:
            log.debug(
                f"Relabel bag {i} as {dataset.label_index[y]}: log prob {score:.4f}"
            )
            dataset[i].positive.add(y)
            dataset[i].negative.discard(y)

        n_positive, n_negative, _ = dataset.count_labels()
        log.warning(
            f"After relabeling: {n_positive} positive, {n_negative} negative, "
            f"{len(selected)} changed"
        )
    else:
        log.warning(f"No relabeling: target of {expected_positive} reached")

    for bag in dataset:
        bag.negative |= bag.unknown - bag.positive

    n_positive, n_negative, _ = dataset.count_labels()
    log.warning(
        f"After marking unknowns negative: {n_positive} positive, {n_negative} negative"
    )
    return len(selected)
