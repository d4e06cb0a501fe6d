"""
utils.py

Utility functions for fold partitioning, seeded shuffling, log-space
arithmetic, and data loading in relation extraction experiments.

2026-02-09 - SD
"""

import logging

import numpy as np
from scipy.special import logsumexp

from data_handler import load_bags

log = logging.getLogger("utils")


def fold_start(fold, size, n_folds):
    """
    First index of a fold's test range.

    :param fold: fold number in [0, n_folds)
    :param size: number of items being partitioned
    :param n_folds: number of folds
    :return: start index (inclusive)
    """
    fold_size = size // n_folds
    assert fold_size > 0, f"Cannot split {size} items into {n_folds} folds"
    start = fold * fold_size
    assert start < size
    return start


def fold_end(fold, size, n_folds):
    """
    End index of a fold's test range; the last fold absorbs the remainder.

    :param fold: fold number in [0, n_folds)
    :param size: number of items being partitioned
    :param n_folds: number of folds
    :return: end index (exclusive)
    """
    if fold == n_folds - 1:
        return size
    fold_size = size // n_folds
    assert fold_size > 0, f"Cannot split {size} items into {n_folds} folds"
    end = (fold + 1) * fold_size
    assert end <= size
    return end


def fold_range(fold, size, n_folds):
    return fold_start(fold, size, n_folds), fold_end(fold, size, n_folds)


def make_train_array_for_fold(items, fold, n_folds):
    """
    Everything outside the fold's test range, in order.

    :param items: list (or array) indexed like the partitioned data
    :param fold: fold number
    :param n_folds: number of folds
    :return: list of training items for this fold
    """
    start, end = fold_range(fold, len(items), n_folds)
    return list(items[:start]) + list(items[end:])


def make_test_array_for_fold(items, fold, n_folds):
    start, end = fold_range(fold, len(items), n_folds)
    return list(items[start:end])


def randomize_group(arrays, seed, squash=False):
    """
    Shuffle several parallel per-sentence arrays in place with the same permutation.

    :param arrays: list of mutable sequences (lists or numpy arrays) of equal length
    :param seed: random seed for this shuffle
    :param squash: if True, leave everything in place
    :return: array mapping current positions to original positions
    """
    n = len(arrays[0])
    for a in arrays:
        assert len(a) == n, "Parallel arrays must have the same length"

    original_index = np.arange(n)
    if squash:
        return original_index

    rng = np.random.RandomState(seed)
    for j in range(n - 1, 0, -1):
        r = rng.randint(j)
        for a in arrays:
            a[r], a[j] = a[j], a[r]
        original_index[r], original_index[j] = original_index[j], original_index[r]
    return original_index


def flatten(xss):
    """
    Flatten a nested list or array-of-arrays into a single list.

    :param xss: iterable of iterables
    :return: flat list containing all elements
    """
    return [x for xs in xss for x in xs]


def log_normalize(log_scores):
    """
    Normalize unnormalized log scores so that they exponentiate to a distribution.

    :param log_scores: numpy array of log scores (last axis is normalized)
    :return: numpy array of log probabilities
    """
    return log_scores - logsumexp(log_scores, axis=-1, keepdims=True)


def uniform_distribution(scores):
    """
    True if all (at least two) entries are identical.

    :param scores: 1D numpy array
    """
    if len(scores) < 2:
        return False
    return bool(np.all(scores == scores[0]))


def sort_predictions(scores, labels):
    """
    Sort labels by descending score, ties broken by label name.

    :param scores: 1D array of scores aligned with labels
    :param labels: sequence of label names
    :return: list of (label, score) tuples
    """
    pairs = [(labels[i], float(scores[i])) for i in range(len(labels))]
    return sorted(pairs, key=lambda p: (-p[1], p[0]))


def precision_recall_f1(correct, predicted, total):
    """
    :param correct: number of correct predictions
    :param predicted: number of predictions
    :param total: number of gold items
    :return: (precision, recall, f1); undefined ratios are reported as 0
    """
    p = correct / predicted if predicted > 0 else 0.0
    r = correct / total if total > 0 else 0.0
    f1 = 2 * p * r / (p + r) if p != 0 and r != 0 else 0.0
    return p, r, f1


def load_data(cfg):
    """
    Load the training bags named in the config and apply feature thresholding.

    :param cfg: Hydra config object containing a datapack section
    :return: BagDataset
    """
    dataset = load_bags(cfg.datapack["train_path"])
    threshold = cfg.datapack.get("feature_count_threshold", 0)
    if threshold > 1:
        dataset.apply_feature_count_threshold(threshold)
    if cfg.datapack.get("shuffle", False):
        dataset.randomize(cfg.datapack["random_seed"])
    dataset.validate()
    return dataset


def load_test_data(cfg, feature_index, label_index):
    """
    Load held-out bags against a frozen feature index.

    :param cfg: Hydra config object containing a datapack section
    :param feature_index: feature Index of the trained model
    :param label_index: relation Index of the trained model
    :return: BagDataset
    """
    feature_index.lock()
    return load_bags(cfg.datapack["test_path"], feature_index, label_index)
