"""
statistics.py

Per-sentence training statistics and training-time diagnostics.

- SentenceStatistics: relation distribution p(z_s | x, y) plus an optional confidence.
- EnsembleStatistics: statistics for one sentence from several classifiers;
  mean distribution and average KL divergence from the mean.
- TrainingStatistics
    * Maps sentence keys to EnsembleStatistics; can be merged across models.
    * Uncertainty under {high_kl_from_mean, low_average_confidence, random_uniform}.
    * Sorted and sampled key selection for active learning.
- confusion_matrix / y_score: label-set diagnostics for a set of Z labelings.

2026-02-09 - SD
"""

import logging

import numpy as np
import pandas as pd
from scipy.stats import entropy

from utils import precision_recall_f1

log = logging.getLogger(__name__)

HIGH_KL_FROM_MEAN = "high_kl_from_mean"
LOW_AVERAGE_CONFIDENCE = "low_average_confidence"
RANDOM_UNIFORM = "random_uniform"
SELECTION_CRITERIA = [HIGH_KL_FROM_MEAN, LOW_AVERAGE_CONFIDENCE, RANDOM_UNIFORM]


class SentenceStatistics:
    """
    Output of one classifier for one sentence.

    :param relation_distribution: dict {relation: probability}, sums to 1
    :param confidence: optional probability that the distribution is right
    """

    def __init__(self, relation_distribution, confidence=None):
        self.relation_distribution = dict(relation_distribution)
        self.confidence = confidence

    def __repr__(self):
        return (
            f"SentenceStatistics({self.relation_distribution}, "
            f"confidence={self.confidence})"
        )


class EnsembleStatistics:
    """
    Statistics for one sentence aggregated over several classifiers.
    """

    def __init__(self, statistics_for_classifiers=None):
        self.statistics_for_classifiers = list(statistics_for_classifiers or [])

    def add(self, stats):
        if isinstance(stats, EnsembleStatistics):
            self.statistics_for_classifiers.extend(stats.statistics_for_classifiers)
        else:
            self.statistics_for_classifiers.append(stats)

    def mean(self):
        """
        Average relation distribution and average confidence.

        :return: SentenceStatistics
        """
        total = {}
        confidences = []
        for stat in self.statistics_for_classifiers:
            if stat.confidence is not None:
                confidences.append(stat.confidence)
            assert abs(sum(stat.relation_distribution.values()) - 1.0) < 1e-5, (
                "Relation distribution does not sum to 1"
            )
            for relation, p in stat.relation_distribution.items():
                assert p >= 0.0
                total[relation] = total.get(relation, 0.0) + p

        n = len(self.statistics_for_classifiers)
        if n > 1:
            total = {relation: p / n for relation, p in total.items()}
        if n > 0 and abs(sum(total.values()) - 1.0) > 1e-5:
            raise ValueError("Mean relation distribution is not a distribution!")

        confidence = float(np.mean(confidences)) if confidences else None
        return SentenceStatistics(total, confidence)

    def average_kl_from_mean(self):
        """
        Average KL divergence of each classifier's distribution from the mean.
        """
        mean = self.mean().relation_distribution
        relations = sorted(mean)
        q = np.array([mean[r] for r in relations])
        kls = []
        for stat in self.statistics_for_classifiers:
            p = np.array([stat.relation_distribution.get(r, 0.0) for r in relations])
            kl = float(entropy(p, q))
            if -1e-12 < kl < 0.0:
                kl = 0.0
            kls.append(kl)
        value = float(np.mean(kls))
        if not np.isfinite(value) or value < 0.0:
            raise ValueError(f"Invalid average KL value: {value}")
        if value < 1e-10:
            value = 0.0
        return value


class TrainingStatistics:
    """
    Sentence key -> EnsembleStatistics, or undefined for models that produce none.

    :param impl: dict or None (undefined)
    """

    def __init__(self, impl=None):
        self.impl = impl

    @classmethod
    def empty(cls):
        return cls({})

    @classmethod
    def undefined(cls):
        return cls(None)

    @property
    def is_defined(self):
        return self.impl is not None

    def add(self, key, sentence_statistics):
        if self.impl is None:
            return
        self.impl.setdefault(key, EnsembleStatistics()).add(sentence_statistics)

    def sentence_keys(self):
        if self.impl is None:
            return None
        return set(self.impl)

    def merge(self, other):
        """
        :param other: TrainingStatistics
        :return: new TrainingStatistics holding the statistics of both
        """
        merged = {}
        for source in (self.impl, other.impl):
            if source is None:
                continue
            for key, stats in source.items():
                merged.setdefault(key, EnsembleStatistics()).add(stats)
        return TrainingStatistics(merged)

    def uncertainty(self, criterion):
        """
        Non-negative uncertainty weight per sentence key; higher is more uncertain.

        :param criterion: one of SELECTION_CRITERIA
        :return: dict {key: weight}
        """
        if criterion not in SELECTION_CRITERIA:
            raise ValueError(f"Unknown selection criterion: {criterion}")
        if self.impl is None:
            return {}

        weights = {}
        for key, stats in self.impl.items():
            if criterion == HIGH_KL_FROM_MEAN:
                weights[key] = stats.average_kl_from_mean()
            elif criterion == LOW_AVERAGE_CONFIDENCE:
                confidence = stats.mean().confidence
                if confidence is not None:
                    weights[key] = 1.0 - confidence
            else:
                weights[key] = 1.0
        return weights

    def select_weighted_keys(self, criterion):
        weights = self.uncertainty(criterion)
        return sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))

    def select_keys(self, criterion):
        """
        :return: sentence keys sorted by descending uncertainty
        """
        return [key for key, _ in self.select_weighted_keys(criterion)]

    def select_weighted_keys_with_sampling(self, criterion, num_samples, seed):
        """
        Draw keys without replacement with probability proportional to uncertainty.

        Zero-uncertainty keys are only returned once every weighted key is drawn.

        :param criterion: one of SELECTION_CRITERIA
        :param num_samples: number of keys to draw
        :param seed: random seed
        :return: list of (key, weight)
        """
        weights = self.uncertainty(criterion)
        rng = np.random.RandomState(seed)

        keys, values, zero_keys = [], [], []
        for key in sorted(weights):
            weight = weights[key]
            if not (weight >= 0 and np.isfinite(weight)):
                raise ValueError(f"Invalid weight: {weight}")
            if weight != 0.0:
                keys.append(key)
                values.append(weight)
            else:
                zero_keys.append(key)

        result = []
        total = float(sum(values))
        for i in range(1, num_samples + 1):
            if i % 1000 == 0:
                log.warning(f"sampled {i // 1000}k keys")
                total = float(sum(values))
            if keys:
                target = rng.random_sample() * total
                running = 0.0
                chosen = len(keys) - 1
                for j, weight in enumerate(values):
                    running += weight
                    if target <= running:
                        chosen = j
                        break
                result.append((keys.pop(chosen), values[chosen]))
                total -= values.pop(chosen)
            elif zero_keys:
                log.warning("No more uncertain samples left to draw from!")
                result.append((zero_keys.pop(0), 0.0))
            else:
                break
        return result

    def select_keys_with_sampling(self, criterion, num_samples, seed):
        return [
            key
            for key, _ in self.select_weighted_keys_with_sampling(
                criterion, num_samples, seed
            )
        ]

    def relation_predictions_for_key(self, key):
        if self.impl is None:
            raise ValueError("Training statistics is not defined")
        return self.impl[key].mean().relation_distribution

    def validate(self):
        """
        Sanity checks: every stored distribution sums to 1.
        """
        if self.impl is None:
            return
        for stats in self.impl.values():
            for component in stats.statistics_for_classifiers:
                assert abs(sum(component.relation_distribution.values()) - 1.0) < 1e-5
            assert abs(sum(stats.mean().relation_distribution.values()) - 1.0) < 1e-5

    def to_dataframe(self):
        """
        Mean distribution and confidence per sentence key as a pandas DataFrame.
        """
        rows = []
        for key, stats in (self.impl or {}).items():
            mean = stats.mean()
            row = {"key": key, "confidence": mean.confidence}
            row.update(mean.relation_distribution)
            rows.append(row)
        return pd.DataFrame(rows)

    def __len__(self):
        return 0 if self.impl is None else len(self.impl)


def confusion_matrix(name, z_labels, golds, z_label_index):
    """
    Gold-by-predicted confusion matrix over bag label sets.

    Correct labels count once on the diagonal; every wrong prediction
    splits one unit of credit across the missed gold labels.

    :param name: title for the log
    :param z_labels: list of integer Z label arrays, one per bag
    :param golds: list of gold relation-id sets, one per bag
    :param z_label_index: Index of Z label names
    :return: pandas DataFrame (rows gold, columns predicted)
    """
    n_labels = len(z_label_index)
    matrix = np.zeros((n_labels, n_labels))
    for labels, gold_set in zip(z_labels, golds):
        pred = set(int(z) for z in labels)
        gold = set(gold_set)
        for z in list(pred):
            if z in gold:
                matrix[z, z] += 1
                gold.discard(z)
                pred.discard(z)
        for z in pred:
            for g in gold:
                matrix[g, z] += 1.0 / len(gold)

    names = z_label_index.objects_list()
    frame = pd.DataFrame(matrix, index=names, columns=names)
    log.warning(f"Confusion matrix ({name}):\n{frame.round(1).to_string()}")
    return frame


def y_score(name, z_labels, golds, nil_index):
    """
    Label-level precision/recall/F1 and exact label-set accuracy.

    :param name: title for the log
    :param z_labels: list of integer Z label arrays, one per bag
    :param golds: list of gold relation-id sets, one per bag
    :param nil_index: id of UNRELATED in the Z label space
    :return: dict with precision, recall, f1, accuracy
    """
    label_correct = label_predicted = label_total = 0
    group_correct = 0
    for labels, gold in zip(z_labels, golds):
        pred = {int(z) for z in labels if z != nil_index}
        label_predicted += len(pred)
        label_total += len(gold)
        label_correct += len(pred & set(gold))
        if pred == set(gold):
            group_correct += 1

    p, r, f1 = precision_recall_f1(label_correct, label_predicted, label_total)
    accuracy = group_correct / len(golds) if len(golds) > 0 else 0.0
    log.warning(f"LABEL SCORE for {name}: P {p:.4f} R {r:.4f} F1 {f1:.4f}")
    log.warning(f"GROUP SCORE for {name}: A {accuracy:.4f}")
    return {"precision": p, "recall": r, "f1": f1, "accuracy": accuracy}

