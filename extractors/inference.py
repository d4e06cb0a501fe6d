"""
inference.py

Latent sentence-label (Z) inference under at-least-one semantics.

- Y features: summarize a bag's current Z labels for one relation
  ("none", "atleastonce", "unique", "atleast_{n}", "sigmoid", co-occurrence).
- YClassifier
    * Binary bag-level classifier for one relation, labels [relation, UNRELATED].
    * Either hand-set ("at least once") or trained on Y feature dicts.
- JointScorer: joint log score of a bag's labeling,
      sum_s log P(z_s | x_s) + sum_{y in pos} log P(y | f(z)) + sum_{y in neg} log P(~y | f(z))
- infer_z_labels: hill climbing, one globally best flip per scan, each sentence flips at most once.
- infer_z_labels_stable: one pass, per-sentence argmax committed immediately.

Sentences with a gold (fixed) label are scored with P = 0.8 for the gold label
and the rest split evenly across the other labels; they are never flipped.

Adapted from:
@inproceedings{surdeanu2012miml,
  title={Multi-instance Multi-label Learning for Relation Extraction},
  author={Surdeanu, Mihai and Tibshirani, Julie and Nallapati, Ramesh and Manning, Christopher D.},
  booktitle={Proceedings of EMNLP-CoNLL},
  year={2012}
}

2026-02-09 - SD
"""

import logging
import math

import numpy as np
from scipy.special import log_softmax

from classifiers.linear_classifier import LinearClassifier, feature_dicts_to_matrix
from data_handler import Index, UNRELATED
from extractors.exceptions import ConfigurationError, UnknownRelationError
from utils import log_normalize, uniform_distribution

log = logging.getLogger(__name__)

NONE_FEAT = "none"
ATLEASTONCE_FEAT = "atleastonce"
UNIQUE_FEAT = "unique"
SIGMOID_FEAT = "sigmoid"

BIG_WEIGHT = 10.0
FIXED_LABEL_PROB = 0.8


def cooccurrence_feature(src, dst):
    return f"co:s|{src}|d|{dst}|"


def initial_y_features(y_features):
    """
    Feature vocabulary of the hand-set "at least once" Y classifiers.

    :param y_features: configured Y feature classes
    :return: list of feature names
    """
    names = [NONE_FEAT]
    if "atleast_once" in y_features:
        names.append(ATLEASTONCE_FEAT)
    if "unique" in y_features:
        names.append(UNIQUE_FEAT)
    if "sigmoid" in y_features:
        names.append(SIGMOID_FEAT)
    return names


def extract_y_features(y_label, z_labels, z_label_index, y_features):
    """
    Summarize a bag's Z labels with respect to one relation.

    Only "none" fires when no sentence carries y_label.

    :param y_label: relation name
    :param z_labels: integer Z label per sentence
    :param z_label_index: Index of Z label names
    :param y_features: configured Y feature classes
    :return: dict {feature name: value}
    """
    count = 0
    others = []
    for z in z_labels:
        name = z_label_index[z]
        if name == y_label:
            count += 1
        elif name != UNRELATED:
            others.append(name)

    if count == 0:
        return {NONE_FEAT: 1.0}

    features = {}
    if "atleast_once" in y_features:
        features[ATLEASTONCE_FEAT] = 1.0
    if "cooc" in y_features:
        for other in others:
            features[cooccurrence_feature(y_label, other)] = 1.0
    if "unique" in y_features and len(others) == 0:
        features[UNIQUE_FEAT] = 1.0
    if "atleast_n" in y_features:
        features[f"atleast_{count}"] = 1.0
    if "sigmoid" in y_features:
        fraction = count / len(z_labels)
        features[SIGMOID_FEAT] = 1.0 / (1.0 + math.exp(-10.0 * (fraction - 1.0 / 3.0)))
    return features


class YClassifier:
    """
    Binary classifier P(y | Z features) for a single relation.

    Column 0 of the weights is the relation, column 1 is UNRELATED.
    """

    POSITIVE = 0
    NEGATIVE = 1

    def __init__(self, relation, feature_index, classifier):
        self.relation = relation
        self.feature_index = feature_index
        self.classifier = classifier
        self.labels = [relation, UNRELATED]

    @classmethod
    def at_least_once(cls, relation, y_features):
        """
        Hand-set classifier that prefers the relation whenever at least one sentence carries it.

        :param relation: relation name
        :param y_features: configured Y feature classes
        :return: YClassifier
        """
        feature_index = Index(initial_y_features(y_features))
        weights = np.zeros((len(feature_index), 2))
        if ATLEASTONCE_FEAT in feature_index:
            weights[feature_index.index_of(ATLEASTONCE_FEAT), cls.POSITIVE] = BIG_WEIGHT
        if SIGMOID_FEAT in feature_index:
            weights[feature_index.index_of(SIGMOID_FEAT), cls.POSITIVE] = BIG_WEIGHT
        weights[feature_index.index_of(NONE_FEAT), cls.NEGATIVE] = BIG_WEIGHT
        log.debug(f"Created the classifier for Y={relation} with {len(feature_index)} features")
        return cls(relation, feature_index, LinearClassifier.from_weights(weights))

    @classmethod
    def train(cls, relation, datums, sigma=1.0, tol=1e-4):
        """
        Fit a classifier on (features, is_positive) pairs.

        :param relation: relation name
        :param datums: list of (feature dict, bool) pairs
        :param sigma: prior standard deviation
        :param tol: optimizer tolerance
        :return: YClassifier
        """
        if len(datums) == 0:
            raise ConfigurationError(f"Empty Y training set for relation {relation}")

        feature_index = Index()
        for features, _ in datums:
            feature_index.add_all(features.keys())
        X = feature_dicts_to_matrix([features for features, _ in datums], feature_index)
        y = np.array(
            [cls.POSITIVE if positive else cls.NEGATIVE for _, positive in datums]
        )
        if np.all(y == y[0]):
            log.debug(f"Y training set for {relation} has a single label value {y[0]}")

        classifier = LinearClassifier(sigma=sigma, tol=tol).fit(X, y, n_labels=2)
        return cls(relation, feature_index, classifier)

    def scores_of(self, features):
        scores = np.zeros(2)
        for name, value in features.items():
            idx = self.feature_index.index_of(name)
            if idx >= 0:
                scores += value * self.classifier.coef_[idx]
        return scores

    def log_probability_of(self, features):
        """
        :param features: dict {feature name: value}
        :return: array [log P(relation), log P(UNRELATED)]
        """
        return log_softmax(self.scores_of(features))

    def probability_of(self, features):
        return np.exp(self.log_probability_of(features))


class JointScorer:
    """
    Joint log score of a bag's Z labeling given the current Y classifiers.

    Relation ids are shared between the Y and Z label spaces; the Z space has one
    extra UNRELATED label.

    :param y_classifiers: dict {relation name: YClassifier}
    :param z_label_index: Index of Z label names
    :param y_features: configured Y feature classes
    """

    def __init__(self, y_classifiers, z_label_index, y_features):
        self.y_classifiers = y_classifiers
        self.z_label_index = z_label_index
        self.y_features = y_features
        self.nil_index = z_label_index.index_of(UNRELATED)
        if self.nil_index < 0:
            raise UnknownRelationError(UNRELATED)

    def y_log_probs(self, y, z_labels):
        """
        :param y: relation id
        :param z_labels: integer Z label per sentence
        :return: array [log P(y), log P(~y)]
        """
        name = self.z_label_index[y]
        classifier = self.y_classifiers.get(name)
        if classifier is None:
            raise UnknownRelationError(name)
        features = extract_y_features(name, z_labels, self.z_label_index, self.y_features)
        return classifier.log_probability_of(features)

    def y_score(self, z_labels, positive, negative):
        score = 0.0
        for y in sorted(positive):
            score += self.y_log_probs(y, z_labels)[YClassifier.POSITIVE]
        for y in sorted(negative):
            score += self.y_log_probs(y, z_labels)[YClassifier.NEGATIVE]
        return score

    def candidate_scores(self, s, z_log_probs, z_labels, positive, negative):
        """
        Score every label for sentence s with all other labels held fixed.

        :return: array of unnormalized joint log scores, one per Z label
        """
        old_label = z_labels[s]
        n_labels = z_log_probs.shape[1]
        scores = np.empty(n_labels)
        for candidate in range(n_labels):
            z_labels[s] = candidate
            scores[candidate] = z_log_probs[s, candidate] + self.y_score(
                z_labels, positive, negative
            )
        z_labels[s] = old_label
        return scores


def fixed_label_ids(bag, z_label_index):
    """
    Gold Z label ids for a bag's sentences, -1 where unannotated.
    """
    fixed = np.full(len(bag), -1, dtype=np.int64)
    for s, label in enumerate(bag.fixed_labels):
        if label is None:
            continue
        idx = z_label_index.index_of(label)
        if idx < 0:
            raise UnknownRelationError(label)
        fixed[s] = idx
    return fixed


def compute_z_log_probs(log_probs, fixed):
    """
    Override classifier log probabilities for sentences with a gold label.

    :param log_probs: array (n_sentences, n_labels) of log P(z | x)
    :param fixed: gold label per sentence, -1 where unannotated
    :return: new array with gold rows set to log 0.8 / log(0.2 / (n_labels - 1))
    """
    z_log_probs = np.array(log_probs, dtype=np.float64)
    n_labels = z_log_probs.shape[1]
    for s in np.flatnonzero(fixed >= 0):
        z_log_probs[s, :] = math.log((1.0 - FIXED_LABEL_PROB) / (n_labels - 1))
        z_log_probs[s, fixed[s]] = math.log(FIXED_LABEL_PROB)
    return z_log_probs


def joint_score(z_log_probs, z_labels, positive, negative, scorer):
    """
    Full joint log score of a labeling.
    """
    local = float(np.sum(z_log_probs[np.arange(len(z_labels)), z_labels]))
    return local + scorer.y_score(z_labels, positive, negative)


def _score_fixed(z_log_probs, z_labels, fixed, positive, negative, scorer, joint, max_log_prob):
    for s in np.flatnonzero(fixed >= 0):
        z_labels[s] = fixed[s]
    for s in np.flatnonzero(fixed >= 0):
        scores = scorer.candidate_scores(s, z_log_probs, z_labels, positive, negative)
        joint[s] = scores
        max_log_prob[s] = scores[fixed[s]]


def infer_z_labels(z_log_probs, z_labels, fixed, positive, negative, scorer, on_flip=None):
    """
    Hill-climbing inference, updating z_labels in place.

    Each scan scores every not-yet-flipped sentence against all labels, then commits
    the single best improving flip over the whole bag. Stops when no flip improves
    the joint score; every sentence flips at most once.

    :param z_log_probs: array (n_sentences, n_labels) from compute_z_log_probs
    :param z_labels: integer array of current Z labels, mutated in place
    :param fixed: gold label per sentence, -1 where unannotated
    :param positive: set of relation ids that hold for the bag
    :param negative: set of relation ids that do not hold for the bag
    :param scorer: JointScorer
    :param on_flip: optional callback(sentence, new_label) after each committed flip
    :return: (max_log_prob per sentence, normalized joint log probs, number of flips)
    """
    n = len(z_labels)
    assert z_log_probs.shape[0] == n == len(fixed)

    joint = np.zeros_like(z_log_probs)
    max_log_prob = np.full(n, -np.inf)
    _score_fixed(z_log_probs, z_labels, fixed, positive, negative, scorer, joint, max_log_prob)

    flipped = set()
    n_flips = 0
    while True:
        best_score = -np.inf
        best_sentence = -1
        best_label = -1

        for s in range(n):
            if s in flipped or fixed[s] >= 0:
                continue
            scores = scorer.candidate_scores(s, z_log_probs, z_labels, positive, negative)
            joint[s] = scores
            label = int(np.argmax(scores))
            max_log_prob[s] = scores[label]

            if (
                label != z_labels[s]
                and not uniform_distribution(scores)
                and scores[label] > best_score
            ):
                best_score = scores[label]
                best_sentence = s
                best_label = label

        if best_label == -1:
            break

        z_labels[best_sentence] = best_label
        flipped.add(best_sentence)
        n_flips += 1
        if on_flip is not None:
            on_flip(best_sentence, best_label)

    return max_log_prob, log_normalize(joint), n_flips


def infer_z_labels_stable(z_log_probs, z_labels, fixed, positive, negative, scorer):
    """
    Single-pass inference, updating z_labels in place.

    Each sentence takes its best label given the current labels of the others,
    committed immediately.

    :return: (max_log_prob per sentence, normalized joint log probs, number of flips)
    """
    n = len(z_labels)
    assert z_log_probs.shape[0] == n == len(fixed)

    joint = np.zeros_like(z_log_probs)
    max_log_prob = np.full(n, -np.inf)
    _score_fixed(z_log_probs, z_labels, fixed, positive, negative, scorer, joint, max_log_prob)

    n_flips = 0
    for s in range(n):
        if fixed[s] >= 0:
            continue
        scores = scorer.candidate_scores(s, z_log_probs, z_labels, positive, negative)
        joint[s] = scores
        label = int(np.argmax(scores))
        max_log_prob[s] = scores[label]
        if label != z_labels[s]:
            z_labels[s] = label
            n_flips += 1

    return max_log_prob, log_normalize(joint), n_flips


def predict_z_labels(log_probs):
    return np.argmax(log_probs, axis=1).astype(np.int64)
