"""
joint_bayes.py

Joint Bayes (MIML-RE) relation extractor: cross-validated sentence-level
Z classifiers and bag-level Y classifiers trained jointly with hard EM.

- Initialization
    * One local multi-class Z classifier per fold, trained on the other folds
      (optionally loaded from a cached initial model).
    * Hand-set "at least once" Y classifiers for every relation.
- EM
    * E-step: optional relabeling of unknown pairs, then per-bag latent label
      inference on each fold's held-out bags with that fold's Z classifier.
    * Convergence when an epoch flips no label.
    * M-step: retrain Z classifiers per fold and Y classifiers per relation,
      optionally a single merged Z classifier; checkpoint the epoch's model.
- Classification
    * Local Z distribution by weighted vote over folds (or the single model).
    * Relation scores as P(y | z*), noisy-or of local scores, or threshold-then-noisy-or,
      each with the index of the most confident supporting sentence.

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
import os
import threading
from contextlib import contextmanager
from dataclasses import replace

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from classifiers.linear_classifier import LinearClassifier, rows_to_matrix
from data_handler import Bag, Index, UNRELATED
from extractors.config import JointBayesConfig, OUTPUT_DISTRIBUTIONS
from extractors.exceptions import (
    ConfigurationError,
    MIMLREError,
    TrainingError,
    UnknownRelationError,
)
from extractors.inference import (
    JointScorer,
    YClassifier,
    compute_z_log_probs,
    cooccurrence_feature,
    extract_y_features,
    fixed_label_ids,
    infer_z_labels,
    infer_z_labels_stable,
    predict_z_labels,
)
from extractors.relabel import relabel_unknowns
from extractors.serialization import (
    load_initial_models,
    load_model,
    save_initial_models,
    save_model,
)
from extractors.statistics import (
    SentenceStatistics,
    TrainingStatistics,
    confusion_matrix,
    y_score,
)
from loaders.local_filter import LargeFilter, make_local_filter
from utils import (
    flatten,
    fold_range,
    make_test_array_for_fold,
    make_train_array_for_fold,
    precision_recall_f1,
    randomize_group,
    sort_predictions,
)

log = logging.getLogger(__name__)


class TrainingState:
    INITIALIZING = "initializing"
    E_STEP = "e_step"
    M_STEP = "m_step"
    CONVERGED = "converged"
    MAX_EPOCHS_REACHED = "max_epochs_reached"


@contextmanager
def worker_errors(message, epoch=None, fold=None, relation=None):
    """
    Re-raise any failure inside a worker as a TrainingError naming where it happened.
    """
    try:
        yield
    except MIMLREError:
        raise
    except Exception as e:
        raise TrainingError(
            f"{message}: {type(e).__name__}: {e}", epoch=epoch, fold=fold, relation=relation
        ) from e


def make_epoch_path(model_path, epoch):
    """
    Checkpoint path for an epoch: model.bin -> model_EPOCH3.bin
    """
    root, ext = os.path.splitext(model_path)
    return f"{root}_EPOCH{epoch}{ext}"


def make_local_data(bags, local_filter, nil_index):
    """
    Flatten bags into weighted sentence examples for a local Z classifier.

    A bag with positive labels yields one example per sentence per positive label,
    weighted 1 / |positive|. Any other bag yields one UNRELATED example per sentence,
    whether or not it has negative labels. Bags rejected by the filter yield nothing.

    :param bags: list of Bag
    :param local_filter: LocalFilter
    :param nil_index: Z label id of UNRELATED
    :return: (rows, labels, weights, n_positive)
    """
    rows, labels, weights = [], [], []
    n_positive = 0
    for bag in bags:
        if not local_filter.filter_z(bag):
            continue
        if bag.positive:
            bag_labels = sorted(bag.positive)
        else:
            bag_labels = [nil_index]
        weight = 1.0 / len(bag_labels)
        for label in bag_labels:
            for row in bag.sentences:
                rows.append(row)
                labels.append(label)
                weights.append(weight)
                if label != nil_index:
                    n_positive += 1
    return rows, np.array(labels, dtype=np.int64), np.array(weights), n_positive


class JointBayesRelationExtractor:
    """
    MIML-RE relation extractor.

    :param config: JointBayesConfig
    :param only_local: stop after initialization (a local, Mintz++-style model)
    """

    def __init__(self, config=None, only_local=False):
        self.config = config if config is not None else JointBayesConfig()
        self.only_local = only_local
        self.local_filter = make_local_filter(
            self.config.local_filter, self.config.large_filter_threshold
        )

        self.feature_index = None
        self.y_label_index = None
        self.z_label_index = None
        self.z_classifiers = None
        self.z_single_classifier = None
        self.y_classifiers = None
        self.known_dependencies = set()

        self.z_labels = None
        self.state = TrainingState.INITIALIZING
        self.epochs_run = 0
        self.statistics = TrainingStatistics.undefined()

        self._lock = threading.Lock()
        self._z_updates = 0

        log.warning(f"y features: {' | '.join(self.config.y_features)}")

    @property
    def n_folds(self):
        if self.z_classifiers is not None:
            return len(self.z_classifiers)
        return self.config.folds

    @property
    def nil_index(self):
        idx = self.z_label_index.index_of(UNRELATED)
        if idx < 0:
            raise UnknownRelationError(UNRELATED)
        return idx

    def _parallel(self, tasks):
        return Parallel(n_jobs=self.config.n_jobs, prefer="threads")(tasks)

    def _make_z_classifier(self, seed_offset=0):
        return LinearClassifier(
            sigma=self.config.z_sigma,
            tol=self.config.tol,
            minimizer=self.config.z_minimizer,
            sgd_passes=self.config.sgd_passes,
            sgd_batch_size=self.config.sgd_batch_size,
            random_state=self.config.random_seed + seed_offset,
        )

    def _matrix(self, rows):
        return rows_to_matrix(rows, len(self.feature_index))

    def _fold_of(self, i, n):
        for fold in range(self.n_folds):
            start, end = fold_range(fold, n, self.n_folds)
            if start <= i < end:
                return fold
        raise IndexError(f"Bag {i} is outside of all folds")

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _train_local_z_classifier(self, dataset, fold):
        with worker_errors("Local Z classifier initialization failed", fold=fold):
            log.warning(f"Constructing dataset for the local model in fold #{fold}...")
            train_bags = make_train_array_for_fold(dataset.bags, fold, self.n_folds)
            test_bags = make_test_array_for_fold(dataset.bags, fold, self.n_folds)

            nil = self.nil_index
            rows, labels, weights, n_positive = make_local_data(
                train_bags, self.local_filter, nil
            )
            log.warning(
                f"Fold #{fold}: Constructed a dataset with {len(rows)} datums, "
                f"out of which {n_positive} are positive."
            )
            if n_positive == 0:
                raise ConfigurationError(
                    f"Fold #{fold}: cannot handle a dataset with 0 positive examples"
                )

            classifier = self._make_z_classifier(fold).fit(
                self._matrix(rows),
                labels,
                sample_weight=weights,
                n_labels=len(self.z_label_index),
            )

            total = predicted = correct = 0
            for bag in test_bags:
                pred = set()
                if len(bag) > 0:
                    scores = classifier.decision_function(self._matrix(bag.sentences))
                    pred = {int(z) for z in np.argmax(scores, axis=1) if z != nil}
                total += len(bag.positive)
                predicted += len(pred)
                correct += len(pred & bag.positive)
            p, r, f1 = precision_recall_f1(correct, predicted, total)
            log.warning(
                f"Fold #{fold}: Training score on the hierarchical dataset: "
                f"P {p:.4f} R {r:.4f} F1 {f1:.4f}"
            )

            with self._lock:
                self.z_classifiers[fold] = classifier

    def initialize_z_classifiers_locally(self, dataset):
        self.z_classifiers = [None] * self.config.folds
        self._parallel(
            delayed(self._train_local_z_classifier)(dataset, fold)
            for fold in range(self.config.folds)
        )
        return self.z_classifiers

    def initialize_y_classifiers(self):
        self.y_classifiers = {
            relation: YClassifier.at_least_once(relation, self.config.y_features)
            for relation in self.y_label_index
        }
        return self.y_classifiers

    def _load_compatible_initial_models(self, dataset):
        path = self.config.initial_model_path
        if path is None:
            log.warning("Cannot load initial model: no initial model path")
            return False
        if not os.path.exists(path):
            log.warning(f"Cannot load initial model: model does not exist at {path}")
            return False

        models = load_initial_models(path)
        feature_index = models["feature_index"]
        if len(dataset.feature_index) > len(feature_index):
            log.warning("Loaded an initial model with fewer features than the dataset! Ignoring...")
            return False
        if any(feature_index[i] != name for i, name in enumerate(dataset.feature_index)):
            log.warning("Loaded an initial model with a different feature index! Ignoring...")
            return False
        if models["y_label_index"] != dataset.label_index:
            log.warning("Loaded an initial model with different relations! Ignoring...")
            return False

        self.feature_index = feature_index
        self.z_label_index = models["z_label_index"]
        self.y_label_index = models["y_label_index"]
        self.z_classifiers = models["z_classifiers"]
        self.y_classifiers = models["y_classifiers"]
        return True

    def initialize(self, dataset):
        """
        Build (or load) the per-fold local Z classifiers and the at-least-once Y classifiers.
        """
        if UNRELATED in dataset.label_index:
            raise ConfigurationError(f"{UNRELATED} is reserved and cannot be a relation")

        loaded = False
        if self.config.load_initial_model:
            loaded = self._load_compatible_initial_models(dataset)

        if not loaded:
            self.feature_index = dataset.feature_index
            self.y_label_index = dataset.label_index
            self.z_label_index = Index(self.y_label_index)
            self.z_label_index.add(UNRELATED)

            self.initialize_z_classifiers_locally(dataset)
            self.initialize_y_classifiers()

            if self.config.initial_model_path is not None:
                try:
                    save_initial_models(
                        self.config.initial_model_path,
                        self.feature_index,
                        self.z_label_index,
                        self.y_label_index,
                        self.z_classifiers,
                        self.y_classifiers,
                    )
                except OSError as e:
                    log.error(f"Could not save initial model: {e}")

        log.warning(
            f"Created {len(self.z_classifiers)} Z classifiers with {len(self.z_label_index)} "
            f"labels and {len(self.feature_index)} features."
        )

    def detect_dependency_y_features(self, dataset):
        """
        Record every ordered pair of distinct relations that are positive for the same bag.
        """
        self.known_dependencies = set()
        for bag in dataset:
            for src in bag.positive:
                for dst in bag.positive:
                    if src == dst:
                        continue
                    feature = cooccurrence_feature(
                        dataset.label_index[src], dataset.label_index[dst]
                    )
                    log.debug(f"FOUND COOC: {feature}")
                    self.known_dependencies.add(feature)
        return self.known_dependencies

    def initialize_z_labels(self, dataset):
        """
        Start every sentence at the prediction of its fold's local classifier.
        """
        n = len(dataset)
        z_labels = [None] * n
        for fold in range(self.n_folds):
            classifier = self.z_classifiers[fold]
            assert classifier is not None, f"Missing Z classifier for fold {fold}"
            start, end = fold_range(fold, n, self.n_folds)
            for i in range(start, end):
                bag = dataset[i]
                if len(bag) == 0:
                    z_labels[i] = np.zeros(0, dtype=np.int64)
                    continue
                scores = classifier.decision_function(self._matrix(bag.sentences))
                z_labels[i] = np.argmax(scores, axis=1).astype(np.int64)
        self.z_labels = z_labels
        return z_labels

    # ------------------------------------------------------------------
    # E-step
    # ------------------------------------------------------------------

    def _z_log_probs(self, classifier, bag):
        if len(bag) == 0:
            return np.zeros((0, len(self.z_label_index)))
        return classifier.log_probability_of(self._matrix(bag.sentences))

    def _label_bag(self, dataset, i, fold, epoch, z_predicted, y_datasets):
        bag = dataset[i]
        with worker_errors(f"Inference failed for bag {bag.key}", epoch=epoch, fold=fold):
            z_labels = self.z_labels[i]
            randomize_group(
                [bag.sentences, z_labels, bag.fixed_labels, bag.gloss_keys],
                seed=[self.config.random_seed, epoch, i],
                squash=self.config.squash_random,
            )

            log_probs = self._z_log_probs(self.z_classifiers[fold], bag)
            z_predicted[i] = predict_z_labels(log_probs)

            fixed = fixed_label_ids(bag, self.z_label_index)
            z_log_probs = compute_z_log_probs(log_probs, fixed)
            scorer = JointScorer(self.y_classifiers, self.z_label_index, self.config.y_features)
            if self.config.inference_type == "iterative":
                max_log_prob, joint, n_flips = infer_z_labels(
                    z_log_probs, z_labels, fixed, bag.positive, bag.negative, scorer
                )
            else:
                max_log_prob, joint, n_flips = infer_z_labels_stable(
                    z_log_probs, z_labels, fixed, bag.positive, bag.negative, scorer
                )

            datums = []
            for y, relation in enumerate(self.y_label_index):
                if y in bag.positive:
                    positive = True
                elif self.config.y_all_negatives or y in bag.negative:
                    positive = False
                else:
                    continue
                features = extract_y_features(
                    relation, z_labels, self.z_label_index, self.config.y_features
                )
                datums.append((relation, features, positive))

            with self._lock:
                self._z_updates += n_flips
                for relation, features, positive in datums:
                    y_datasets[relation].append((features, positive))

            return list(bag.gloss_keys), joint, max_log_prob

    def _y_log_probs_for_bag(self, dataset, i, relations):
        bag = dataset[i]
        if self.z_single_classifier is not None:
            classifier = self.z_single_classifier
        else:
            classifier = self.z_classifiers[self._fold_of(i, len(dataset))]
        z_predicted = predict_z_labels(self._z_log_probs(classifier, bag))
        scorer = JointScorer(self.y_classifiers, self.z_label_index, self.config.y_features)
        return {
            y: scorer.y_log_probs(y, z_predicted)[YClassifier.POSITIVE] for y in relations
        }

    def e_step(self, dataset, epoch):
        """
        Relabel (if enabled), then infer Z labels for every bag, fold by fold.

        :return: (per-bag inference results, Z-only predictions, Y training sets)
        """
        if self.config.relabel and epoch > 0:
            relabel_unknowns(
                dataset,
                self.config.percent_positive,
                lambda i, relations: self._y_log_probs_for_bag(dataset, i, relations),
            )

        n = len(dataset)
        z_predicted = [None] * n
        y_datasets = {relation: [] for relation in self.y_label_index}
        results = [None] * n
        for fold in range(self.n_folds):
            start, end = fold_range(fold, n, self.n_folds)
            fold_results = self._parallel(
                delayed(self._label_bag)(dataset, i, fold, epoch, z_predicted, y_datasets)
                for i in range(start, end)
            )
            results[start:end] = fold_results
        return results, z_predicted, y_datasets

    # ------------------------------------------------------------------
    # M-step
    # ------------------------------------------------------------------

    def _log_label_distribution(self, labels):
        counts = pd.Series(self.z_label_index.objects(labels)).value_counts(normalize=True)
        for relation, fraction in counts.items():
            log.debug(f"{fraction:07.2%}: {relation}")

    def _train_z_fold(self, dataset, fold, epoch):
        with worker_errors("Z classifier training failed", epoch=epoch, fold=fold):
            train_ids = make_train_array_for_fold(list(range(len(dataset))), fold, self.n_folds)
            rows = flatten(dataset[i].sentences for i in train_ids)
            labels = np.concatenate([self.z_labels[i] for i in train_ids])
            classifier = self._make_z_classifier(fold).fit(
                self._matrix(rows), labels, n_labels=len(self.z_label_index)
            )
            with self._lock:
                self.z_classifiers[fold] = classifier

    def _train_y_relation(self, relation, datums, epoch):
        with worker_errors("Y classifier training failed", epoch=epoch, relation=relation):
            classifier = YClassifier.train(
                relation, datums, sigma=self.config.y_sigma, tol=self.config.tol
            )
            with self._lock:
                self.y_classifiers[relation] = classifier

    def train_z_classifiers(self, dataset, epoch):
        self._log_label_distribution(np.concatenate(self.z_labels))
        log.warning(f"EPOCH {epoch}: Training Z classifiers")
        self._parallel(
            delayed(self._train_z_fold)(dataset, fold, epoch) for fold in range(self.n_folds)
        )

    def train_y_classifiers(self, y_datasets, epoch):
        for relation, datums in y_datasets.items():
            if len(datums) == 0:
                raise ConfigurationError(
                    f"Empty Y train set for relation {relation} in epoch {epoch}"
                )
        log.warning(f"EPOCH {epoch}: Training Y classifiers")
        self._parallel(
            delayed(self._train_y_relation)(relation, datums, epoch)
            for relation, datums in y_datasets.items()
        )

    def make_single_z_classifier(self, dataset):
        if self.config.local_classification_mode != "single_model":
            self.z_single_classifier = None
            return None
        log.warning("Training the final Z classifier...")
        rows = flatten(bag.sentences for bag in dataset)
        labels = np.concatenate(self.z_labels)
        initial = None
        if self.z_single_classifier is not None:
            initial = self.z_single_classifier.coef_
        self.z_single_classifier = self._make_z_classifier().fit(
            self._matrix(rows),
            labels,
            n_labels=len(self.z_label_index),
            initial_weights=initial,
        )
        return self.z_single_classifier

    def save_checkpoint(self, epoch):
        if self.config.model_path is None:
            return None
        path = make_epoch_path(self.config.model_path, epoch)
        try:
            self.save(path)
        except OSError as e:
            log.error(f"WARNING: could not save model of epoch {epoch} to path: {path}")
            log.error(f"Exception message: {e}")
            return None
        return path

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _report(self, name, z_labels, golds):
        confusion_matrix(name, z_labels, golds, self.z_label_index)
        return y_score(name, z_labels, golds, self.nil_index)

    def train(self, dataset):
        """
        Train the extractor on a bag dataset.

        :param dataset: BagDataset (bags are shuffled and relabeled in place)
        :return: TrainingStatistics from the last E-step
        """
        self.state = TrainingState.INITIALIZING
        self.epochs_run = 0
        log.warning(f"Number of threads is {self.config.n_jobs}")

        if isinstance(self.local_filter, LargeFilter):
            before = len(dataset)
            dataset = dataset.filter(self.local_filter.filter_y)
            log.warning(f"Large filter kept {len(dataset)} of {before} bags")

        self.initialize(dataset)

        if self.only_local:
            self.state = TrainingState.CONVERGED
            self.statistics = TrainingStatistics.undefined()
            return self.statistics

        self.detect_dependency_y_features(dataset)
        for y, relation in enumerate(self.y_label_index):
            log.debug(f"YLABELINDEX {relation} = {y}")

        self.initialize_z_labels(dataset)
        golds = [bag.positive for bag in dataset]
        self._report("LOCAL", self.z_labels, golds)

        if self.config.relabel:
            dataset.finalize_labels()

        results = [None] * len(dataset)
        self.state = TrainingState.MAX_EPOCHS_REACHED
        for epoch in range(self.config.epochs):
            log.warning(f"***EPOCH {epoch}***")
            self.state = TrainingState.E_STEP
            self._z_updates = 0

            results, z_predicted, y_datasets = self.e_step(dataset, epoch)
            self.epochs_run = epoch + 1

            golds = [bag.positive for bag in dataset]
            self._report(f"EPOCH {epoch}", self.z_labels, golds)
            self._report(f"(Z ONLY) EPOCH {epoch}", z_predicted, golds)

            log.warning(f"In epoch #{epoch} zUpdatesInOneEpoch = {self._z_updates}")
            if self._z_updates == 0:
                log.warning("Stopping training. Did not find any changes in the Z labels!")
                self.state = TrainingState.CONVERGED
                break

            self.state = TrainingState.M_STEP
            self.train_z_classifiers(dataset, epoch)
            if self.config.train_y:
                self.train_y_classifiers(y_datasets, epoch)
            self.make_single_z_classifier(dataset)
            self.save_checkpoint(epoch)
        else:
            self.state = TrainingState.MAX_EPOCHS_REACHED

        self.make_single_z_classifier(dataset)
        self.statistics = self._collect_statistics(results)
        return self.statistics

    def _collect_statistics(self, results):
        statistics = TrainingStatistics.empty()
        names = self.z_label_index.objects_list()
        for result in results:
            if result is None:
                continue
            gloss_keys, joint, max_log_prob = result
            for s, key in enumerate(gloss_keys):
                distribution = dict(zip(names, np.exp(joint[s]).tolist()))
                statistics.add(
                    key, SentenceStatistics(distribution, float(np.exp(max_log_prob[s])))
                )
        log.warning(f"Collected training statistics for {len(statistics)} sentences")
        return statistics

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _as_matrix(self, sentences):
        if isinstance(sentences, Bag):
            return self._matrix(sentences.sentences)
        rows = []
        for sentence in sentences:
            ids = [self.feature_index.index_of(f) for f in sentence]
            rows.append([i for i in ids if i >= 0])
        return self._matrix(rows)

    def classify_locally(self, sentences):
        """
        P(z | x) for each sentence.

        :param sentences: Bag, or list of collections of feature names
        :return: array (n_sentences, n_z_labels) of probabilities
        """
        X = self._as_matrix(sentences)
        mode = self.config.local_classification_mode
        if mode == "weighted_vote":
            total = np.zeros((X.shape[0], len(self.z_label_index)))
            for classifier in self.z_classifiers:
                total += classifier.predict_proba(X)
            return total / len(self.z_classifiers)
        if mode == "single_model":
            if self.z_single_classifier is None:
                raise ConfigurationError("No single Z classifier was trained")
            return self.z_single_classifier.predict_proba(X)
        raise ConfigurationError(f"Classification mode {mode} not supported!")

    def classify_relations(self, sentences, output_type=None):
        """
        Score every relation for a bag.

        :param sentences: Bag, or list of collections of feature names
        :param output_type: one of OUTPUT_DISTRIBUTIONS (defaults to the configured one)
        :return: dict {relation: (score, index of the most confident sentence or None)}
        """
        if output_type is None:
            output_type = self.config.output_distribution
        if output_type not in OUTPUT_DISTRIBUTIONS:
            raise ConfigurationError(f"Unknown output type: {output_type}")

        probs = self.classify_locally(sentences)
        names = self.z_label_index.objects_list()

        z_given_x = np.zeros(probs.shape[0], dtype=np.int64)
        max_z = {}
        provenance = {}
        noisy_or_complement = {}
        for i in range(probs.shape[0]):
            label, score = sort_predictions(probs[i], names)[0]
            z_given_x[i] = self.z_label_index.index_of(label)
            if label == UNRELATED:
                continue
            if label not in max_z or score > max_z[label]:
                max_z[label] = score
                provenance[label] = i
            noisy_or_complement[label] = noisy_or_complement.get(label, 1.0) * (1.0 - score)
        noisy_or = {label: 1.0 - value for label, value in noisy_or_complement.items()}

        p_y_given_zstar = {}
        above_threshold = set()
        for relation in sorted(self.y_classifiers):
            features = extract_y_features(
                relation, z_given_x, self.z_label_index, self.config.y_features
            )
            p = self.y_classifiers[relation].probability_of(features)
            prob = float(p[YClassifier.POSITIVE] / (p[YClassifier.POSITIVE] + p[YClassifier.NEGATIVE]))
            p_y_given_zstar[relation] = prob
            if prob > self.config.threshold_for(relation):
                above_threshold.add(relation)

        result = {}
        for relation, prob in p_y_given_zstar.items():
            z_prob = noisy_or.get(relation, 0.0)
            if output_type == "y_given_zstar":
                result[relation] = (prob, provenance.get(relation))
            elif output_type == "noisy_or":
                if z_prob > self.config.threshold_for(relation):
                    result[relation] = (z_prob, provenance.get(relation))
            elif relation in above_threshold:
                result[relation] = (z_prob, provenance.get(relation))

        if output_type == "y_given_zstar" and self.config.output_distribution == "y_given_zstar":
            total = sum(score for score, _ in result.values())
            if total > 0:
                result = {r: (score / total, prov) for r, (score, prov) in result.items()}
        return result

    def classify_relation(self, sentences, relation):
        """
        P(relation | z*) for one relation, with its provenance sentence.
        """
        if relation not in self.y_classifiers:
            raise UnknownRelationError(relation)
        return self.classify_relations(sentences, "y_given_zstar")[relation]

    def training_accuracy(self, dataset):
        """
        Z-only accuracy of a trained model on a dataset; also logs the confusion matrix.

        :param dataset: BagDataset sharing this model's relation names
        :return: dict with precision, recall, f1, accuracy
        """
        z_labels = []
        for bag in dataset:
            if len(bag) == 0:
                z_labels.append(np.zeros(0, dtype=np.int64))
            else:
                z_labels.append(np.argmax(self.classify_locally(bag), axis=1))
        golds = []
        for bag in dataset:
            gold = set()
            for y in bag.positive:
                idx = self.z_label_index.index_of(dataset.label_index[y])
                if idx < 0:
                    raise UnknownRelationError(dataset.label_index[y])
                gold.add(idx)
            golds.append(gold)
        confusion_matrix("TRAIN", z_labels, golds, self.z_label_index)
        return y_score("Z ONLY", z_labels, golds, self.nil_index)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path):
        save_model(
            path,
            self.config.y_features,
            self.config.local_classification_mode,
            self.known_dependencies,
            self.feature_index,
            self.z_label_index,
            self.z_classifiers,
            self.z_single_classifier,
            self.y_classifiers,
        )

    @classmethod
    def load(cls, path, config=None):
        """
        The Y feature types and local classification mode always come from the
        model file, overriding whatever the given config says.

        :param path: model file written by save()
        :param config: optional JointBayesConfig for classification settings
        :return: JointBayesRelationExtractor
        """
        model = load_model(path)
        stored = {
            "y_features": model["y_features"],
            "local_classification_mode": model["local_classification_mode"],
        }
        if config is None:
            config = JointBayesConfig(**stored)
        elif any(getattr(config, name) != value for name, value in stored.items()):
            log.warning(
                f"Config disagrees with the trained model {stored}; using the model's settings"
            )
            config = replace(config, **stored)
        extractor = cls(config)
        extractor.known_dependencies = model["known_dependencies"]
        extractor.feature_index = model["feature_index"]
        extractor.z_label_index = model["z_label_index"]
        extractor.y_label_index = Index(
            label for label in extractor.z_label_index if label != UNRELATED
        )
        extractor.z_classifiers = model["z_classifiers"]
        extractor.z_single_classifier = model["z_single_classifier"]
        extractor.y_classifiers = model["y_classifiers"]
        extractor.state = TrainingState.CONVERGED
        return extractor
