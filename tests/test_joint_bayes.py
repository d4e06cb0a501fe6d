import os

import numpy as np
import pytest

import extractors.joint_bayes as joint_bayes
from classifiers.linear_classifier import LinearClassifier
from data_handler import BagDataset, UNRELATED
from extractors.config import JointBayesConfig
from extractors.exceptions import ConfigurationError, TrainingError, UnknownRelationError
from extractors.joint_bayes import (
    JointBayesRelationExtractor,
    TrainingState,
    make_epoch_path,
    make_local_data,
)
from extractors.model_type import make_extractor
from loaders.local_filter import AllFilter


def test_make_local_data(separable_dataset):
    bags = list(separable_dataset)
    bags[1].positive = set()
    bags[2].positive = set()
    bags[2].negative = set()
    rows, labels, weights, n_positive = make_local_data(bags, AllFilter(), nil_index=2)
    # bags 1 and 2 each become two UNRELATED examples
    assert len(rows) == 12
    assert (labels == 2).sum() == 4
    assert n_positive == 8
    assert np.allclose(weights, 1.0)


def test_make_local_data_splits_weight_across_labels():
    ds = BagDataset()
    ds.add_bag(("e", "v"), [["x"]], positive=["A", "B"])
    _, labels, weights, _ = make_local_data(list(ds), AllFilter(), nil_index=2)
    assert labels.tolist() == [0, 1]
    assert weights.tolist() == [0.5, 0.5]


def test_epoch_path():
    assert make_epoch_path("out/model.bin", 3) == "out/model_EPOCH3.bin"


def test_converges_early_without_flips(separable_dataset, small_config):
    extractor = JointBayesRelationExtractor(small_config)
    statistics = extractor.train(separable_dataset)
    assert extractor.state == TrainingState.CONVERGED
    assert extractor.epochs_run == 1
    assert extractor.epochs_run < small_config.epochs
    assert statistics.is_defined


def test_halts_within_epoch_budget(noisy_dataset):
    config = JointBayesConfig(folds=3, epochs=2, multithread=False)
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    assert extractor.epochs_run <= 2
    assert extractor.state in (TrainingState.CONVERGED, TrainingState.MAX_EPOCHS_REACHED)


def test_zero_epochs(separable_dataset):
    config = JointBayesConfig(folds=3, epochs=0, multithread=False)
    extractor = JointBayesRelationExtractor(config)
    extractor.train(separable_dataset)
    assert extractor.epochs_run == 0
    assert extractor.state == TrainingState.MAX_EPOCHS_REACHED


def test_end_to_end(noisy_dataset):
    config = JointBayesConfig(folds=3, epochs=3, threads=2, y_all_negatives=True)
    extractor = JointBayesRelationExtractor(config)
    statistics = extractor.train(noisy_dataset)

    assert len(extractor.z_classifiers) == 3
    assert set(extractor.y_classifiers) == {"A", "B"}
    assert extractor.z_label_index.objects_list() == ["A", "B", UNRELATED]

    statistics.validate()
    expected_keys = {key for bag in noisy_dataset for key in bag.gloss_keys}
    assert statistics.sentence_keys() == expected_keys

    for labels, bag in zip(extractor.z_labels, noisy_dataset):
        assert len(labels) == len(bag)

    bag = next(b for b in noisy_dataset if b.key == ("e0", "v0"))
    cue = extractor.feature_index.index_of("fa")
    s = next(j for j, row in enumerate(bag.sentences) if cue in row)
    assert extractor.classify_locally(bag)[s, 0] > 0.5

    probs = extractor.classify_locally([["fa"], ["fb"]])
    assert probs.shape == (2, 3)
    assert np.allclose(probs.sum(axis=1), 1.0)
    assert np.argmax(probs[0]) == 0
    assert np.argmax(probs[1]) == 1

    scores = extractor.classify_relations([["fa"], ["fa"]], "y_given_zstar")
    assert set(scores) == {"A", "B"}
    assert scores["A"][0] > scores["B"][0]
    assert scores["A"][1] == 0
    assert extractor.classify_relation([["fa"], ["fa"]], "A") == scores["A"]

    metrics = extractor.training_accuracy(noisy_dataset)
    assert 0.0 <= metrics["f1"] <= 1.0


def test_output_distributions(separable_dataset, small_config):
    extractor = JointBayesRelationExtractor(small_config)
    extractor.train(separable_dataset)
    sentences = [["fa"], ["fa"]]

    noisy_or = extractor.classify_relations(sentences, "noisy_or")
    assert set(noisy_or) == {"A"}
    local = extractor.classify_locally(sentences)[:, 0]
    assert noisy_or["A"][0] == pytest.approx(1.0 - np.prod(1.0 - local))

    thresholded = extractor.classify_relations(sentences, "y_then_noisy_or")
    assert set(thresholded) == {"A"}
    assert thresholded["A"][0] == pytest.approx(noisy_or["A"][0])

    with pytest.raises(ConfigurationError):
        extractor.classify_relations(sentences, "bogus")
    with pytest.raises(UnknownRelationError):
        extractor.classify_relation(sentences, "C")


def test_single_model_mode(separable_dataset):
    config = JointBayesConfig(
        folds=3, epochs=2, multithread=False, local_classification_mode="single_model"
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(separable_dataset)
    assert extractor.z_single_classifier is not None
    probs = extractor.classify_locally([["fb"]])
    assert np.argmax(probs[0]) == 1


def test_relabeling_run(noisy_dataset):
    noisy_dataset[0].unknown.add(1)
    noisy_dataset[3].unknown.add(0)
    config = JointBayesConfig(
        folds=3, epochs=3, multithread=False, relabel=True, percent_positive=0.6
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    assert extractor.epochs_run <= 3


def test_relabeling_starts_at_second_epoch(noisy_dataset, monkeypatch):
    noisy_dataset[0].unknown.add(1)
    noisy_dataset[3].unknown.add(0)
    config = JointBayesConfig(
        folds=3, epochs=3, multithread=False, relabel=True, percent_positive=0.6
    )
    extractor = JointBayesRelationExtractor(config)
    events = []

    real_relabel = joint_bayes.relabel_unknowns

    def relabel(dataset, percent_positive, y_log_probs):
        promoted = real_relabel(dataset, percent_positive, y_log_probs)
        events.append(("relabel", extractor.epochs_run, None))
        return promoted

    real_label_bag = JointBayesRelationExtractor._label_bag

    def label_bag(self, dataset, i, fold, epoch, z_predicted, y_datasets):
        bag = dataset[i]
        events.append(("infer", epoch, bool(bag.unknown & bag.positive)))
        return real_label_bag(self, dataset, i, fold, epoch, z_predicted, y_datasets)

    real_infer = joint_bayes.infer_z_labels_stable

    def never_converge(*args, **kwargs):
        max_log_prob, joint, n_flips = real_infer(*args, **kwargs)
        return max_log_prob, joint, n_flips + 1

    monkeypatch.setattr(joint_bayes, "relabel_unknowns", relabel)
    monkeypatch.setattr(JointBayesRelationExtractor, "_label_bag", label_bag)
    monkeypatch.setattr(joint_bayes, "infer_z_labels_stable", never_converge)
    extractor.train(noisy_dataset)

    assert extractor.epochs_run == 3
    relabels = [j for j, event in enumerate(events) if event[0] == "relabel"]
    assert [events[j][1] for j in relabels] == [1, 2]
    epoch_0 = [j for j, event in enumerate(events) if event[:2] == ("infer", 0)]
    epoch_1 = [j for j, event in enumerate(events) if event[:2] == ("infer", 1)]
    assert len(epoch_0) == len(epoch_1) == 6
    assert max(epoch_0) < relabels[0] < min(epoch_1)
    assert not any(events[j][2] for j in epoch_0)
    assert sum(events[j][2] for j in epoch_1) == 1


def test_local_only(separable_dataset, small_config):
    extractor = make_extractor("local_bayes", small_config)
    statistics = extractor.train(separable_dataset)
    assert not statistics.is_defined
    assert extractor.z_labels is None
    assert len(extractor.z_classifiers) == 3


def test_unknown_model_type(small_config):
    with pytest.raises(ConfigurationError):
        make_extractor("random_forest", small_config)


def test_no_positive_examples(small_config):
    ds = BagDataset()
    for i in range(6):
        ds.add_bag((f"e{i}", "v"), [["x"]], negative=["A"])
    with pytest.raises(ConfigurationError):
        JointBayesRelationExtractor(small_config).train(ds)


def test_empty_y_training_set(separable_dataset, small_config):
    extractor = JointBayesRelationExtractor(small_config)
    extractor.train(separable_dataset)
    with pytest.raises(ConfigurationError):
        extractor.train_y_classifiers({"A": []}, epoch=1)


def test_worker_failure_names_epoch_and_fold(separable_dataset, small_config, monkeypatch):
    def broken(self, X):
        raise RuntimeError("boom")

    monkeypatch.setattr(LinearClassifier, "log_probability_of", broken)
    with pytest.raises(TrainingError) as info:
        JointBayesRelationExtractor(small_config).train(separable_dataset)
    assert info.value.epoch == 0
    assert info.value.fold == 0


def test_fixed_labels_survive_training(noisy_dataset):
    noisy_dataset[0].fixed_labels[1] = "B"
    config = JointBayesConfig(folds=3, epochs=2, multithread=False, inference_type="iterative")
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    bag = noisy_dataset[0]
    for s, label in enumerate(bag.fixed_labels):
        if label is not None:
            assert extractor.z_label_index[extractor.z_labels[0][s]] == label


def test_checkpoint_failure_is_not_fatal(separable_dataset, tmp_path):
    config = JointBayesConfig(
        folds=3,
        epochs=1,
        multithread=False,
        model_path=str(tmp_path / "missing" / "model.bin"),
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(separable_dataset)
    assert extractor.save_checkpoint(0) is None


def test_checkpoint(separable_dataset, tmp_path):
    config = JointBayesConfig(
        folds=3, epochs=1, multithread=False, model_path=str(tmp_path / "model.bin")
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(separable_dataset)
    path = extractor.save_checkpoint(2)
    assert path == str(tmp_path / "model_EPOCH2.bin")
    assert os.path.exists(path)


def test_initial_model_cache(separable_dataset, tmp_path):
    path = str(tmp_path / "initial.bin")
    config = JointBayesConfig(
        folds=3, epochs=0, multithread=False, initial_model_path=path, load_initial_model=True
    )
    first = JointBayesRelationExtractor(config)
    first.train(separable_dataset)
    assert os.path.exists(path)

    second = JointBayesRelationExtractor(config)
    second.initialize(separable_dataset)
    for a, b in zip(first.z_classifiers, second.z_classifiers):
        assert np.array_equal(a.coef_, b.coef_)
