import io

import numpy as np
import pytest

from classifiers.linear_classifier import LinearClassifier
from data_handler import Index
from extractors.config import JointBayesConfig
from extractors.exceptions import ModelFormatError
from extractors.inference import YClassifier
from extractors.joint_bayes import JointBayesRelationExtractor
from extractors.serialization import (
    RecordReader,
    RecordWriter,
    load_initial_models,
    load_model,
    save_initial_models,
    save_model,
)


def test_record_fields():
    buffer = io.BytesIO()
    writer = RecordWriter(buffer)
    writer.header(1)
    writer.int64(-7)
    writer.flag(True)
    writer.strings(["a", "ü"])
    writer.matrix(np.arange(6, dtype=float).reshape(2, 3))

    reader = RecordReader(io.BytesIO(buffer.getvalue()))
    reader.header(1)
    assert reader.int64() == -7
    assert reader.flag() is True
    assert reader.strings() == ["a", "ü"]
    assert np.array_equal(reader.matrix(), np.arange(6, dtype=float).reshape(2, 3))


def test_bad_magic():
    with pytest.raises(ModelFormatError):
        RecordReader(io.BytesIO(b"NOTAMODEL" + b"\x00" * 8)).header(1)


def test_wrong_kind():
    buffer = io.BytesIO()
    RecordWriter(buffer).header(2)
    with pytest.raises(ModelFormatError):
        RecordReader(io.BytesIO(buffer.getvalue())).header(1)


def test_truncated_file(tmp_path):
    path = tmp_path / "model.bin"
    z = [LinearClassifier.from_weights(np.ones((2, 3)))]
    save_model(
        str(path), ("atleast_once",), "weighted_vote", set(),
        Index(["f0", "f1"]), Index(["A", "B", "_NR"]), z, None, {},
    )
    data = path.read_bytes()
    path.write_bytes(data[:-5])
    with pytest.raises(ModelFormatError):
        load_model(str(path))


def test_initial_models(tmp_path):
    path = str(tmp_path / "initial.bin")
    z = [LinearClassifier.from_weights(np.eye(3)), LinearClassifier.from_weights(2 * np.eye(3))]
    y = {"A": YClassifier.at_least_once("A", ("atleast_once",))}
    save_initial_models(path, Index(["f0", "f1", "f2"]), Index(["A", "_NR"]), Index(["A"]), z, y)
    models = load_initial_models(path)
    assert models["y_label_index"] == Index(["A"])
    assert np.array_equal(models["z_classifiers"][1].coef_, 2 * np.eye(3))
    assert np.array_equal(models["y_classifiers"]["A"].classifier.coef_, y["A"].classifier.coef_)


def test_trained_model_scores_are_identical_after_loading(noisy_dataset, tmp_path):
    config = JointBayesConfig(
        folds=3, epochs=2, multithread=False, local_classification_mode="single_model"
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    path = str(tmp_path / "model.bin")
    extractor.save(path)

    loaded = JointBayesRelationExtractor.load(path, config)
    assert loaded.known_dependencies == extractor.known_dependencies
    assert loaded.z_label_index == extractor.z_label_index
    assert loaded.y_label_index == extractor.y_label_index

    held_out = [["fa", "w3"], ["fn"], ["fb", "unseen"]]
    assert np.array_equal(loaded.classify_locally(held_out), extractor.classify_locally(held_out))
    for output_type in ("y_given_zstar", "noisy_or", "y_then_noisy_or"):
        assert loaded.classify_relations(held_out, output_type) == extractor.classify_relations(
            held_out, output_type
        )


def test_loading_restores_training_settings(noisy_dataset, tmp_path):
    config = JointBayesConfig(
        folds=3, epochs=2, multithread=False, y_features=("atleast_once", "sigmoid", "unique")
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    path = str(tmp_path / "model.bin")
    extractor.save(path)

    loaded = JointBayesRelationExtractor.load(path)
    assert loaded.config.y_features == ("atleast_once", "sigmoid", "unique")
    assert loaded.config.local_classification_mode == "weighted_vote"

    held_out = [["fa", "w3"], ["fn"], ["fb", "unseen"]]
    X = loaded._as_matrix(held_out)
    mean = sum(clf.predict_proba(X) for clf in extractor.z_classifiers) / 3
    assert np.array_equal(loaded.classify_locally(held_out), mean)
    for output_type in ("y_given_zstar", "noisy_or", "y_then_noisy_or"):
        assert loaded.classify_relations(held_out, output_type) == extractor.classify_relations(
            held_out, output_type
        )


def test_loading_overrides_a_disagreeing_config(noisy_dataset, tmp_path):
    config = JointBayesConfig(
        folds=3, epochs=2, multithread=False, local_classification_mode="single_model"
    )
    extractor = JointBayesRelationExtractor(config)
    extractor.train(noisy_dataset)
    path = str(tmp_path / "model.bin")
    extractor.save(path)

    loaded = JointBayesRelationExtractor.load(
        path, JointBayesConfig(folds=3, multithread=False, output_distribution="noisy_or")
    )
    assert loaded.config.local_classification_mode == "single_model"
    assert loaded.config.y_features == ("atleast_once", "cooc")
    assert loaded.config.output_distribution == "noisy_or"
    held_out = [["fa"], ["fb"]]
    assert np.array_equal(loaded.classify_locally(held_out), extractor.classify_locally(held_out))
