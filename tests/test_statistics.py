import numpy as np
import pytest

from data_handler import Index, UNRELATED
from extractors.statistics import (
    HIGH_KL_FROM_MEAN,
    LOW_AVERAGE_CONFIDENCE,
    RANDOM_UNIFORM,
    EnsembleStatistics,
    SentenceStatistics,
    TrainingStatistics,
    confusion_matrix,
    y_score,
)


def stats(p_a, confidence=None):
    return SentenceStatistics({"A": p_a, UNRELATED: 1.0 - p_a}, confidence)


def test_ensemble_mean():
    ensemble = EnsembleStatistics([stats(0.2, 0.5), stats(0.6, 0.7)])
    mean = ensemble.mean()
    assert mean.relation_distribution["A"] == pytest.approx(0.4)
    assert mean.confidence == pytest.approx(0.6)


def test_mean_rejects_non_distributions():
    ensemble = EnsembleStatistics([SentenceStatistics({"A": 0.7, UNRELATED: 0.7})])
    with pytest.raises(AssertionError):
        ensemble.mean()


def test_kl_from_mean():
    assert EnsembleStatistics([stats(0.3), stats(0.3)]).average_kl_from_mean() == 0.0
    assert EnsembleStatistics([stats(0.1), stats(0.9)]).average_kl_from_mean() > 0.0


def test_undefined_statistics():
    undefined = TrainingStatistics.undefined()
    assert not undefined.is_defined
    assert undefined.sentence_keys() is None
    undefined.add("k", stats(0.5))
    assert len(undefined) == 0


def test_merge():
    a = TrainingStatistics.empty()
    a.add("s1", stats(0.1))
    b = TrainingStatistics.empty()
    b.add("s1", stats(0.9))
    b.add("s2", stats(0.5))
    merged = a.merge(b)
    assert merged.sentence_keys() == {"s1", "s2"}
    assert merged.relation_predictions_for_key("s1")["A"] == pytest.approx(0.5)
    merged.validate()


def test_select_keys_by_uncertainty():
    training = TrainingStatistics.empty()
    training.add("agree", stats(0.5))
    training.add("agree", stats(0.5))
    training.add("disagree", stats(0.05))
    training.add("disagree", stats(0.95))
    assert training.select_keys(HIGH_KL_FROM_MEAN) == ["disagree", "agree"]


def test_low_confidence_criterion():
    training = TrainingStatistics.empty()
    training.add("sure", stats(0.5, confidence=0.9))
    training.add("unsure", stats(0.5, confidence=0.2))
    weights = dict(training.select_weighted_keys(LOW_AVERAGE_CONFIDENCE))
    assert weights["unsure"] == pytest.approx(0.8)
    assert training.select_keys(LOW_AVERAGE_CONFIDENCE)[0] == "unsure"


def test_sampling_draws_distinct_keys():
    training = TrainingStatistics.empty()
    for i in range(10):
        training.add(f"s{i}", stats(0.5))
    keys = training.select_keys_with_sampling(RANDOM_UNIFORM, 6, seed=0)
    assert len(keys) == 6
    assert len(set(keys)) == 6
    assert keys == training.select_keys_with_sampling(RANDOM_UNIFORM, 6, seed=0)


def test_sampling_uses_zero_weight_keys_last():
    training = TrainingStatistics.empty()
    training.add("zero", stats(0.5, confidence=1.0))
    training.add("some", stats(0.5, confidence=0.5))
    keys = training.select_keys_with_sampling(LOW_AVERAGE_CONFIDENCE, 3, seed=1)
    assert keys == ["some", "zero"]


def test_unknown_criterion():
    with pytest.raises(ValueError):
        TrainingStatistics.empty().uncertainty("most_interesting")


def test_to_dataframe():
    training = TrainingStatistics.empty()
    training.add("s1", stats(0.25, confidence=0.5))
    frame = training.to_dataframe()
    assert frame.loc[0, "key"] == "s1"
    assert frame.loc[0, "A"] == pytest.approx(0.25)


def test_confusion_matrix_and_y_score():
    index = Index(["A", "B", UNRELATED])
    z_labels = [np.array([0, 2]), np.array([0]), np.array([2])]
    golds = [{0}, {1}, set()]
    frame = confusion_matrix("TEST", z_labels, golds, index)
    assert frame.loc["A", "A"] == 1.0
    assert frame.loc["B", "A"] == 1.0

    score = y_score("TEST", z_labels, golds, nil_index=2)
    assert score["precision"] == pytest.approx(0.5)
    assert score["recall"] == pytest.approx(0.5)
    assert score["accuracy"] == pytest.approx(2 / 3)
