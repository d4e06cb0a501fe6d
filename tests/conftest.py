import pytest

from data_handler import BagDataset
from extractors.config import JointBayesConfig


def make_separable_dataset(n_bags=6):
    """
    Bags alternate between relations A and B; every sentence carries its relation's cue.
    """
    dataset = BagDataset()
    for i in range(n_bags):
        relation, other = ("A", "B") if i % 2 == 0 else ("B", "A")
        cue = "fa" if relation == "A" else "fb"
        dataset.add_bag(
            key=(f"e{i}", f"v{i}"),
            sentences=[[cue, f"w{i}"], [cue]],
            positive=[relation],
            negative=[other],
        )
    return dataset


def make_noisy_dataset(n_bags=6):
    """
    Like the separable dataset, but every bag also holds an uninformative sentence.
    """
    dataset = BagDataset()
    for i in range(n_bags):
        relation, other = ("A", "B") if i % 2 == 0 else ("B", "A")
        cue = "fa" if relation == "A" else "fb"
        dataset.add_bag(
            key=(f"e{i}", f"v{i}"),
            sentences=[[cue, f"w{i}"], ["fn", f"w{i}"]],
            positive=[relation],
            negative=[other],
        )
    return dataset


@pytest.fixture
def separable_dataset():
    return make_separable_dataset()


@pytest.fixture
def noisy_dataset():
    return make_noisy_dataset()


@pytest.fixture
def small_config():
    return JointBayesConfig(folds=3, epochs=4, multithread=False)
