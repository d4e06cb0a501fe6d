import os

import pytest
from omegaconf import OmegaConf

from extractors.config import JointBayesConfig
from extractors.exceptions import ConfigurationError


def test_defaults_are_valid():
    config = JointBayesConfig()
    assert config.folds == 5
    assert config.inference_type == "stable"
    assert config.threshold_for("anything") == 0.5


@pytest.mark.parametrize(
    "overrides",
    [
        {"folds": 1},
        {"inference_type": "gibbs"},
        {"y_features": ("atleast_once", "bigram")},
        {"y_features": ()},
        {"percent_positive": 1.5},
        {"local_filter": "tiny"},
        {"output_distribution": "max"},
        {"z_minimizer": "newton"},
    ],
)
def test_invalid_settings(overrides):
    with pytest.raises(ConfigurationError):
        JointBayesConfig(**overrides)


def test_from_cfg():
    cfg = OmegaConf.create(
        {
            "folds": 3,
            "y_features": ["atleast_once", "unique"],
            "per_relation_thresholds": {"per:title": 0.3},
        }
    )
    config = JointBayesConfig.from_cfg(cfg)
    assert config.folds == 3
    assert config.y_features == ("atleast_once", "unique")
    assert config.threshold_for("per:title") == 0.3
    assert config.threshold_for("per:age") == 0.5


def test_from_cfg_rejects_unknown_settings():
    with pytest.raises(ConfigurationError):
        JointBayesConfig.from_cfg({"folds": 3, "foldz": 4})


def test_thread_counts():
    assert JointBayesConfig(multithread=False).n_jobs == 1
    assert JointBayesConfig(threads=8).n_jobs == 8
    assert JointBayesConfig(threads=8, part_of_ensemble=True, ensemble_size=3).n_jobs == 2
    assert JointBayesConfig(threads=2, part_of_ensemble=True, ensemble_size=5).n_jobs == 1
    assert JointBayesConfig().n_jobs == (os.cpu_count() or 1)


def test_configs_on_disk_are_valid():
    root = os.path.join(os.path.dirname(__file__), "..", "configs")
    cfg = OmegaConf.load(os.path.join(root, "train_mimlre.yaml"))
    assert JointBayesConfig.from_cfg(cfg.extractor).folds == 5
    cfg = OmegaConf.load(os.path.join(root, "evaluate_mimlre.yaml"))
    assert JointBayesConfig.from_cfg(cfg.extractor).output_distribution == "y_then_noisy_or"
