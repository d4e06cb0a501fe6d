"""
config.py

Immutable settings for the joint Bayes (MIML-RE) relation extractor.

The hydra config is converted once into a frozen JointBayesConfig, validated,
and passed to the extractor's constructor; the engine never reads the
mutable DictConfig.

2026-02-09 - SD
"""

import logging
import os
from dataclasses import dataclass, field, fields

from omegaconf import DictConfig, OmegaConf

from extractors.exceptions import ConfigurationError

log = logging.getLogger(__name__)

INFERENCE_TYPES = ["iterative", "stable"]
Y_FEATURE_CLASSES = ["atleast_once", "cooc", "unique", "atleast_n", "sigmoid"]
MINIMIZERS = ["qn", "sgd", "sgd_to_qn"]
LOCAL_FILTERS = ["all", "single", "redundancy", "large"]
LOCAL_CLASSIFICATION_MODES = ["weighted_vote", "single_model"]
OUTPUT_DISTRIBUTIONS = ["y_given_zstar", "noisy_or", "y_then_noisy_or"]


@dataclass(frozen=True)
class JointBayesConfig:
    folds: int = 5
    epochs: int = 10
    z_sigma: float = 1.0
    y_sigma: float = 1.0
    tol: float = 1e-4
    z_minimizer: str = "qn"
    sgd_passes: int = 75
    sgd_batch_size: int = 1000
    inference_type: str = "stable"
    y_features: tuple = ("atleast_once", "cooc")
    y_all_negatives: bool = False
    relabel: bool = False
    percent_positive: float = 0.25
    local_filter: str = "all"
    large_filter_threshold: int = 100
    train_y: bool = True
    multithread: bool = True
    threads: int = 0
    part_of_ensemble: bool = False
    ensemble_size: int = 5
    squash_random: bool = False
    local_classification_mode: str = "weighted_vote"
    model_path: str = None
    initial_model_path: str = None
    load_initial_model: bool = False
    output_distribution: str = "y_then_noisy_or"
    threshold_default: float = 0.5
    per_relation_thresholds: dict = field(default_factory=dict)
    random_seed: int = 42

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check every setting; raise ConfigurationError on the first bad one.
        """
        if self.folds < 2:
            raise ConfigurationError(f"Must have at least two folds: {self.folds}")
        if self.epochs < 0:
            raise ConfigurationError(f"Number of epochs must be >= 0: {self.epochs}")
        if self.z_sigma <= 0 or self.y_sigma <= 0:
            raise ConfigurationError("Regularization sigmas must be positive")
        if self.z_minimizer not in MINIMIZERS:
            raise ConfigurationError(
                f"Unknown minimizer: {self.z_minimizer}; must be one of {MINIMIZERS}"
            )
        if self.inference_type not in INFERENCE_TYPES:
            raise ConfigurationError(
                f"Unknown inference type: {self.inference_type}; "
                f"must be one of {INFERENCE_TYPES}"
            )
        if len(self.y_features) == 0:
            raise ConfigurationError("At least one Y feature class must be selected")
        for y_feature in self.y_features:
            if y_feature not in Y_FEATURE_CLASSES:
                raise ConfigurationError(
                    f"Unknown Y feature class: {y_feature}; "
                    f"must be a subset of {Y_FEATURE_CLASSES}"
                )
        if not 0.0 <= self.percent_positive <= 1.0:
            raise ConfigurationError(
                f"percent_positive must be in [0, 1]: {self.percent_positive}"
            )
        if self.local_filter not in LOCAL_FILTERS:
            raise ConfigurationError(
                f"Unknown local filter: {self.local_filter}; must be one of {LOCAL_FILTERS}"
            )
        if self.local_filter == "large" and self.large_filter_threshold <= 0:
            raise ConfigurationError("The large filter needs a positive threshold")
        if self.local_classification_mode not in LOCAL_CLASSIFICATION_MODES:
            raise ConfigurationError(
                f"Unknown local classification mode: {self.local_classification_mode}"
            )
        if self.output_distribution not in OUTPUT_DISTRIBUTIONS:
            raise ConfigurationError(
                f"Unknown output distribution: {self.output_distribution}; "
                f"must be one of {OUTPUT_DISTRIBUTIONS}"
            )
        if self.ensemble_size < 1:
            raise ConfigurationError(f"Ensemble size must be >= 1: {self.ensemble_size}")

    @classmethod
    def from_cfg(cls, cfg):
        """
        Build a config from a hydra/OmegaConf node or a plain dict.

        :param cfg: DictConfig or dict with a subset of the dataclass fields
        :return: JointBayesConfig
        """
        if isinstance(cfg, DictConfig):
            cfg = OmegaConf.to_container(cfg, resolve=True)
        known = {f.name for f in fields(cls)}
        unknown = set(cfg).difference(known)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {sorted(unknown)}")

        values = dict(cfg)
        if "y_features" in values:
            values["y_features"] = tuple(values["y_features"])
        if values.get("per_relation_thresholds") is None:
            values["per_relation_thresholds"] = {}
        else:
            values["per_relation_thresholds"] = dict(values["per_relation_thresholds"])
        return cls(**values)

    @property
    def n_jobs(self):
        """
        Number of worker threads for each parallel phase.
        """
        if not self.multithread:
            return 1
        threads = self.threads if self.threads > 0 else (os.cpu_count() or 1)
        if self.part_of_ensemble:
            return max(1, threads // self.ensemble_size)
        return threads

    def threshold_for(self, relation):
        return self.per_relation_thresholds.get(relation, self.threshold_default)
