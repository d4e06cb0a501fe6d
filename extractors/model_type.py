"""
model_type.py

Registry of relation extractor variants selectable by name.

- joint_bayes: full MIML-RE training (local initialization, then EM).
- local_bayes: the locally initialized per-fold classifiers only.

2026-02-09 - SD
"""

import logging

from extractors.exceptions import ConfigurationError
from extractors.joint_bayes import JointBayesRelationExtractor

log = logging.getLogger(__name__)

MODEL_TYPES = {
    "joint_bayes": lambda config: JointBayesRelationExtractor(config),
    "local_bayes": lambda config: JointBayesRelationExtractor(config, only_local=True),
}


def make_extractor(model_type, config):
    """
    Construct an untrained extractor.

    :param model_type: one of MODEL_TYPES
    :param config: JointBayesConfig
    :return: JointBayesRelationExtractor
    """
    if model_type not in MODEL_TYPES:
        raise ConfigurationError(
            f"Unknown model type: {model_type}; must be one of {sorted(MODEL_TYPES)}"
        )
    log.warning(f"Creating a {model_type} relation extractor")
    return MODEL_TYPES[model_type](config)
