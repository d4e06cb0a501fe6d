"""
train_mimlre.py

Training driver for the distantly-supervised relation extractors:
- joint_bayes: MIML-RE (local initialization, then hard EM over latent sentence labels)
- local_bayes: the per-fold local sentence classifiers only
    * Loads bags from cfg.datapack (JSON lines).
    * Writes model.bin, config.json, metrics_train.json and, when defined,
      statistics.csv (per-sentence training statistics) to the output directory.

2026-02-09 - SD
"""

import json
import logging
import os

import hydra
from omegaconf import DictConfig, OmegaConf

from extractors.config import JointBayesConfig
from extractors.model_type import MODEL_TYPES, make_extractor
from utils import load_data

log = logging.getLogger(__name__)


def validate_config(cfg):
    """
    Validate and finalize the training configuration.

    :param cfg: Hydra configuration object
    """
    assert cfg.model_type in MODEL_TYPES, (
        f"Model type must be one of {sorted(MODEL_TYPES)}. Not {cfg.model_type}"
    )
    assert cfg.datapack.get("train_path") is not None, "A training file must be given."

    OmegaConf.set_struct(cfg, False)

    trial_name = cfg.trial_name
    trial_name += f"_{cfg.model_type}"
    trial_name += f"_folds{cfg.extractor.get('folds', 5)}"
    if cfg.model_type == "joint_bayes":
        trial_name += f"_epochs{cfg.extractor.get('epochs', 10)}"
    if cfg.extractor.get("relabel", False):
        trial_name += f"_relabel{cfg.extractor.get('percent_positive', 0.25)}"
    cfg["trial_name"] = trial_name

    cfg["output_dir"] = os.path.join(cfg.output_dir, trial_name)
    if cfg.extractor.get("model_path") is None:
        cfg.extractor["model_path"] = os.path.join(cfg.output_dir, "model.bin")
    log.warning(f"Output directory: {cfg['output_dir']}")
    OmegaConf.set_struct(cfg, True)


def log_stats(cfg):
    """
    Log which extractor is trained on which data.

    :param cfg: Hydra configuration object
    """
    log.warning(f"Training a {cfg.model_type} relation extractor")
    log.warning(f"\t\tTrain file: {cfg.datapack['train_path']}")
    log.warning(f"\t\tModel path: {cfg.extractor['model_path']}")
    log.warning(f"\t\tOutput directory: {cfg.output_dir}")


def save_results(cfg, extractor, metrics, statistics):
    """
    Save the trained model and its training metrics.

    Files:
    - model.bin
    - config.json
    - metrics_train.json
    - statistics.csv (only for models that produce training statistics)

    :param cfg: Hydra config
    :param extractor: trained JointBayesRelationExtractor
    :param metrics: dict of training metrics
    :param statistics: TrainingStatistics
    """
    os.makedirs(cfg.output_dir, exist_ok=True)

    extractor.save(cfg.extractor["model_path"])

    with open(f"{cfg.output_dir}/config.json", "w") as f:
        json.dump(OmegaConf.to_container(cfg, resolve=True), f)

    with open(f"{cfg.output_dir}/metrics_train.json", "w") as f:
        json.dump(metrics, f)

    if statistics.is_defined:
        statistics.to_dataframe().to_csv(f"{cfg.output_dir}/statistics.csv", index=False)
        log.warning(f"Saved statistics for {len(statistics)} sentences")


@hydra.main(version_base=None, config_path="configs", config_name="train_mimlre")
def main(cfg: DictConfig):

    validate_config(cfg)
    log_stats(cfg)
    os.makedirs(cfg.output_dir, exist_ok=True)

    dataset = load_data(cfg)
    config = JointBayesConfig.from_cfg(cfg.extractor)
    extractor = make_extractor(cfg.model_type, config)

    statistics = extractor.train(dataset)
    log.warning(
        f"Training finished in state {extractor.state} after {extractor.epochs_run} epochs"
    )

    metrics = extractor.training_accuracy(dataset)
    metrics["state"] = extractor.state
    metrics["epochs_run"] = extractor.epochs_run
    metrics["n_bags"] = len(dataset)
    metrics["n_sentences"] = dataset.num_sentences()

    save_results(cfg, extractor, metrics, statistics)
    log.warning(f"Finished training the {cfg.model_type} extractor.")


if __name__ == "__main__":
    main()
