"""
evaluate_mimlre.py

Evaluate a trained relation extractor on held-out bags.
    * Loads model.bin and scores every test bag with classify_relations.
    * Micro precision / recall / F1 over (bag, relation) pairs, per-relation
      precision / recall / F1 (sklearn), and average
      precision of the relation scores when both classes are present.
    * Saves metrics_test.json and predictions.jsonl (one row per predicted pair,
      with the provenance sentence key).

2026-02-09 - SD
"""

import json
import logging
import os

import hydra
import numpy as np
import polars as pl
from omegaconf import DictConfig, OmegaConf
from sklearn.metrics import average_precision_score as mAP, precision_recall_fscore_support
from tqdm import tqdm

from data_handler import Index
from extractors.config import JointBayesConfig
from extractors.joint_bayes import JointBayesRelationExtractor
from utils import load_test_data, precision_recall_f1

log = logging.getLogger(__name__)


def validate_config(cfg):
    """
    :param cfg: Hydra configuration object
    """
    assert cfg.get("model_path") is not None, "A trained model path must be given."
    assert os.path.exists(cfg.model_path), f"Model does not exist: {cfg.model_path}"
    assert cfg.datapack.get("test_path") is not None, "A test file must be given."

    OmegaConf.set_struct(cfg, False)
    cfg["output_dir"] = os.path.join(cfg.output_dir, cfg.trial_name)
    log.warning(f"Output directory: {cfg['output_dir']}")
    OmegaConf.set_struct(cfg, True)


def predicted_relations(predictions, config, output_type):
    """
    Relations counted as predicted for a bag.

    :param predictions: dict {relation: (score, provenance)}
    :param config: JointBayesConfig
    :param output_type: output distribution used to produce the predictions
    :return: set of relation names
    """
    if output_type == "y_given_zstar":
        return {
            r for r, (score, _) in predictions.items() if score > config.threshold_for(r)
        }
    return {r for r, (score, _) in predictions.items() if score > 0.0}


def evaluate(extractor, dataset, output_type=None):
    """
    Score every bag of a dataset.

    :param extractor: trained JointBayesRelationExtractor
    :param dataset: BagDataset interned against the extractor's feature index
    :param output_type: output distribution (defaults to the configured one)
    :return: (metrics dict, list of prediction rows)
    """
    config = extractor.config
    if output_type is None:
        output_type = config.output_distribution
    relations = sorted(extractor.y_classifiers)

    correct = predicted = total = 0
    y_true, y_score, y_pred = [], [], []
    rows = []
    for bag in tqdm(dataset, total=len(dataset)):
        gold = {dataset.label_index[y] for y in bag.positive}
        predictions = extractor.classify_relations(bag, output_type)
        chosen = predicted_relations(predictions, config, output_type)

        total += len(gold)
        predicted += len(chosen)
        correct += len(chosen & gold)

        for relation in relations:
            score, _ = predictions.get(relation, (0.0, None))
            y_true.append(int(relation in gold))
            y_score.append(score)
            y_pred.append(int(relation in chosen))

        for relation in sorted(chosen):
            score, provenance = predictions[relation]
            rows.append(
                {
                    "entity": bag.key[0],
                    "slot_value": bag.key[1],
                    "relation": relation,
                    "score": float(score),
                    "sentence": None if provenance is None else bag.gloss_keys[provenance],
                    "correct": relation in gold,
                }
            )

    p, r, f1 = precision_recall_f1(correct, predicted, total)
    metrics = {
        "precision": p,
        "recall": r,
        "f1": f1,
        "n_bags": len(dataset),
        "n_gold": total,
        "n_predicted": predicted,
        "output_distribution": output_type,
    }
    y_true = np.array(y_true).reshape(-1, len(relations))
    y_pred = np.array(y_pred).reshape(-1, len(relations))
    if y_true.size > 0:
        rel_p, rel_r, rel_f1, support = precision_recall_fscore_support(
            y_true, y_pred, average=None, labels=list(range(len(relations))), zero_division=0
        )
        metrics["per_relation"] = {
            relation: {
                "precision": float(rel_p[j]),
                "recall": float(rel_r[j]),
                "f1": float(rel_f1[j]),
                "support": int(support[j]),
            }
            for j, relation in enumerate(relations)
        }
    flat_true = y_true.ravel()
    if 0 < flat_true.sum() < len(flat_true):
        metrics["average_precision"] = float(mAP(flat_true, np.array(y_score)))
    log.warning(f"TEST SCORE: P {p:.4f} R {r:.4f} F1 {f1:.4f}")
    return metrics, rows


@hydra.main(version_base=None, config_path="configs", config_name="evaluate_mimlre")
def main(cfg: DictConfig):

    validate_config(cfg)
    os.makedirs(cfg.output_dir, exist_ok=True)

    config = JointBayesConfig.from_cfg(cfg.extractor)
    extractor = JointBayesRelationExtractor.load(cfg.model_path, config)
    dataset = load_test_data(cfg, extractor.feature_index, Index(extractor.y_label_index))

    metrics, rows = evaluate(extractor, dataset)

    with open(f"{cfg.output_dir}/metrics_test.json", "w") as f:
        json.dump(metrics, f)
    pl.DataFrame(
        rows,
        schema={
            "entity": pl.Utf8,
            "slot_value": pl.Utf8,
            "relation": pl.Utf8,
            "score": pl.Float64,
            "sentence": pl.Utf8,
            "correct": pl.Boolean,
        },
    ).write_ndjson(f"{cfg.output_dir}/predictions.jsonl")
    log.warning(f"Saved {len(rows)} predictions to {cfg.output_dir}")


if __name__ == "__main__":
    main()
