"""
data_handler.py

Handle loading, interning, and filtering of bag datasets for
distantly-supervised relation extraction.

- Index
    * Append-only bijection between names (features, relations) and dense ids.
    * Can be locked so that unseen names are dropped instead of added.
- Bag
    * Sentences (sparse integer feature rows) mentioning one (entity, slot value) pair.
    * Positive / negative / unknown relation label sets and optional gold sentence labels.
- BagDataset
    * Indexed collection of bags sharing a feature and a label index.
    * Feature-count thresholding, filtering, label snapshots for relabeling.

Bags are read from JSON lines, one bag per line:
    {"entity": ..., "slot_value": ..., "sentences": [[feat, ...], ...],
     "positive": [...], "negative": [...], "unknown": [...],
     "gloss_keys": [...], "annotated": [{"sentence": 0, "label": ...}]}

2026-02-09 - SD
"""

import logging
from copy import deepcopy

import numpy as np
import polars as pl

log = logging.getLogger(__name__)

UNRELATED = "_NR"

# Column types of a bag file. Optional fields may be empty or absent on early rows.
BAG_SCHEMA = {
    "entity": pl.Utf8,
    "slot_value": pl.Utf8,
    "sentences": pl.List(pl.List(pl.Utf8)),
    "positive": pl.List(pl.Utf8),
    "negative": pl.List(pl.Utf8),
    "unknown": pl.List(pl.Utf8),
    "gloss_keys": pl.List(pl.Utf8),
    "annotated": pl.List(pl.Struct({"sentence": pl.Int64, "label": pl.Utf8})),
}


class Index:
    """
    Bijective mapping from hashable objects to dense integer ids.

    :param objects: optional iterable of objects to add in order
    """

    def __init__(self, objects=None):
        self._objects = []
        self._ids = {}
        self.locked = False
        if objects is not None:
            self.add_all(objects)

    def add(self, obj):
        """
        Add an object to the index if absent.

        :param obj: hashable object
        :return: id of the object, or -1 if the index is locked and obj is unseen
        """
        idx = self._ids.get(obj)
        if idx is not None:
            return idx
        if self.locked:
            return -1
        idx = len(self._objects)
        self._objects.append(obj)
        self._ids[obj] = idx
        return idx

    def add_all(self, objects):
        for obj in objects:
            self.add(obj)

    def index_of(self, obj):
        """
        :param obj: hashable object
        :return: id of the object, or -1 if it is not in the index
        """
        return self._ids.get(obj, -1)

    def objects(self, ids):
        return [self._objects[i] for i in ids]

    def objects_list(self):
        return list(self._objects)

    def lock(self):
        self.locked = True

    def unlock(self):
        self.locked = False

    def __getitem__(self, idx):
        return self._objects[idx]

    def __len__(self):
        return len(self._objects)

    def __iter__(self):
        return iter(self._objects)

    def __contains__(self, obj):
        return obj in self._ids

    def __eq__(self, other):
        if not isinstance(other, Index):
            return NotImplemented
        return self._objects == other._objects

    def __repr__(self):
        return f"Index({self._objects!r})"


class Bag:
    """
    All sentences that mention a given (entity, slot value) pair.

    The parallel per-sentence arrays (sentences, fixed_labels, gloss_keys) always
    have the same length; shuffling must permute them together.

    :param key: (entity, slot_value) tuple identifying the bag
    :param sentences: list of integer feature-id arrays, one per sentence
    :param positive: set of relation ids known to hold for the pair
    :param negative: set of relation ids known not to hold for the pair
    :param unknown: set of relation ids with no KB evidence either way
    :param fixed_labels: optional list of gold relation names (or None) per sentence
    :param gloss_keys: optional list of sentence identity strings
    """

    def __init__(
        self,
        key,
        sentences,
        positive=None,
        negative=None,
        unknown=None,
        fixed_labels=None,
        gloss_keys=None,
    ):
        self.key = tuple(key)
        self.sentences = [np.asarray(s, dtype=np.int64) for s in sentences]
        self.positive = set(positive or ())
        self.negative = set(negative or ())
        self.unknown = set(unknown or ())

        if fixed_labels is None:
            fixed_labels = [None] * len(self.sentences)
        self.fixed_labels = list(fixed_labels)

        if gloss_keys is None:
            gloss_keys = [
                f"{self.key[0]}|{self.key[1]}|{i}" for i in range(len(self.sentences))
            ]
        self.gloss_keys = list(gloss_keys)

        assert len(self.fixed_labels) == len(self.sentences), (
            f"Bag {self.key}: {len(self.fixed_labels)} fixed labels "
            f"for {len(self.sentences)} sentences"
        )
        assert len(self.gloss_keys) == len(self.sentences), (
            f"Bag {self.key}: {len(self.gloss_keys)} gloss keys "
            f"for {len(self.sentences)} sentences"
        )

    def __len__(self):
        return len(self.sentences)

    def __repr__(self):
        return (
            f"Bag(key={self.key}, sentences={len(self.sentences)}, "
            f"positive={sorted(self.positive)}, negative={sorted(self.negative)}, "
            f"unknown={sorted(self.unknown)})"
        )


class BagDataset:
    """
    Collection of bags with shared feature and relation label indices.

    :param feature_index: optional Index of feature names
    :param label_index: optional Index of relation names (never contains UNRELATED)
    """

    def __init__(self, feature_index=None, label_index=None):
        self.feature_index = feature_index if feature_index is not None else Index()
        self.label_index = label_index if label_index is not None else Index()
        self.bags = []
        self._original_positive = None
        self._original_negative = None

    def __len__(self):
        return len(self.bags)

    def __getitem__(self, i):
        return self.bags[i]

    def __iter__(self):
        return iter(self.bags)

    def add_bag(
        self,
        key,
        sentences,
        positive=(),
        negative=(),
        unknown=(),
        annotated=None,
        gloss_keys=None,
    ):
        """
        Intern a bag given by feature and relation names.

        Unseen features are added to the feature index unless it is locked, in which
        case they are dropped. Relation names are always added to the label index.

        :param key: (entity, slot_value) tuple
        :param sentences: list of collections of feature names
        :param positive: relation names known to hold
        :param negative: relation names known not to hold
        :param unknown: relation names with unknown status
        :param annotated: optional dict mapping sentence index to a gold relation name
        :param gloss_keys: optional list of sentence identity strings
        :return: the interned Bag
        """
        rows = []
        for sentence in sentences:
            ids = [self.feature_index.add(f) for f in sentence]
            rows.append([i for i in ids if i >= 0])

        fixed_labels = [None] * len(rows)
        for sentence_id, label in (annotated or {}).items():
            assert 0 <= int(sentence_id) < len(rows), (
                f"Annotation for sentence {sentence_id} out of range for bag {key}"
            )
            fixed_labels[int(sentence_id)] = label

        bag = Bag(
            key=key,
            sentences=rows,
            positive={self.label_index.add(l) for l in positive},
            negative={self.label_index.add(l) for l in negative},
            unknown={self.label_index.add(l) for l in unknown},
            fixed_labels=fixed_labels,
            gloss_keys=gloss_keys,
        )
        self.bags.append(bag)
        return bag

    def add_interned_bag(self, bag):
        """
        Append a copy of an already-interned bag.

        :param bag: Bag whose ids refer to this dataset's indices
        :return: the copied Bag
        """
        copied = deepcopy(bag)
        self.bags.append(copied)
        return copied

    def feature_names(self, i):
        """
        :param i: bag index
        :return: list of feature-name lists, one per sentence
        """
        return [self.feature_index.objects(row) for row in self.bags[i].sentences]

    def feature_counts(self):
        """
        Count feature occurrences across all sentences of all bags.

        :return: numpy array of counts indexed by feature id
        """
        counts = np.zeros(len(self.feature_index), dtype=np.int64)
        for bag in self.bags:
            for row in bag.sentences:
                if len(row) > 0:
                    np.add.at(counts, row, 1)
        return counts

    def apply_feature_count_threshold(self, threshold):
        """
        Drop features seen fewer than `threshold` times and rebuild the feature index.

        :param threshold: minimum number of occurrences to keep a feature
        :return: number of features kept
        """
        counts = self.feature_counts()
        new_index = Index()
        remap = np.full(len(self.feature_index), -1, dtype=np.int64)
        for old_id, name in enumerate(self.feature_index):
            if counts[old_id] >= threshold:
                remap[old_id] = new_index.add(name)

        for bag in self.bags:
            new_rows = []
            for row in bag.sentences:
                mapped = remap[row] if len(row) > 0 else row
                new_rows.append(mapped[mapped >= 0])
            bag.sentences = new_rows

        log.warning(
            f"Feature threshold {threshold}: kept {len(new_index)} "
            f"of {len(self.feature_index)} features."
        )
        self.feature_index = new_index
        return len(new_index)

    def filter(self, predicate):
        """
        Return a dataset with the bags for which predicate(bag) is true.

        The indices are shared with this dataset; the bags are not copied.

        :param predicate: callable taking a Bag and returning a bool
        :return: new BagDataset
        """
        filtered = BagDataset(self.feature_index, self.label_index)
        filtered.bags = [bag for bag in self.bags if predicate(bag)]
        return filtered

    def finalize_labels(self):
        """
        Snapshot the current positive and negative label sets.
        """
        self._original_positive = [set(bag.positive) for bag in self.bags]
        self._original_negative = [set(bag.negative) for bag in self.bags]

    def restore_labels(self):
        """
        Restore positive and negative label sets to the last snapshot.
        """
        assert self._original_positive is not None, (
            "finalize_labels() must be called before restore_labels()"
        )
        for bag, pos, neg in zip(
            self.bags, self._original_positive, self._original_negative
        ):
            bag.positive = set(pos)
            bag.negative = set(neg)

    def count_labels(self):
        """
        :return: (n_positive, n_negative, n_unknown) bag-relation pairs
        """
        n_pos = sum(len(bag.positive) for bag in self.bags)
        n_neg = sum(len(bag.negative) for bag in self.bags)
        n_unk = sum(len(bag.unknown) for bag in self.bags)
        return n_pos, n_neg, n_unk

    def num_sentences(self):
        return sum(len(bag) for bag in self.bags)

    def randomize(self, seed):
        """
        Shuffle the order of the bags in place.

        :param seed: random seed
        """
        rng = np.random.RandomState(seed)
        order = rng.permutation(len(self.bags))
        self.bags = [self.bags[i] for i in order]
        if self._original_positive is not None:
            self._original_positive = [self._original_positive[i] for i in order]
            self._original_negative = [self._original_negative[i] for i in order]

    def validate(self):
        """
        Check the per-bag parallel array invariants.
        """
        for bag in self.bags:
            assert len(bag.sentences) == len(bag.fixed_labels) == len(bag.gloss_keys), (
                f"Bag {bag.key} has mismatched sentence arrays"
            )
            for row in bag.sentences:
                assert len(row) == 0 or (
                    row.min() >= 0 and row.max() < len(self.feature_index)
                ), f"Bag {bag.key} references features outside the index"


def _annotations_to_dict(annotated):
    if not annotated:
        return {}
    return {int(a["sentence"]): a["label"] for a in annotated}


def load_bags(path, feature_index=None, label_index=None):
    """
    Load a JSON-lines bag file into a BagDataset.

    :param path: path to a .jsonl file
    :param feature_index: optional existing (possibly locked) feature Index
    :param label_index: optional existing relation Index
    :return: BagDataset
    """
    rows = pl.read_ndjson(path, schema=BAG_SCHEMA).to_dicts()
    dataset = BagDataset(feature_index, label_index)
    for row in rows:
        dataset.add_bag(
            key=(row["entity"], row["slot_value"]),
            sentences=row["sentences"] or [],
            positive=row.get("positive") or [],
            negative=row.get("negative") or [],
            unknown=row.get("unknown") or [],
            annotated=_annotations_to_dict(row.get("annotated")),
            gloss_keys=row.get("gloss_keys"),
        )
    log.warning(
        f"Loaded {len(dataset)} bags ({dataset.num_sentences()} sentences, "
        f"{len(dataset.feature_index)} features, {len(dataset.label_index)} relations) "
        f"from {path}"
    )
    return dataset
