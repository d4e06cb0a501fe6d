"""
serialization.py

Versioned binary record format for trained relation extraction models.

Layout (all integers little-endian):
    magic            8 bytes  b"MIMLRE\\x00\\x00"
    format version   uint32
    record kind      uint32   (1 = full model, 2 = initial model)
    body             sequence of fields:
        int      int64
        bool     uint8
        string   uint32 byte length + UTF-8 bytes
        strings  uint32 count + strings
        matrix   uint32 ndim + int64 per dim + float64 values (C order)
        optional uint8 presence flag + value

Full model body:
    strings Y feature types, string local classification mode,
    strings known dependencies (sorted), strings feature index, strings Z label index,
    int K, K matrices, optional single Z matrix,
    int n_relations, then per relation: string relation, strings Y feature index, matrix

Initial model body:
    strings feature index, strings Z label index, strings Y label index,
    int K, K matrices,
    int n_relations, then per relation: string relation, strings Y feature index, matrix

2026-02-09 - SD
"""

import logging
import struct

import numpy as np

from classifiers.linear_classifier import LinearClassifier
from data_handler import Index
from extractors.exceptions import ModelFormatError
from extractors.inference import YClassifier

log = logging.getLogger(__name__)

MAGIC = b"MIMLRE\x00\x00"
FORMAT_VERSION = 2
KIND_MODEL = 1
KIND_INITIAL_MODEL = 2


class RecordWriter:
    """
    Write typed fields to a binary stream.
    """

    def __init__(self, stream):
        self.stream = stream

    def header(self, kind):
        self.stream.write(MAGIC)
        self.stream.write(struct.pack("<II", FORMAT_VERSION, kind))

    def int64(self, value):
        self.stream.write(struct.pack("<q", int(value)))

    def flag(self, value):
        self.stream.write(struct.pack("<B", 1 if value else 0))

    def string(self, value):
        data = value.encode("utf-8")
        self.stream.write(struct.pack("<I", len(data)))
        self.stream.write(data)

    def strings(self, values):
        values = list(values)
        self.stream.write(struct.pack("<I", len(values)))
        for value in values:
            self.string(value)

    def matrix(self, array):
        array = np.ascontiguousarray(array, dtype="<f8")
        self.stream.write(struct.pack("<I", array.ndim))
        for dim in array.shape:
            self.int64(dim)
        self.stream.write(array.tobytes(order="C"))


class RecordReader:
    """
    Read typed fields from a binary stream; truncation raises ModelFormatError.
    """

    def __init__(self, stream):
        self.stream = stream

    def _read(self, n):
        data = self.stream.read(n)
        if len(data) != n:
            raise ModelFormatError(f"Truncated model file: wanted {n} bytes, got {len(data)}")
        return data

    def header(self, expected_kind):
        magic = self._read(len(MAGIC))
        if magic != MAGIC:
            raise ModelFormatError(f"Not a model file (bad magic {magic!r})")
        version, kind = struct.unpack("<II", self._read(8))
        if version != FORMAT_VERSION:
            raise ModelFormatError(
                f"Unsupported model format version {version}; expected {FORMAT_VERSION}"
            )
        if kind != expected_kind:
            raise ModelFormatError(f"Wrong record kind {kind}; expected {expected_kind}")

    def int64(self):
        return struct.unpack("<q", self._read(8))[0]

    def flag(self):
        return struct.unpack("<B", self._read(1))[0] == 1

    def string(self):
        (length,) = struct.unpack("<I", self._read(4))
        return self._read(length).decode("utf-8")

    def strings(self):
        (count,) = struct.unpack("<I", self._read(4))
        return [self.string() for _ in range(count)]

    def matrix(self):
        (ndim,) = struct.unpack("<I", self._read(4))
        shape = tuple(self.int64() for _ in range(ndim))
        n_values = int(np.prod(shape)) if ndim > 0 else 1
        data = self._read(8 * n_values)
        return np.frombuffer(data, dtype="<f8").reshape(shape).astype(np.float64)


def _write_y_classifiers(writer, y_classifiers):
    writer.int64(len(y_classifiers))
    for relation in sorted(y_classifiers):
        classifier = y_classifiers[relation]
        writer.string(relation)
        writer.strings(classifier.feature_index)
        writer.matrix(classifier.classifier.coef_)


def _read_y_classifiers(reader):
    y_classifiers = {}
    for _ in range(reader.int64()):
        relation = reader.string()
        feature_index = Index(reader.strings())
        weights = reader.matrix()
        y_classifiers[relation] = YClassifier(
            relation, feature_index, LinearClassifier.from_weights(weights)
        )
    return y_classifiers


def save_model(path, y_features, local_classification_mode, known_dependencies, feature_index,
               z_label_index, z_classifiers, z_single_classifier, y_classifiers):
    """
    Write a full trained model.

    :param path: output file path
    :param y_features: Y feature types the Y classifiers were trained on
    :param local_classification_mode: "weighted_vote" or "single_model"
    :param known_dependencies: set of co-occurrence feature names
    :param feature_index: Index of sentence feature names
    :param z_label_index: Index of Z label names
    :param z_classifiers: list of K fold LinearClassifiers
    :param z_single_classifier: LinearClassifier or None
    :param y_classifiers: dict {relation: YClassifier}
    """
    with open(path, "wb") as f:
        writer = RecordWriter(f)
        writer.header(KIND_MODEL)
        writer.strings(y_features)
        writer.string(local_classification_mode)
        writer.strings(sorted(known_dependencies or ()))
        writer.strings(feature_index)
        writer.strings(z_label_index)
        writer.int64(len(z_classifiers))
        for classifier in z_classifiers:
            writer.matrix(classifier.coef_)
        writer.flag(z_single_classifier is not None)
        if z_single_classifier is not None:
            writer.matrix(z_single_classifier.coef_)
        _write_y_classifiers(writer, y_classifiers)
    log.warning(f"Saved model to {path}")


def load_model(path):
    """
    Read a full trained model.

    :param path: model file path
    :return: dict with y_features, local_classification_mode, known_dependencies,
             feature_index, z_label_index, z_classifiers, z_single_classifier, y_classifiers
    """
    with open(path, "rb") as f:
        reader = RecordReader(f)
        reader.header(KIND_MODEL)
        y_features = tuple(reader.strings())
        local_classification_mode = reader.string()
        known_dependencies = set(reader.strings())
        feature_index = Index(reader.strings())
        z_label_index = Index(reader.strings())
        n_folds = reader.int64()
        z_classifiers = [
            LinearClassifier.from_weights(reader.matrix()) for _ in range(n_folds)
        ]
        z_single_classifier = None
        if reader.flag():
            z_single_classifier = LinearClassifier.from_weights(reader.matrix())
        y_classifiers = _read_y_classifiers(reader)
    log.warning(f"Loaded model with {n_folds} Z classifiers from {path}")
    return {
        "y_features": y_features,
        "local_classification_mode": local_classification_mode,
        "known_dependencies": known_dependencies,
        "feature_index": feature_index,
        "z_label_index": z_label_index,
        "z_classifiers": z_classifiers,
        "z_single_classifier": z_single_classifier,
        "y_classifiers": y_classifiers,
    }


def save_initial_models(path, feature_index, z_label_index, y_label_index,
                        z_classifiers, y_classifiers):
    """
    Write the locally initialized classifiers so later runs can skip initialization.
    """
    with open(path, "wb") as f:
        writer = RecordWriter(f)
        writer.header(KIND_INITIAL_MODEL)
        writer.strings(feature_index)
        writer.strings(z_label_index)
        writer.strings(y_label_index)
        writer.int64(len(z_classifiers))
        for classifier in z_classifiers:
            writer.matrix(classifier.coef_)
        _write_y_classifiers(writer, y_classifiers)
    log.warning(f"Saved initial models to {path}")


def load_initial_models(path):
    """
    :return: dict with feature_index, z_label_index, y_label_index, z_classifiers, y_classifiers
    """
    with open(path, "rb") as f:
        reader = RecordReader(f)
        reader.header(KIND_INITIAL_MODEL)
        feature_index = Index(reader.strings())
        z_label_index = Index(reader.strings())
        y_label_index = Index(reader.strings())
        n_folds = reader.int64()
        z_classifiers = [
            LinearClassifier.from_weights(reader.matrix()) for _ in range(n_folds)
        ]
        y_classifiers = _read_y_classifiers(reader)
    log.warning(f"Loaded initial models with {n_folds} Z classifiers from {path}")
    return {
        "feature_index": feature_index,
        "z_label_index": z_label_index,
        "y_label_index": y_label_index,
        "z_classifiers": z_classifiers,
        "y_classifiers": y_classifiers,
    }
