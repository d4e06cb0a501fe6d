"""
exceptions.py

Exception hierarchy for the relation extraction engine.

2026-02-09 - SD
"""


class MIMLREError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MIMLREError):
    """Invalid settings, or training data that cannot support them."""


class UnknownRelationError(ConfigurationError):
    """A relation name that is not in the label index."""

    def __init__(self, relation):
        super().__init__(f"Unknown relation: {relation}")
        self.relation = relation


class TrainingError(MIMLREError):
    """A worker failed during training; names the phase that failed."""

    def __init__(self, message, epoch=None, fold=None, relation=None):
        where = []
        if epoch is not None:
            where.append(f"epoch {epoch}")
        if fold is not None:
            where.append(f"fold {fold}")
        if relation is not None:
            where.append(f"relation {relation}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)
        self.epoch = epoch
        self.fold = fold
        self.relation = relation


class ModelFormatError(MIMLREError):
    """A serialized model that cannot be read."""
