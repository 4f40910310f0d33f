"""Exceptions raised while merging paired reads."""


class PairMergeError(ValueError):
    """Base class for all merge failures."""


class TypeMismatchError(PairMergeError):
    """A map that must be integral contains something else."""


class LengthMismatchError(PairMergeError):
    """Inputs that must line up (read maps, sample lists) have different lengths."""


class ShapeMismatchError(PairMergeError):
    """A dereplication map does not correspond to its cluster map."""


class InputError(PairMergeError):
    """An input could not be resolved into clusters or dereplication records."""
