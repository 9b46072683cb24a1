from __future__ import annotations


class Sketch2PixError(Exception):
    """Base class for every failure raised by sketch2pix."""


class LoadError(Sketch2PixError):
    """Checkpoint could not be resolved, read or decoded."""


class ModelIntegrityError(Sketch2PixError):
    """A required weight is missing or does not fit the fixed topology."""


class ShapeMismatchError(Sketch2PixError):
    """Input image shape cannot go through 9 halving stages."""


class InferenceInProgressError(Sketch2PixError):
    """Another transfer is already running on this model."""


class ModelNotReadyError(Sketch2PixError):
    """Transfer was requested on a model whose loading never started."""
