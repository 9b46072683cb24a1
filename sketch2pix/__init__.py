"""sketch2pix: pix2pix image-to-image translation with pretrained weights (no training).

A fixed 9-level encoder / 9-level decoder generator runs once per call on CPU-friendly
PyTorch, turning an RGB raster (e.g. a line sketch) into a stylized raster of the same size.
"""

from sketch2pix.checkpoint import CheckpointLoader, WeightSet
from sketch2pix.errors import (
    InferenceInProgressError,
    LoadError,
    ModelIntegrityError,
    ModelNotReadyError,
    ShapeMismatchError,
    Sketch2PixError,
)
from sketch2pix.generator import Pix2PixGenerator
from sketch2pix.logging_config import setup_logging
from sketch2pix.model import ModelHandle, ModelState, create_model, load_model

__all__ = [
    "CheckpointLoader",
    "InferenceInProgressError",
    "LoadError",
    "ModelHandle",
    "ModelIntegrityError",
    "ModelNotReadyError",
    "ModelState",
    "Pix2PixGenerator",
    "ShapeMismatchError",
    "Sketch2PixError",
    "WeightSet",
    "create_model",
    "load_model",
    "setup_logging",
]
