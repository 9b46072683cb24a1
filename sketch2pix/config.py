from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import torch

from sketch2pix.errors import LoadError

logger = logging.getLogger(__name__)

CHECKPOINT_ENV = "SKETCH2PIX_CHECKPOINT"
MODEL_DIR_ENV = "SKETCH2PIX_MODEL_DIR"
DEVICE_ENV = "SKETCH2PIX_DEVICE"
THREADS_ENV = "SKETCH2PIX_THREADS"
LOG_LEVEL_ENV = "SKETCH2PIX_LOG_LEVEL"

CHECKPOINT_SUFFIXES = (".pth", ".pt", ".npz")

_threads_configured: Optional[Tuple[int, int]] = None


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""

    checkpoint: Optional[str] = None
    model_dir: Optional[str] = None
    device: str = "cpu"
    num_threads: int = 4
    interop_threads: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        threads = os.environ.get(THREADS_ENV, "").strip()
        return cls(
            checkpoint=os.environ.get(CHECKPOINT_ENV) or None,
            model_dir=os.environ.get(MODEL_DIR_ENV) or None,
            device=os.environ.get(DEVICE_ENV, "cpu").strip() or "cpu",
            num_threads=int(threads) if threads else 4,
            log_level=os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper() or "INFO",
        )


def _repo_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _candidate_paths(model_id: str, settings: Settings) -> List[Path]:
    dirs: List[Path] = []
    if settings.model_dir:
        dirs.append(Path(settings.model_dir).expanduser())
    dirs += [_repo_root(), Path.cwd()]
    out: List[Path] = []
    for d in dirs:
        out.append(d / model_id)
        out += [d / f"{model_id}{suffix}" for suffix in CHECKPOINT_SUFFIXES]
    return out


def resolve_checkpoint(path_or_id: Optional[str | Path] = None, settings: Optional[Settings] = None) -> Path:
    """Turn a checkpoint path or a model identifier into an existing file path.

    With no argument, falls back to `SKETCH2PIX_CHECKPOINT`. Identifiers are looked up
    in `SKETCH2PIX_MODEL_DIR`, the repo root and the current directory.
    """
    settings = settings or Settings.from_env()
    if path_or_id is None or not str(path_or_id).strip():
        if not settings.checkpoint:
            raise LoadError(
                f"No checkpoint given. Pass a path or model id, or set env var `{CHECKPOINT_ENV}`."
            )
        path_or_id = settings.checkpoint

    p = Path(path_or_id).expanduser()
    if p.is_file():
        return p
    for candidate in _candidate_paths(str(path_or_id), settings):
        if candidate.is_file():
            return candidate
    raise LoadError(f"Missing checkpoint: {path_or_id}")


def configure_torch_threads(num_threads: int, interop_threads: int = 1) -> None:
    """Configure torch threads once per process.

    PyTorch disallows changing inter-op threads after work has started, so later
    calls with different values only log a warning.
    """
    global _threads_configured
    desired = (int(num_threads), int(interop_threads))
    if _threads_configured is not None:
        if _threads_configured != desired:
            logger.warning(
                "Torch threads already set to %s; restart the process to apply %s.",
                _threads_configured,
                desired,
            )
        return

    try:
        torch.set_num_threads(desired[0])
    except RuntimeError as e:
        logger.warning("Could not set torch threads (%s).", e)
    try:
        torch.set_num_interop_threads(desired[1])
    except RuntimeError as e:
        logger.warning("Could not set torch interop threads (%s).", e)
    _threads_configured = desired
