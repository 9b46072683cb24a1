from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

import numpy as np
import torch

from sketch2pix.config import Settings, resolve_checkpoint
from sketch2pix.errors import LoadError, ModelIntegrityError

logger = logging.getLogger(__name__)


class WeightSet(Mapping[str, torch.Tensor]):
    """Read-only mapping from variable name (e.g. `generator/encoder_3/conv2d/kernel`) to tensor."""

    def __init__(self, tensors: Mapping[str, torch.Tensor]):
        self._tensors = MappingProxyType(dict(tensors))

    def __getitem__(self, key: str) -> torch.Tensor:
        return self._tensors[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tensors)

    def __len__(self) -> int:
        return len(self._tensors)

    def __repr__(self) -> str:
        return f"WeightSet({len(self)} tensors, {self.num_parameters()} parameters)"

    def require(self, key: str) -> torch.Tensor:
        try:
            return self._tensors[key]
        except KeyError:
            raise ModelIntegrityError(f"Missing weight: {key}") from None

    def missing(self, keys: Iterable[str]) -> List[str]:
        return [k for k in keys if k not in self._tensors]

    def num_parameters(self) -> int:
        return sum(int(t.numel()) for t in self._tensors.values())

    def to(self, device: torch.device | str) -> "WeightSet":
        return WeightSet({k: v.to(device) for k, v in self._tensors.items()})


def _as_float_tensor(name: str, value: object) -> torch.Tensor:
    if isinstance(value, torch.Tensor):
        t = value.detach()
    elif isinstance(value, np.ndarray):
        if not np.issubdtype(value.dtype, np.number):
            raise LoadError(f"Variable {name!r} is not numeric (dtype={value.dtype})")
        t = torch.from_numpy(np.ascontiguousarray(value))
    else:
        raise LoadError(f"Variable {name!r} is not a tensor (got {type(value).__name__})")
    if t.is_complex() or t.dtype == torch.bool:
        raise LoadError(f"Variable {name!r} has unsupported dtype {t.dtype}")
    return t.to(dtype=torch.float32).contiguous()


def _read_torch(path: Path) -> Mapping[str, object]:
    data = torch.load(path, map_location="cpu", weights_only=True)
    if not isinstance(data, Mapping):
        raise LoadError(f"Checkpoint {path} does not hold a name -> tensor mapping")
    return data


def _read_npz(path: Path) -> Dict[str, object]:
    with np.load(path, allow_pickle=False) as archive:
        return {name: archive[name] for name in archive.files}


class CheckpointLoader:
    """Resolve a model path or identifier and read it into a `WeightSet`.

    Supports `torch.save`d dicts of tensors (`.pth`/`.pt`) and numpy `.npz` archives.
    The result is cached, so `load()` can be called repeatedly.
    """

    def __init__(self, path_or_id: Optional[str | Path] = None, settings: Optional[Settings] = None):
        self.path_or_id = path_or_id
        self.settings = settings
        self._weights: Optional[WeightSet] = None

    def load(self) -> WeightSet:
        if self._weights is not None:
            return self._weights

        path = resolve_checkpoint(self.path_or_id, self.settings)
        try:
            raw = _read_npz(path) if path.suffix.lower() == ".npz" else _read_torch(path)
        except LoadError:
            raise
        except Exception as e:
            raise LoadError(f"Could not read checkpoint {path}: {e}") from e

        tensors: Dict[str, torch.Tensor] = {}
        for name, value in raw.items():
            if not isinstance(name, str):
                raise LoadError(f"Checkpoint {path} has a non-string key {name!r}")
            tensors[name] = _as_float_tensor(name, value)
        if not tensors:
            raise LoadError(f"Checkpoint {path} is empty")

        weights = WeightSet(tensors)
        logger.info("Loaded %s from %s", weights, path)
        self._weights = weights
        return weights
