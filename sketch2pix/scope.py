from __future__ import annotations

import logging
from typing import List

import torch

logger = logging.getLogger(__name__)


class ActivationScope:
    """Owns the intermediate activations of one forward pass.

    Use as a context manager: every tensor passed to `track` is dropped when the
    block exits, whether it raised or not. Tensors the caller still references
    (e.g. the returned output) stay alive.
    """

    def __init__(self):
        self._tensors: List[torch.Tensor] = []
        self.peak = 0
        self.closed = False

    def __enter__(self) -> "ActivationScope":
        if self.closed:
            raise RuntimeError("ActivationScope cannot be reused")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self._tensors)

    def __getitem__(self, i: int) -> torch.Tensor:
        return self._tensors[i]

    def track(self, t: torch.Tensor) -> torch.Tensor:
        if self.closed:
            raise RuntimeError("ActivationScope is already released")
        self._tensors.append(t)
        self.peak = max(self.peak, len(self._tensors))
        return t

    def snapshot(self) -> List[torch.Tensor]:
        return list(self._tensors)

    def release(self) -> None:
        if self.closed:
            return
        on_cuda = any(t.is_cuda for t in self._tensors)
        self._tensors.clear()
        self.closed = True
        if on_cuda:
            torch.cuda.empty_cache()
        logger.debug("Released %d activations", self.peak)
